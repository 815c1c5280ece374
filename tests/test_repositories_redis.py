"""
Tests des dépôts Redis (client simulé).

Vérifie le format des clés, la sérialisation JSON et le compare-and-set WATCH/MULTI/EXEC.
"""

import datetime as dt
import json
from unittest.mock import MagicMock, Mock

import pytest
import redis

from transit_timeline.domain.entities import (
    CreditBalance,
    PointsLedgerEntry,
    Timeline,
    UserLevelState,
)
from transit_timeline.domain.errors import StoreUnavailableError
from transit_timeline.infra.ledger import RedisCreditRepo, RedisPointsRepo
from transit_timeline.infra.redis_store import store_retry_policy
from transit_timeline.infra.repositories import RedisNatalProfileRepo, RedisTimelineRepo

NOW = dt.datetime(2024, 3, 10, 9, 30, tzinfo=dt.UTC)


def _client_with_pipeline():
    client = MagicMock(spec=redis.Redis)
    pipe = MagicMock()
    client.pipeline.return_value.__enter__.return_value = pipe
    return client, pipe


class TestRedisCreditRepo:
    """Tests pour RedisCreditRepo."""

    def setup_method(self) -> None:
        self.client, self.pipe = _client_with_pipeline()
        self.repo = RedisCreditRepo(client=self.client)
        self.balance = CreditBalance(owner_id="u1", remaining=2, period_key="2024-03")

    def test_get_missing_balance(self) -> None:
        self.client.get.return_value = None
        assert self.repo.get("u1") == (None, 0)
        self.client.get.assert_called_with("credits:u1")

    def test_get_returns_balance_and_version(self) -> None:
        self.client.get.return_value = json.dumps({**self.balance.model_dump(), "version": 4})
        balance, version = self.repo.get("u1")
        assert balance == self.balance
        assert version == 4

    def test_compare_and_set_writes_next_version(self) -> None:
        self.pipe.get.return_value = json.dumps({**self.balance.model_dump(), "version": 1})

        assert self.repo.compare_and_set(self.balance, 1) is True

        self.pipe.watch.assert_called_with("credits:u1")
        self.pipe.multi.assert_called_once()
        key, raw = self.pipe.set.call_args.args
        assert key == "credits:u1"
        assert json.loads(raw)["version"] == 2
        self.pipe.execute.assert_called_once()

    def test_compare_and_set_version_mismatch(self) -> None:
        self.pipe.get.return_value = json.dumps({**self.balance.model_dump(), "version": 3})

        assert self.repo.compare_and_set(self.balance, 1) is False
        self.pipe.unwatch.assert_called_once()
        self.pipe.execute.assert_not_called()

    def test_compare_and_set_watch_error(self) -> None:
        self.pipe.get.return_value = None
        self.pipe.execute.side_effect = redis.WatchError()

        assert self.repo.compare_and_set(self.balance, 0) is False


class TestRedisPointsRepo:
    """Tests pour RedisPointsRepo."""

    def setup_method(self) -> None:
        self.client, self.pipe = _client_with_pipeline()
        self.repo = RedisPointsRepo(client=self.client)
        self.entry = PointsLedgerEntry(
            user_id="u1",
            event_type="feedback",
            points=15,
            dedupe_key="u1:feedback:f1",
            occurred_at=NOW,
        )
        self.state = UserLevelState(user_id="u1", lifetime_points=15)

    def test_load_unknown_user(self) -> None:
        self.client.get.return_value = None
        state, version = self.repo.load("u1")
        assert state == UserLevelState(user_id="u1")
        assert version == 0

    def test_commit_appends_entries_and_updates_leaderboard(self) -> None:
        self.pipe.get.return_value = None
        self.pipe.exists.return_value = 0

        assert self.repo.commit("u1", 0, [self.entry], self.state) is True

        self.pipe.set.assert_any_call("points:dedupe:u1:feedback:f1", "1")
        self.pipe.lpush.assert_called_once_with("points:ledger:u1", self.entry.model_dump_json())
        self.pipe.zadd.assert_called_once_with("points:leaderboard", {"u1": 15})
        self.pipe.execute.assert_called_once()

    def test_commit_rejects_existing_dedupe_key(self) -> None:
        self.pipe.get.return_value = None
        self.pipe.exists.return_value = 1

        assert self.repo.commit("u1", 0, [self.entry], self.state) is False
        self.pipe.execute.assert_not_called()

    def test_commit_watch_error(self) -> None:
        self.pipe.get.return_value = None
        self.pipe.exists.return_value = 0
        self.pipe.execute.side_effect = redis.WatchError()

        assert self.repo.commit("u1", 0, [self.entry], self.state) is False

    def test_entries_newest_first_with_limit(self) -> None:
        self.client.lrange.return_value = [self.entry.model_dump_json()]

        assert self.repo.entries("u1", limit=5) == [self.entry]
        self.client.lrange.assert_called_with("points:ledger:u1", 0, 4)
        assert self.repo.entries("u1", limit=0) == []

    def test_has_entry(self) -> None:
        self.client.exists.return_value = 1
        assert self.repo.has_entry("u1:feedback:f1") is True
        self.client.exists.assert_called_with("points:dedupe:u1:feedback:f1")

    def test_top_loads_states_in_rank_order(self) -> None:
        self.client.zrevrange.return_value = ["u2", "u1"]

        def stored(key):
            state = UserLevelState(user_id=key.rsplit(":", 1)[1])
            return json.dumps({**state.model_dump(mode="json"), "version": 1})

        self.client.get.side_effect = stored

        assert [s.user_id for s in self.repo.top(2)] == ["u2", "u1"]
        self.client.zrevrange.assert_called_with("points:leaderboard", 0, 1)


class TestRedisTimelineRepo:
    """Tests pour RedisTimelineRepo."""

    def setup_method(self) -> None:
        self.client = MagicMock(spec=redis.Redis)
        self.pipe = Mock()
        self.client.pipeline.return_value = self.pipe
        self.repo = RedisTimelineRepo(client=self.client)

    def _timeline(self, timeline_id: str, minutes: int = 0) -> Timeline:
        return Timeline(
            id=timeline_id,
            owner_id="u1",
            owner_kind="user",
            outcome_goal="goal",
            timeframe_months=1,
            start_date=NOW.date(),
            end_date=NOW.date(),
            actions=[],
            affirmations=["a"],
            created_at=NOW + dt.timedelta(minutes=minutes),
        )

    def test_save_indexes_owner(self) -> None:
        timeline = self._timeline("t1")
        self.repo.save(timeline)

        self.pipe.set.assert_called_once_with("timeline:t1", timeline.model_dump_json())
        self.pipe.sadd.assert_called_once_with("timeline:idx:owner:u1", "t1")
        self.pipe.execute.assert_called_once()

    def test_list_for_owner_newest_first(self) -> None:
        old, new = self._timeline("t1"), self._timeline("t2", minutes=10)
        self.client.smembers.return_value = {"t1", "t2"}
        self.client.mget.return_value = [old.model_dump_json(), new.model_dump_json()]

        assert [t.id for t in self.repo.list_for_owner("u1")] == ["t2", "t1"]
        self.client.mget.assert_called_with(["timeline:t1", "timeline:t2"])

    def test_list_for_unknown_owner(self) -> None:
        self.client.smembers.return_value = set()
        assert self.repo.list_for_owner("nobody") == []
        self.client.mget.assert_not_called()

    def test_delete(self) -> None:
        self.client.get.return_value = self._timeline("t1").model_dump_json()

        assert self.repo.delete("t1") is True
        self.pipe.delete.assert_called_once_with("timeline:t1")
        self.pipe.srem.assert_called_once_with("timeline:idx:owner:u1", "t1")

    def test_delete_missing(self) -> None:
        self.client.get.return_value = None
        assert self.repo.delete("t1") is False


class TestRedisUnavailable:
    """Pannes Redis: retries bornés puis erreur typée."""

    def setup_method(self) -> None:
        self.client, self.pipe = _client_with_pipeline()
        self.policy = store_retry_policy(max_attempts=3, base_delay=0.0)

    def test_read_retried_then_typed_error(self) -> None:
        self.client.get.side_effect = redis.ConnectionError("refused")
        repo = RedisCreditRepo(client=self.client, retry_policy=self.policy)

        with pytest.raises(StoreUnavailableError) as exc_info:
            repo.get("u1")

        assert exc_info.value.code == "STORE_UNAVAILABLE"
        assert exc_info.value.details["operation"] == "credits.get"
        assert self.client.get.call_count == 3

    def test_read_recovers_after_timeout(self) -> None:
        state = UserLevelState(user_id="u1", lifetime_points=40)
        stored = json.dumps({**state.model_dump(mode="json"), "version": 2})
        self.client.get.side_effect = [redis.TimeoutError("slow"), stored]
        repo = RedisPointsRepo(client=self.client, retry_policy=self.policy)

        assert repo.load("u1") == (state, 2)

    def test_conditional_write_is_not_retried(self) -> None:
        self.pipe.watch.side_effect = redis.ConnectionError("reset")
        repo = RedisCreditRepo(client=self.client, retry_policy=self.policy)
        balance = CreditBalance(owner_id="u1", remaining=2, period_key="2024-03")

        with pytest.raises(StoreUnavailableError):
            repo.compare_and_set(balance, 0)
        assert self.pipe.watch.call_count == 1

    def test_points_commit_failure_is_typed(self) -> None:
        self.pipe.get.return_value = None
        self.pipe.exists.return_value = 0
        self.pipe.execute.side_effect = redis.ConnectionError("reset")
        repo = RedisPointsRepo(client=self.client, retry_policy=self.policy)
        state = UserLevelState(user_id="u1")

        with pytest.raises(StoreUnavailableError):
            repo.commit("u1", 0, [], state)

    def test_timeline_save_failure_is_typed(self) -> None:
        self.client.pipeline.return_value.execute.side_effect = redis.ConnectionError("down")
        repo = RedisTimelineRepo(client=self.client, retry_policy=self.policy)
        timeline = Timeline(
            id="t1",
            owner_id="u1",
            owner_kind="user",
            outcome_goal="goal",
            timeframe_months=1,
            start_date=NOW.date(),
            end_date=NOW.date(),
            actions=[],
            affirmations=["a"],
            created_at=NOW,
        )

        with pytest.raises(StoreUnavailableError):
            repo.save(timeline)
        assert self.client.pipeline.return_value.execute.call_count == 3

    def test_profile_lookup_failure_is_typed(self) -> None:
        self.client.get.side_effect = redis.ConnectionError("refused")
        repo = RedisNatalProfileRepo(client=self.client, retry_policy=self.policy)

        with pytest.raises(StoreUnavailableError):
            repo.get("u1")
