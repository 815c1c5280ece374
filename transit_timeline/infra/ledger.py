"""Stockage versionné des crédits et du registre de points.

Chaque enregistrement porte un numéro de version: une écriture n'est acceptée que si la version
lue n'a pas changé entre-temps (compare-and-set). En mémoire la comparaison se fait sous verrou;
avec Redis via WATCH/MULTI/EXEC. Un conflit se traduit par un retour `False`, jamais par une
exception: c'est l'appelant qui relit et rejoue. Une panne Redis remonte en
`StoreUnavailableError`.
"""

import json
import logging
import threading
from collections.abc import Sequence

import redis

from transit_timeline.domain.entities import CreditBalance, PointsLedgerEntry, UserLevelState
from transit_timeline.infra.redis_store import RedisRepo

log = logging.getLogger(__name__)


class InMemoryCreditRepo:
    """Soldes de crédits en mémoire (dev/tests)."""

    def __init__(self):
        self._db: dict[str, tuple[CreditBalance, int]] = {}
        self._lock = threading.Lock()

    def get(self, owner_id: str) -> tuple[CreditBalance | None, int]:
        """Retourne (solde, version); (None, 0) si jamais écrit."""
        with self._lock:
            return self._db.get(owner_id, (None, 0))

    def compare_and_set(self, balance: CreditBalance, expected_version: int) -> bool:
        """Écrit `balance` si la version courante vaut `expected_version`."""
        with self._lock:
            _, current = self._db.get(balance.owner_id, (None, 0))
            if current != expected_version:
                return False
            self._db[balance.owner_id] = (balance, current + 1)
            return True


class RedisCreditRepo(RedisRepo):
    """Soldes de crédits Redis (clé: `credits:{owner_id}`, JSON versionné)."""

    @staticmethod
    def _key(owner_id: str) -> str:
        return f"credits:{owner_id}"

    def get(self, owner_id: str) -> tuple[CreditBalance | None, int]:
        raw = self._io("credits.get", lambda: self.client.get(self._key(owner_id)))
        if not raw:
            return None, 0
        data = json.loads(raw)
        version = data.pop("version")
        return CreditBalance.model_validate(data), version

    def compare_and_set(self, balance: CreditBalance, expected_version: int) -> bool:
        return self._io(
            "credits.compare_and_set",
            lambda: self._compare_and_set(balance, expected_version),
            retry=False,
        )

    def _compare_and_set(self, balance: CreditBalance, expected_version: int) -> bool:
        key = self._key(balance.owner_id)
        with self.client.pipeline() as pipe:
            try:
                pipe.watch(key)
                raw = pipe.get(key)
                current = json.loads(raw)["version"] if raw else 0
                if current != expected_version:
                    pipe.unwatch()
                    return False
                payload = {**balance.model_dump(), "version": current + 1}
                pipe.multi()
                pipe.set(key, json.dumps(payload))
                pipe.execute()
                return True
            except redis.WatchError:
                log.debug("credit_cas_conflict owner=%s", balance.owner_id)
                return False


class InMemoryPointsRepo:
    """Registre de points et état de niveau en mémoire (dev/tests)."""

    def __init__(self):
        self._states: dict[str, tuple[UserLevelState, int]] = {}
        self._entries: dict[str, list[PointsLedgerEntry]] = {}
        self._dedupe: set[str] = set()
        self._lock = threading.Lock()

    def load(self, user_id: str) -> tuple[UserLevelState, int]:
        """Retourne (état, version); un état vierge en version 0 si inconnu."""
        with self._lock:
            return self._states.get(user_id, (UserLevelState(user_id=user_id), 0))

    def has_entry(self, dedupe_key: str) -> bool:
        with self._lock:
            return dedupe_key in self._dedupe

    def commit(
        self,
        user_id: str,
        expected_version: int,
        entries: Sequence[PointsLedgerEntry],
        state: UserLevelState,
    ) -> bool:
        """Ajoute `entries` et remplace l'état, atomiquement.

        Refuse (False) si la version a bougé ou si une clé de déduplication existe déjà.
        """
        with self._lock:
            _, current = self._states.get(user_id, (None, 0))
            if current != expected_version:
                return False
            if any(e.dedupe_key in self._dedupe for e in entries):
                return False
            self._entries.setdefault(user_id, []).extend(entries)
            self._dedupe.update(e.dedupe_key for e in entries)
            self._states[user_id] = (state, current + 1)
            return True

    def entries(self, user_id: str, limit: int | None = None) -> list[PointsLedgerEntry]:
        """Écritures de l'utilisateur, la plus récente d'abord."""
        with self._lock:
            items = list(reversed(self._entries.get(user_id, [])))
        return items[:limit] if limit is not None else items

    def count(self, user_id: str, event_type: str) -> int:
        with self._lock:
            return sum(1 for e in self._entries.get(user_id, []) if e.event_type == event_type)

    def top(self, limit: int = 10) -> list[UserLevelState]:
        """États triés par points cumulés décroissants."""
        with self._lock:
            states = [s for s, _ in self._states.values()]
        states.sort(key=lambda s: (-s.lifetime_points, s.user_id))
        return states[:limit]


class RedisPointsRepo(RedisRepo):
    """Registre de points Redis.

    Clés:
    - `points:state:{user}`: état JSON versionné
    - `points:ledger:{user}`: liste des écritures (LPUSH, la plus récente en tête)
    - `points:dedupe:{dedupe_key}`: marqueur d'unicité
    - `points:leaderboard`: zset user -> lifetime_points
    """

    LEADERBOARD_KEY = "points:leaderboard"

    @staticmethod
    def _state_key(user_id: str) -> str:
        return f"points:state:{user_id}"

    @staticmethod
    def _ledger_key(user_id: str) -> str:
        return f"points:ledger:{user_id}"

    @staticmethod
    def _dedupe_key(dedupe_key: str) -> str:
        return f"points:dedupe:{dedupe_key}"

    def load(self, user_id: str) -> tuple[UserLevelState, int]:
        raw = self._io("points.load", lambda: self.client.get(self._state_key(user_id)))
        if not raw:
            return UserLevelState(user_id=user_id), 0
        data = json.loads(raw)
        version = data.pop("version")
        return UserLevelState.model_validate(data), version

    def has_entry(self, dedupe_key: str) -> bool:
        return bool(
            self._io("points.has_entry", lambda: self.client.exists(self._dedupe_key(dedupe_key)))
        )

    def commit(
        self,
        user_id: str,
        expected_version: int,
        entries: Sequence[PointsLedgerEntry],
        state: UserLevelState,
    ) -> bool:
        return self._io(
            "points.commit",
            lambda: self._commit(user_id, expected_version, entries, state),
            retry=False,
        )

    def _commit(
        self,
        user_id: str,
        expected_version: int,
        entries: Sequence[PointsLedgerEntry],
        state: UserLevelState,
    ) -> bool:
        state_key = self._state_key(user_id)
        dedupe_keys = [self._dedupe_key(e.dedupe_key) for e in entries]
        with self.client.pipeline() as pipe:
            try:
                pipe.watch(state_key, *dedupe_keys)
                raw = pipe.get(state_key)
                current = json.loads(raw)["version"] if raw else 0
                if current != expected_version or (dedupe_keys and pipe.exists(*dedupe_keys)):
                    pipe.unwatch()
                    return False
                pipe.multi()
                for entry, dkey in zip(entries, dedupe_keys, strict=True):
                    pipe.set(dkey, "1")
                    pipe.lpush(self._ledger_key(user_id), entry.model_dump_json())
                payload = {**state.model_dump(mode="json"), "version": current + 1}
                pipe.set(state_key, json.dumps(payload))
                pipe.zadd(self.LEADERBOARD_KEY, {user_id: state.lifetime_points})
                pipe.execute()
                return True
            except redis.WatchError:
                log.debug("points_cas_conflict user=%s", user_id)
                return False

    def entries(self, user_id: str, limit: int | None = None) -> list[PointsLedgerEntry]:
        if limit == 0:
            return []
        stop = -1 if limit is None else max(0, limit - 1)
        raws = self._io(
            "points.entries", lambda: self.client.lrange(self._ledger_key(user_id), 0, stop)
        )
        return [PointsLedgerEntry.model_validate_json(r) for r in raws]

    def count(self, user_id: str, event_type: str) -> int:
        return sum(1 for e in self.entries(user_id) if e.event_type == event_type)

    def top(self, limit: int = 10) -> list[UserLevelState]:
        user_ids = self._io(
            "points.top",
            lambda: self.client.zrevrange(self.LEADERBOARD_KEY, 0, max(0, limit - 1)),
        )
        return [self.load(uid)[0] for uid in user_ids]
