"""Tests des tiers d'abonnement et de la comptabilité des crédits."""

import datetime as dt
from unittest.mock import Mock

import pytest

from transit_timeline.domain.entities import CreditBalance
from transit_timeline.domain.entitlements import (
    EntitlementGate,
    build_tiers,
    current_period_key,
)
from transit_timeline.domain.errors import (
    ConcurrentModificationError,
    InsufficientCreditsError,
    TimeframeNotAllowedError,
)


def test_anonymous_cannot_request_six_months(gate, anonymous):
    with pytest.raises(TimeframeNotAllowedError) as exc:
        gate.check(anonymous, 6)
    assert exc.value.details["max_timeframe_months"] == 3


def test_free_limited_to_three_months(gate, free_user):
    assert gate.check(free_user, 3).name == "free"
    with pytest.raises(TimeframeNotAllowedError):
        gate.check(free_user, 12)


def test_premium_allows_twelve_months(gate, premium_user):
    assert gate.check(premium_user, 12).can_see_all_actions is True


@pytest.mark.parametrize("months", [0, 2, 5, 24, -1])
def test_unsupported_timeframes_rejected(gate, premium_user, months):
    with pytest.raises(TimeframeNotAllowedError):
        gate.check(premium_user, months)


def test_debit_consumes_monthly_allotment(gate, free_user):
    assert gate.balance(free_user).remaining == 3
    assert gate.debit(free_user).remaining == 2
    assert gate.debit(free_user).remaining == 1
    assert gate.debit(free_user).remaining == 0

    with pytest.raises(InsufficientCreditsError):
        gate.debit(free_user)
    assert gate.balance(free_user).remaining == 0


def test_balance_resets_on_new_calendar_month(gate, credit_repo, free_user, clock):
    credit_repo.compare_and_set(
        CreditBalance(owner_id=free_user.id, remaining=0, period_key="2024-03"), 0
    )
    assert gate.balance(free_user).remaining == 0

    clock.advance(days=30)  # 2024-04-09
    balance = gate.balance(free_user)
    assert balance.period_key == "2024-04"
    assert balance.remaining == 3
    assert gate.debit(free_user).remaining == 2


def test_anonymous_credit_uses_rolling_window(gate, anonymous, clock):
    first = gate.debit(anonymous)
    assert first.period_key == "2024-03-10"
    assert first.remaining == 0

    clock.advance(days=29)
    with pytest.raises(InsufficientCreditsError):
        gate.debit(anonymous)

    clock.advance(days=1)
    renewed = gate.debit(anonymous)
    assert renewed.period_key == "2024-04-09"
    assert renewed.remaining == 0


def test_current_period_key_ignores_unreadable_window():
    tier = build_tiers()["anonymous"]
    stale = CreditBalance(owner_id="a", remaining=0, period_key="garbage")
    assert current_period_key(tier, dt.date(2024, 3, 10), stale) == "2024-03-10"


def test_restore_returns_debited_credit(gate, free_user):
    debited = gate.debit(free_user)
    restored = gate.restore(free_user, debited.period_key)
    assert restored is not None
    assert restored.remaining == 3


def test_restore_never_exceeds_allotment(gate, free_user):
    gate.debit(free_user)
    gate.restore(free_user)
    assert gate.restore(free_user) is None
    assert gate.balance(free_user).remaining == 3


def test_restore_is_noop_without_stored_balance(gate, free_user):
    assert gate.restore(free_user) is None


def test_restore_is_noop_after_period_rollover(gate, free_user, clock):
    debited = gate.debit(free_user)
    clock.advance(days=30)
    assert gate.restore(free_user, debited.period_key) is None
    assert gate.balance(free_user).remaining == 3


def test_debit_retries_on_cas_conflict(clock, free_user):
    repo = Mock()
    repo.get.return_value = (None, 0)
    repo.compare_and_set.side_effect = [False, True]
    gate = EntitlementGate(repo, clock=clock)

    assert gate.debit(free_user).remaining == 2
    assert repo.compare_and_set.call_count == 2


def test_debit_raises_after_persistent_conflict(clock, free_user):
    repo = Mock()
    repo.get.return_value = (None, 0)
    repo.compare_and_set.return_value = False
    gate = EntitlementGate(repo, clock=clock, cas_max_attempts=3)

    with pytest.raises(ConcurrentModificationError):
        gate.debit(free_user)
    assert repo.compare_and_set.call_count == 3


def test_configured_credit_allotments(credit_repo, clock, premium_user):
    gate = EntitlementGate(credit_repo, tiers=build_tiers(premium_credits=2), clock=clock)
    gate.debit(premium_user)
    gate.debit(premium_user)
    with pytest.raises(InsufficientCreditsError):
        gate.debit(premium_user)


def test_tiers_listing(gate):
    names = [t.name for t in gate.tiers()]
    assert names == ["anonymous", "free", "premium"]
