from __future__ import annotations

import math
from datetime import date, timedelta
from decimal import Decimal

import pytest
from core.errors import InvalidInputError
from django.utils import timezone
from performance.services.apy import (
    MAX_APY_PCT,
    Confidence,
    annualize,
    calculate_all_position_apys,
    get_apy,
)
from portfolio.models import PositionHistory
from tests.conftest import WALLET_A, WALLET_B

TARGET = date(2024, 3, 15)


def _row(user, pid, day, value, rewards, *, active=True, wallet=WALLET_A):
    return PositionHistory.objects.create(
        user=user,
        wallet_address=wallet,
        protocol_name="Aave V3",
        position_name="Lending",
        debank_position_id=pid,
        date=day,
        captured_at=timezone.now(),
        total_value=Decimal(str(value)),
        unclaimed_rewards_value=Decimal(str(rewards)),
        is_active=active,
    )


def _expected(r, days):
    return math.expm1((365.0 / days) * math.log1p(r)) * 100.0


def _apy(user, *, period_days, pid="p1"):
    return calculate_all_position_apys(
        user=user, target_date=TARGET, period_days=period_days
    )[pid]


def test_annualize_edges():
    assert annualize(0.01, 0) == (0.0, False)
    assert annualize(0.01, -3) == (0.0, False)
    assert annualize(-1.5, 30) == (-100.0, False)
    assert annualize(float("nan"), 30) == (0.0, False)
    assert annualize(10.0, 1) == (MAX_APY_PCT, True)

    apy, clamped = annualize(0.001, 1)
    assert not clamped
    assert apy == pytest.approx(_expected(0.001, 1))


@pytest.mark.django_db
def test_existing_position_uses_rewards_delta(user):
    _row(user, "p1", TARGET - timedelta(days=1), 1000, 0)
    _row(user, "p1", TARGET, 1000, 1)

    res = _apy(user, period_days=1)

    assert res.is_new_position is False
    assert res.confidence == Confidence.HIGH
    assert res.days == 1.0
    assert res.rewards_earned == pytest.approx(1.0)
    assert res.apy == pytest.approx(_expected(0.001, 1))
    assert res.warnings == []


@pytest.mark.django_db
def test_new_position_is_estimated_with_low_confidence(user):
    _row(user, "p1", TARGET, 1000, 0.5)

    res = _apy(user, period_days=1)

    assert res.is_new_position is True
    assert res.confidence == Confidence.LOW
    assert res.apy == pytest.approx(_expected(0.0005, 1))
    assert res.warnings


@pytest.mark.django_db
def test_zero_value_position_has_defined_apy(user):
    _row(user, "p1", TARGET - timedelta(days=1), 0, 0)
    _row(user, "p1", TARGET, 0, 0)

    res = _apy(user, period_days=1)

    assert res.apy == 0.0
    assert res.confidence == Confidence.LOW
    assert math.isfinite(res.apy)


@pytest.mark.django_db
def test_zero_period_is_low_confidence_not_an_error(user):
    _row(user, "p1", TARGET, 1000, 1)

    res = _apy(user, period_days=0)

    assert res.apy == 0.0
    assert res.confidence == Confidence.LOW


@pytest.mark.django_db
def test_claimed_rewards_fall_back_to_current_rewards(user):
    _row(user, "p1", TARGET - timedelta(days=1), 1000, 5)
    _row(user, "p1", TARGET, 1000, 1)

    res = _apy(user, period_days=1)

    assert res.rewards_earned == pytest.approx(1.0)
    assert any("dropped" in w for w in res.warnings)


@pytest.mark.django_db
def test_gap_in_history_lowers_confidence(user):
    _row(user, "p1", TARGET - timedelta(days=7), 1000, 0)
    _row(user, "p1", TARGET, 1000, 1)

    res = _apy(user, period_days=7)

    assert res.confidence == Confidence.MEDIUM
    assert res.apy == pytest.approx(_expected(0.001, 7))


@pytest.mark.django_db
def test_apy_above_ceiling_is_flagged(user):
    _row(user, "p1", TARGET - timedelta(days=1), 1000, 0)
    _row(user, "p1", TARGET, 1000, 10)

    res = _apy(user, period_days=1)

    assert res.apy > 100
    assert res.confidence == Confidence.LOW
    assert any("sanity ceiling" in w for w in res.warnings)


@pytest.mark.django_db
def test_inactive_positions_are_skipped(user):
    _row(user, "p1", TARGET - timedelta(days=1), 1000, 0)
    _row(user, "p1", TARGET, 1000, 0, active=False)

    assert calculate_all_position_apys(user=user, target_date=TARGET) == {}


@pytest.mark.django_db
def test_reopened_position_is_low_confidence(user):
    _row(user, "p1", TARGET - timedelta(days=2), 1000, 0)
    _row(user, "p1", TARGET - timedelta(days=1), 1000, 0, active=False)
    _row(user, "p1", TARGET, 1000, 0.1)

    res = _apy(user, period_days=1)

    assert res.confidence == Confidence.LOW


@pytest.mark.django_db
def test_statistical_outlier_is_downgraded(user):
    for i, rewards in enumerate([1.0, 1.1, 1.2, 1.3, 15.0]):
        pid = f"p{i}"
        _row(user, pid, TARGET - timedelta(days=1), 10000, 0)
        _row(user, pid, TARGET, 10000, rewards)

    results = calculate_all_position_apys(
        user=user, target_date=TARGET, period_days=1
    )

    assert results["p4"].confidence == Confidence.LOW
    assert any("outlier" in w for w in results["p4"].warnings)
    for pid in ("p0", "p1", "p2", "p3"):
        assert results[pid].confidence == Confidence.HIGH


@pytest.mark.django_db
def test_same_id_in_two_wallets_is_keyed_by_wallet(user):
    _row(user, "p1", TARGET, 1000, 0.1, wallet=WALLET_A)
    _row(user, "p1", TARGET, 2000, 0.1, wallet=WALLET_B)

    results = get_apy(user=user, target_date=TARGET)

    assert set(results) == {f"{WALLET_A}:p1", f"{WALLET_B}:p1"}
    assert results[f"{WALLET_B}:p1"]["current_value"] == 2000.0


@pytest.mark.django_db
def test_empty_history(user):
    assert calculate_all_position_apys(user=user, target_date=TARGET) == {}


@pytest.mark.django_db
@pytest.mark.parametrize("period_days", [-1, "7", 1.5, True])
def test_invalid_period_is_rejected(user, period_days):
    with pytest.raises(InvalidInputError):
        calculate_all_position_apys(
            user=user, target_date=TARGET, period_days=period_days
        )


@pytest.mark.django_db
def test_invalid_target_date_is_rejected(user):
    with pytest.raises(InvalidInputError):
        calculate_all_position_apys(user=user, target_date="2024-03-15")
