from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pandas as pd
import pytest
from core.errors import InvalidInputError
from django.utils import timezone
from performance.services.portfolio_metrics import (
    _compute_max_drawdown,
    compute_performance_metrics,
    compute_pnl,
)
from portfolio.models import DailySnapshot
from tests.conftest import WALLET_A, WALLET_B

AS_OF = date(2024, 3, 31)


def _snap(user, day, total, wallet=WALLET_A):
    return DailySnapshot.objects.create(
        user=user,
        wallet_address=wallet,
        date=day,
        captured_at=timezone.now(),
        total_nav_usd=Decimal(str(total)),
        tokens_nav_usd=Decimal(str(total)),
    )


def test_max_drawdown():
    nav = pd.Series([100.0, 120.0, 90.0, 130.0])
    assert _compute_max_drawdown(nav) == pytest.approx(-0.25)
    assert _compute_max_drawdown(pd.Series([100.0])) == 0.0


@pytest.mark.django_db
def test_daily_pnl_sums_wallets(user):
    _snap(user, AS_OF - timedelta(days=1), 1000)
    _snap(user, AS_OF - timedelta(days=1), 500, wallet=WALLET_B)
    _snap(user, AS_OF, 1100)
    _snap(user, AS_OF, 550, wallet=WALLET_B)

    res = compute_pnl(user=user, report_type="daily", as_of=AS_OF)

    assert res.previous_value == Decimal("1500.00")
    assert res.current_value == Decimal("1650.00")
    assert res.pnl == Decimal("150.00")
    assert res.pnl_pct == Decimal("10.00")


@pytest.mark.django_db
def test_pnl_without_history(user):
    res = compute_pnl(user=user, report_type="weekly", as_of=AS_OF)
    assert res.pnl == Decimal("0.00")
    assert res.pnl_pct == Decimal("0.00")


@pytest.mark.django_db
def test_pnl_rejects_unknown_report_type(user):
    with pytest.raises(InvalidInputError):
        compute_pnl(user=user, report_type="hourly")


@pytest.mark.django_db
def test_performance_metrics(user):
    for i, total in enumerate([1000, 1010, 1005, 1020]):
        _snap(user, AS_OF - timedelta(days=3 - i), total)

    m = compute_performance_metrics(user=user, period_days=30, as_of=AS_OF)

    assert m.observations == 4
    assert m.total_return_pct == pytest.approx(2.0)
    assert m.win_rate_pct == pytest.approx(66.6667)
    assert m.max_drawdown_pct < 0
    assert m.volatility_pct > 0


@pytest.mark.django_db
def test_performance_metrics_need_two_points(user):
    _snap(user, AS_OF, 1000)
    m = compute_performance_metrics(user=user, as_of=AS_OF)
    assert m.observations == 1
    assert m.total_return_pct == 0.0


@pytest.mark.django_db
def test_performance_metrics_rejects_bad_period(user):
    with pytest.raises(InvalidInputError):
        compute_performance_metrics(user=user, period_days=0)
