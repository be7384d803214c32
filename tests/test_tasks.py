from __future__ import annotations

from datetime import timedelta
from decimal import Decimal

import pytest
from django.utils import timezone
from fees.tasks import compute_monthly_nav_task
from performance.tasks import compute_position_apys_task
from portfolio.models import PositionHistory
from tests.conftest import WALLET_A


@pytest.mark.django_db
def test_compute_monthly_nav_task_runs_inline(user):
    out = compute_monthly_nav_task(
        user_id=user.pk, year=2024, month=3, fee_settings={"monthly_expense": "0"}
    )

    assert out["period"] == "2024-03"
    assert out["pre_fee_nav"] == "0.00"
    assert out["validation_warnings"] == []


@pytest.mark.django_db
def test_compute_position_apys_task_runs_inline(user):
    day = timezone.localdate()
    for offset, rewards in ((1, "0"), (0, "1")):
        PositionHistory.objects.create(
            user=user,
            wallet_address=WALLET_A,
            protocol_name="Aave V3",
            debank_position_id="p1",
            date=day - timedelta(days=offset),
            captured_at=timezone.now(),
            total_value=Decimal("1000"),
            unclaimed_rewards_value=Decimal(rewards),
        )

    out = compute_position_apys_task(
        user_id=user.pk, target_date=day.isoformat(), period_days=1
    )

    assert set(out["positions"]) == {"p1"}
    assert out["positions"]["p1"]["confidence"] == "high"
