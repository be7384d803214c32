from __future__ import annotations

from celery import shared_task
from django.contrib.auth import get_user_model
from fees.services.nav_settings import compute_and_save_nav


@shared_task(bind=True, autoretry_for=(Exception,), retry_backoff=True, max_retries=5)
def compute_monthly_nav_task(
    self,
    *,
    user_id: int,
    year: int,
    month: int,
    fee_settings: dict | None = None,
) -> dict:
    user = get_user_model().objects.get(pk=user_id)
    nav = compute_and_save_nav(
        user=user, year=year, month=month, fee_settings=fee_settings
    )
    return {
        "user_id": user_id,
        "period": nav.period,
        "pre_fee_nav": str(nav.pre_fee_nav),
        "performance_fee": str(nav.performance_fee),
        "accrued_performance_fees": str(nav.accrued_performance_fees),
        "net_assets": str(nav.net_assets),
        "validation_warnings": nav.validation_warnings,
    }
