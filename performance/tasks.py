from __future__ import annotations

from datetime import date

from celery import shared_task
from django.contrib.auth import get_user_model
from performance.services.apy import get_apy


@shared_task(bind=True, autoretry_for=(Exception,), retry_backoff=True, max_retries=5)
def compute_position_apys_task(
    self,
    *,
    user_id: int,
    target_date: str | None = None,
    period_days: int | None = None,
) -> dict:
    user = get_user_model().objects.get(pk=user_id)
    apys = get_apy(
        user=user,
        target_date=date.fromisoformat(target_date) if target_date else None,
        period_days=period_days,
    )
    return {
        "user_id": user_id,
        "target_date": target_date,
        "period_days": period_days,
        "positions": apys,
    }
