from __future__ import annotations

from celery import shared_task
from django.contrib.auth import get_user_model
from portfolio.models import TrackedWallet
from portfolio.services.wallet_processor import refresh_user_wallets


@shared_task(bind=True, autoretry_for=(Exception,), retry_backoff=True, max_retries=5)
def refresh_user_wallets_task(self, *, user_id: int) -> dict:
    user = get_user_model().objects.get(pk=user_id)
    results = refresh_user_wallets(user=user)
    return {
        "user_id": user_id,
        "wallets": [r.as_dict() for r in results],
        "fallbacks": sum(1 for r in results if r.is_fallback),
    }


@shared_task(bind=True)
def refresh_all_wallets_task(self) -> dict:
    """Queue one refresh per user that has active tracked wallets."""
    user_ids = sorted(
        set(
            TrackedWallet.objects.filter(is_active=True).values_list(
                "user_id", flat=True
            )
        )
    )
    for user_id in user_ids:
        refresh_user_wallets_task.delay(user_id=user_id)
    return {"queued": len(user_ids), "user_ids": user_ids}
