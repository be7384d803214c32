from __future__ import annotations

import logging
from datetime import datetime
from typing import Iterable

from core.errors import PersistenceError
from django.db import DatabaseError, transaction
from django.db.models import Max
from django.utils import timezone
from portfolio.models import PositionHistory
from portfolio.services.identity import Protocol
from portfolio.services.snapshots import local_date, sanitize_usd

log = logging.getLogger(__name__)


def record_positions(
    *,
    user,
    wallet_address: str,
    protocols: Iterable[Protocol],
    now: datetime | None = None,
) -> list[PositionHistory]:
    """Upsert today's row for every deduplicated position of the wallet."""
    now = now or timezone.now()
    address = wallet_address.strip().lower()
    day = local_date(now)

    rows: list[PositionHistory] = []
    try:
        with transaction.atomic():
            for proto in protocols:
                for pos in proto.positions:
                    row, _ = PositionHistory.objects.update_or_create(
                        user=user,
                        wallet_address=address,
                        protocol_name=proto.name,
                        debank_position_id=pos.position_id,
                        date=day,
                        defaults={
                            "position_name": pos.name,
                            "captured_at": now,
                            "total_value": sanitize_usd(pos.total_usd_value),
                            "unclaimed_rewards_value": sanitize_usd(
                                pos.unclaimed_rewards_usd
                            ),
                            "tokens": [t.as_dict() for t in pos.supply_tokens],
                            "rewards": [t.as_dict() for t in pos.reward_tokens],
                            "is_active": True,
                            "protocol_data": {
                                "protocol_id": proto.protocol_id,
                                "chain": pos.chain or proto.chain,
                                "pool_id": pos.pool_id,
                                "position_key": pos.position_key,
                            },
                        },
                    )
                    rows.append(row)
    except DatabaseError as e:
        log.exception("Position history write failed for wallet=%s", address)
        raise PersistenceError(
            f"Could not save position history for {day}: {e}",
            user_id=user.pk,
            wallet_address=address,
        ) from e

    return rows


def mark_inactive_positions(
    *,
    user,
    wallet_address: str,
    active_ids: Iterable[tuple[str, str]],
    skip_chains: Iterable[str] = (),
    now: datetime | None = None,
) -> int:
    """
    Positions of this wallet that did not come back in the latest refresh get
    a row for today with ``is_active=False`` (values carried over from their
    last row). Earlier history is left untouched.

    ``active_ids`` holds (protocol_name, position_id) pairs seen today.
    Positions last seen on a chain in ``skip_chains`` (chains that failed to
    load) keep their state.
    """
    now = now or timezone.now()
    address = wallet_address.strip().lower()
    day = local_date(now)
    seen = set(active_ids)
    skipped = {c for c in skip_chains if c}

    latest_dates = (
        PositionHistory.objects.filter(user=user, wallet_address=address)
        .values("protocol_name", "debank_position_id")
        .annotate(last_date=Max("date"))
    )

    marked = 0
    try:
        with transaction.atomic():
            for entry in latest_dates:
                key = (entry["protocol_name"], entry["debank_position_id"])
                if key in seen:
                    continue

                last = PositionHistory.objects.get(
                    user=user,
                    wallet_address=address,
                    protocol_name=key[0],
                    debank_position_id=key[1],
                    date=entry["last_date"],
                )
                if not last.is_active:
                    continue
                if (last.protocol_data or {}).get("chain") in skipped:
                    continue

                PositionHistory.objects.update_or_create(
                    user=user,
                    wallet_address=address,
                    protocol_name=key[0],
                    debank_position_id=key[1],
                    date=day,
                    defaults={
                        "position_name": last.position_name,
                        "captured_at": now,
                        "total_value": last.total_value,
                        "unclaimed_rewards_value": last.unclaimed_rewards_value,
                        "tokens": last.tokens,
                        "rewards": last.rewards,
                        "is_active": False,
                        "protocol_data": last.protocol_data,
                    },
                )
                marked += 1
    except DatabaseError as e:
        log.exception("Marking inactive positions failed for wallet=%s", address)
        raise PersistenceError(
            f"Could not mark inactive positions for {day}: {e}",
            user_id=user.pk,
            wallet_address=address,
        ) from e

    if marked:
        log.info("Marked %s position(s) inactive for wallet=%s", marked, address)
    return marked


def get_position_history(
    *, user, position_id: str, limit: int = 30, include_inactive: bool = False
) -> list[PositionHistory]:
    qs = PositionHistory.objects.filter(user=user, debank_position_id=position_id)
    if not include_inactive:
        qs = qs.filter(is_active=True)
    return list(qs.order_by("-date")[:limit])
