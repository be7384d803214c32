from __future__ import annotations

import logging
import math
from collections import defaultdict
from datetime import date, datetime, time, timedelta
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import TYPE_CHECKING, Any, Iterable, Optional

from core.errors import PersistenceError
from django.db import DatabaseError, transaction
from django.utils import timezone
from fees.services.nav import PortfolioTotals
from portfolio.models import DailySnapshot, TrackedWallet
from portfolio.services.identity import Protocol, Token

if TYPE_CHECKING:
    from portfolio.services.wallet_processor import EnrichedWallet

log = logging.getLogger(__name__)

USD_Q = Decimal("0.01")
ZERO = Decimal("0")


def _q_usd(x: Decimal) -> Decimal:
    return x.quantize(USD_Q, rounding=ROUND_HALF_UP)


def sanitize_usd(value: Any) -> Decimal:
    """
    Coerce an upstream USD figure to a finite, non-negative Decimal.
    None, NaN, +/-inf and anything non-numeric become 0; negatives floor to 0.
    """
    if value is None or isinstance(value, bool):
        return ZERO
    if isinstance(value, float) and not math.isfinite(value):
        return ZERO
    try:
        d = Decimal(str(value))
    except (InvalidOperation, ValueError, TypeError):
        return ZERO
    if not d.is_finite() or d < 0:
        return ZERO
    return _q_usd(d)


def local_date(moment: datetime | None = None) -> date:
    """Calendar day of ``moment`` in the deployment's reference time zone."""
    moment = moment or timezone.now()
    if timezone.is_naive(moment):
        moment = timezone.make_aware(moment)
    return timezone.localtime(moment).date()


def day_bounds(moment: datetime | None = None) -> tuple[datetime, datetime]:
    d = local_date(moment)
    tz = timezone.get_current_timezone()
    start = timezone.make_aware(datetime.combine(d, time.min), tz)
    end = timezone.make_aware(datetime.combine(d + timedelta(days=1), time.min), tz)
    return start, end - timedelta(microseconds=1)


def position_records(protocols: Iterable[Protocol]) -> list[dict]:
    """Flatten protocols into one JSON record per deduplicated position."""
    records = []
    for proto in protocols:
        for pos in proto.positions:
            records.append(
                {
                    "protocol_id": proto.protocol_id,
                    "protocol_name": proto.name,
                    "chain": pos.chain or proto.chain,
                    "position_id": pos.position_id,
                    "position_name": pos.name,
                    "pool_id": pos.pool_id,
                    "supply_tokens": [t.as_dict() for t in pos.supply_tokens],
                    "reward_tokens": [t.as_dict() for t in pos.reward_tokens],
                    "total_usd_value": str(sanitize_usd(pos.total_usd_value)),
                    "unclaimed_rewards_usd": str(
                        sanitize_usd(pos.unclaimed_rewards_usd)
                    ),
                }
            )
    return records


def _chain_distribution(tokens: Iterable[Token]) -> dict[str, str]:
    dist: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for t in tokens:
        dist[t.chain or "unknown"] += sanitize_usd(t.usd_value)
    return {k: str(v) for k, v in sorted(dist.items())}


def _protocol_distribution(protocols: Iterable[Protocol]) -> dict[str, str]:
    dist: dict[str, Decimal] = defaultdict(lambda: ZERO)
    for p in protocols:
        dist[p.name] += sanitize_usd(p.net_usd_value)
    return {k: str(v) for k, v in sorted(dist.items())}


def upsert_snapshot(
    *,
    user,
    wallet_address: str,
    wallet: "EnrichedWallet",
    now: datetime | None = None,
) -> DailySnapshot:
    """
    Write today's valuation for (user, wallet). A second refresh on the same
    local day overwrites the existing row in place; the later write wins.
    """
    now = now or timezone.now()
    address = wallet_address.strip().lower()
    day = local_date(now)

    tokens_usd = sum((sanitize_usd(t.usd_value) for t in wallet.tokens), ZERO)
    positions_usd = sum(
        (sanitize_usd(p.net_usd_value) for p in wallet.protocols), ZERO
    )

    defaults = {
        "captured_at": now,
        "tokens_nav_usd": tokens_usd,
        "positions_nav_usd": positions_usd,
        "total_nav_usd": tokens_usd + positions_usd,
        "tokens": [t.as_dict() for t in wallet.tokens],
        "positions": position_records(wallet.protocols),
        "chain_distribution": _chain_distribution(wallet.tokens),
        "protocol_distribution": _protocol_distribution(wallet.protocols),
        "data_source": wallet.data_source,
        "processing_ms": max(int(wallet.processing_ms or 0), 0),
    }

    try:
        with transaction.atomic():
            snap, created = DailySnapshot.objects.update_or_create(
                user=user,
                wallet_address=address,
                date=day,
                defaults=defaults,
            )
    except DatabaseError as e:
        log.exception("Snapshot upsert failed for user=%s wallet=%s", user.pk, address)
        raise PersistenceError(
            f"Could not save snapshot for {day}: {e}",
            user_id=user.pk,
            wallet_address=address,
        ) from e

    log.info(
        "%s snapshot user=%s wallet=%s date=%s total=%s",
        "Created" if created else "Updated",
        user.pk,
        address,
        day,
        snap.total_nav_usd,
    )
    return snap


def get_history(
    *,
    user,
    wallet_address: str | None = None,
    start: date | None = None,
    end: date | None = None,
) -> list[DailySnapshot]:
    qs = DailySnapshot.objects.filter(user=user)
    if wallet_address:
        qs = qs.filter(wallet_address=wallet_address.strip().lower())
    if start:
        qs = qs.filter(date__gte=start)
    if end:
        qs = qs.filter(date__lte=end)
    return list(qs.order_by("date", "wallet_address"))


def get_latest_snapshot(
    *, user, wallet_address: str, on_or_before: date | None = None
) -> Optional[DailySnapshot]:
    qs = DailySnapshot.objects.filter(
        user=user, wallet_address=wallet_address.strip().lower()
    )
    if on_or_before:
        qs = qs.filter(date__lte=on_or_before)
    return qs.order_by("-date").first()


def _snapshot_rewards(snap: DailySnapshot) -> Decimal:
    total = ZERO
    for rec in snap.positions or []:
        total += sanitize_usd(rec.get("unclaimed_rewards_usd"))
    return total


def get_portfolio_totals(*, user, as_of: date | None = None) -> PortfolioTotals:
    """
    Sum the latest snapshot on or before ``as_of`` of every wallet the user
    tracks (or, with no tracked wallets, every wallet that has snapshots).
    """
    addresses = list(
        TrackedWallet.objects.filter(user=user, is_active=True).values_list(
            "address", flat=True
        )
    )
    if not addresses:
        addresses = list(
            DailySnapshot.objects.filter(user=user)
            .values_list("wallet_address", flat=True)
            .distinct()
        )

    tokens = positions = rewards = ZERO
    for address in addresses:
        snap = get_latest_snapshot(
            user=user, wallet_address=address, on_or_before=as_of
        )
        if not snap:
            continue
        tokens += sanitize_usd(snap.tokens_nav_usd)
        positions += sanitize_usd(snap.positions_nav_usd)
        rewards += _snapshot_rewards(snap)

    return PortfolioTotals(
        tokens_value=tokens,
        positions_value=positions,
        unclaimed_rewards_value=rewards,
    )
