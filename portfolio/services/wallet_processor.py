from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Iterable, List, Optional

from core.errors import UpstreamFetchError
from django.conf import settings
from django.db import connection, transaction
from portfolio.models import DailySnapshot, TrackedWallet
from portfolio.services.identity import (
    Protocol,
    Token,
    count_positions,
    dedupe_protocols,
)
from portfolio.services.position_history import (
    mark_inactive_positions,
    record_positions,
)
from portfolio.services.snapshots import get_latest_snapshot, upsert_snapshot
from services.debank.client import DebankClient
from services.market_data.price_provider import CoinGeckoPriceProvider

log = logging.getLogger(__name__)


@dataclass
class EnrichedWallet:
    address: str
    tokens: List[Token] = field(default_factory=list)
    protocols: List[Protocol] = field(default_factory=list)
    failed_chains: List[str] = field(default_factory=list)
    processing_ms: int = 0
    data_source: str = "debank"

    @property
    def tokens_usd(self) -> float:
        return sum(t.usd_value for t in self.tokens)

    @property
    def positions_usd(self) -> float:
        return sum(p.net_usd_value for p in self.protocols)

    @property
    def total_usd(self) -> float:
        return self.tokens_usd + self.positions_usd


@dataclass
class WalletRefreshResult:
    wallet_address: str
    snapshot: Optional[DailySnapshot]
    is_fallback: bool = False
    positions_recorded: int = 0
    positions_inactivated: int = 0
    failed_chains: List[str] = field(default_factory=list)
    error: str = ""

    def as_dict(self) -> dict:
        snap = self.snapshot
        return {
            "wallet_address": self.wallet_address,
            "is_fallback": self.is_fallback,
            "date": str(snap.date) if snap else None,
            "total_nav_usd": str(snap.total_nav_usd) if snap else None,
            "tokens_nav_usd": str(snap.tokens_nav_usd) if snap else None,
            "positions_nav_usd": str(snap.positions_nav_usd) if snap else None,
            "positions_recorded": self.positions_recorded,
            "positions_inactivated": self.positions_inactivated,
            "failed_chains": list(self.failed_chains),
            "error": self.error,
        }


def _symbols(raw_tokens: Iterable[dict], raw_protocols: Iterable[dict]) -> set[str]:
    symbols = {t.get("symbol") for t in raw_tokens}
    for proto in raw_protocols:
        for item in proto.get("portfolio_item_list") or []:
            detail = item.get("detail") or {}
            for t in (detail.get("supply_token_list") or []) + (
                detail.get("reward_token_list") or []
            ):
                symbols.add(t.get("symbol"))
    return {s for s in symbols if s}


def process_wallet(
    address: str,
    *,
    client: DebankClient,
    price_provider: CoinGeckoPriceProvider,
) -> EnrichedWallet:
    """
    Fetch tokens and protocols for one wallet in parallel, price them and
    collapse duplicate protocols/positions. Raises UpstreamFetchError when
    the aggregator is unavailable for this wallet.
    """
    started = time.monotonic()
    address = address.strip().lower()

    with ThreadPoolExecutor(max_workers=2) as pool:
        tokens_future = pool.submit(client.fetch_tokens, address)
        protocols_future = pool.submit(client.fetch_protocols, address)
        token_fetch = tokens_future.result()
        protocol_fetch = protocols_future.result()

    quote = price_provider.get_prices(
        symbols=_symbols(token_fetch.items, protocol_fetch.items)
    )

    tokens = [Token.from_raw(t, prices=quote.prices) for t in token_fetch.items]
    protocols = dedupe_protocols(protocol_fetch.items, prices=quote.prices)

    log.info(
        "Wallet %s: %s protocols -> %s, %s positions -> %s after dedup",
        address,
        len(protocol_fetch.items),
        len(protocols),
        count_positions(protocol_fetch.items),
        sum(len(p.positions) for p in protocols),
    )

    return EnrichedWallet(
        address=address,
        tokens=tokens,
        protocols=protocols,
        failed_chains=sorted(
            set(token_fetch.failed_chains) | set(protocol_fetch.failed_chains)
        ),
        processing_ms=int((time.monotonic() - started) * 1000),
    )


def refresh_wallet(
    *,
    user,
    address: str,
    client: Optional[DebankClient] = None,
    price_provider: Optional[CoinGeckoPriceProvider] = None,
    now: Optional[datetime] = None,
) -> WalletRefreshResult:
    """
    Live refresh of one wallet: snapshot upsert plus position history,
    written in one transaction.

    When the aggregator is unreachable, or only some chains answered and a
    stored snapshot exists, the last stored snapshot is returned with
    ``is_fallback=True`` and nothing is written. A partial fetch with no
    stored history is saved, but positions on the failed chains are never
    marked inactive. Database failures propagate.
    """
    client = client or DebankClient.from_settings()
    price_provider = price_provider or CoinGeckoPriceProvider.from_settings()
    address = address.strip().lower()

    try:
        wallet = process_wallet(address, client=client, price_provider=price_provider)
    except UpstreamFetchError as e:
        log.warning("Falling back to stored snapshot for wallet=%s: %s", address, e)
        return WalletRefreshResult(
            wallet_address=address,
            snapshot=get_latest_snapshot(user=user, wallet_address=address),
            is_fallback=True,
            error=str(e),
        )

    if wallet.failed_chains:
        stored = get_latest_snapshot(user=user, wallet_address=address)
        if stored is not None:
            log.warning(
                "Partial fetch for wallet=%s (failed chains: %s); "
                "keeping stored snapshot of %s",
                address,
                ",".join(wallet.failed_chains),
                stored.date,
            )
            return WalletRefreshResult(
                wallet_address=address,
                snapshot=stored,
                is_fallback=True,
                failed_chains=list(wallet.failed_chains),
                error=f"Chains unavailable: {', '.join(wallet.failed_chains)}",
            )

    with transaction.atomic():
        snap = upsert_snapshot(
            user=user, wallet_address=address, wallet=wallet, now=now
        )
        rows = record_positions(
            user=user, wallet_address=address, protocols=wallet.protocols, now=now
        )
        inactivated = mark_inactive_positions(
            user=user,
            wallet_address=address,
            active_ids={(r.protocol_name, r.debank_position_id) for r in rows},
            skip_chains=wallet.failed_chains,
            now=now,
        )

    return WalletRefreshResult(
        wallet_address=address,
        snapshot=snap,
        positions_recorded=len(rows),
        positions_inactivated=inactivated,
        failed_chains=list(wallet.failed_chains),
    )


def _refresh_in_thread(**kwargs) -> WalletRefreshResult:
    try:
        return refresh_wallet(**kwargs)
    finally:
        connection.close()


def refresh_user_wallets(
    *,
    user,
    client: Optional[DebankClient] = None,
    price_provider: Optional[CoinGeckoPriceProvider] = None,
    max_workers: Optional[int] = None,
    now: Optional[datetime] = None,
) -> list[WalletRefreshResult]:
    """
    Refresh every active tracked wallet of a user. Wallets are independent:
    one falling back to stored data does not affect the others.
    """
    addresses = list(
        TrackedWallet.objects.filter(user=user, is_active=True)
        .order_by("address")
        .values_list("address", flat=True)
    )
    if not addresses:
        return []

    client = client or DebankClient.from_settings()
    price_provider = price_provider or CoinGeckoPriceProvider.from_settings()
    workers = max_workers or int(getattr(settings, "WALLET_REFRESH_WORKERS", 4))
    kwargs = {
        "user": user,
        "client": client,
        "price_provider": price_provider,
        "now": now,
    }

    if workers <= 1 or len(addresses) == 1:
        return [refresh_wallet(address=a, **kwargs) for a in addresses]

    with ThreadPoolExecutor(max_workers=min(workers, len(addresses))) as pool:
        futures = [
            pool.submit(_refresh_in_thread, address=a, **kwargs) for a in addresses
        ]
        return [f.result() for f in futures]
