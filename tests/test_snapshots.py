from __future__ import annotations

from datetime import date, datetime, timedelta
from datetime import timezone as dt_timezone
from decimal import Decimal

import pytest
from portfolio.models import DailySnapshot, TrackedWallet
from portfolio.services.identity import Protocol, Token, dedupe_protocols
from portfolio.services.snapshots import (
    day_bounds,
    get_history,
    get_latest_snapshot,
    get_portfolio_totals,
    local_date,
    sanitize_usd,
    upsert_snapshot,
)
from portfolio.services.wallet_processor import EnrichedWallet
from tests.conftest import WALLET_A, WALLET_B
from tests.factories import raw_item, raw_protocol


def _wallet(address, *, eth_price=3000.0, rewards=0.0):
    protocols = dedupe_protocols(
        [
            raw_protocol(
                "Aave V3",
                net=1000.0 + rewards,
                items=[
                    raw_item(
                        pool="0xaave",
                        supply=[("USDC", 1000.0, 1.0)],
                        rewards=[("AAVE", rewards, 1.0)] if rewards else [],
                        net=1000.0 + rewards,
                    )
                ],
            )
        ]
    )
    return EnrichedWallet(
        address=address,
        tokens=[Token("ETH", 1.0, eth_price, chain="eth")],
        protocols=protocols,
    )


@pytest.mark.parametrize(
    "raw, expected",
    [
        (None, Decimal("0")),
        ("nan", Decimal("0")),
        (float("nan"), Decimal("0")),
        (float("inf"), Decimal("0")),
        (-5, Decimal("0")),
        ("abc", Decimal("0")),
        (True, Decimal("0")),
        (12.345, Decimal("12.35")),
        ("100", Decimal("100.00")),
    ],
)
def test_sanitize_usd(raw, expected):
    assert sanitize_usd(raw) == expected


def test_local_date_uses_reference_time_zone():
    # 23:00 on the 15th in New York
    moment = datetime(2024, 3, 16, 3, 0, tzinfo=dt_timezone.utc)
    assert local_date(moment) == date(2024, 3, 15)


@pytest.mark.django_db
def test_second_refresh_same_day_overwrites(user, noon):
    upsert_snapshot(
        user=user, wallet_address=WALLET_A, wallet=_wallet(WALLET_A), now=noon
    )
    upsert_snapshot(
        user=user,
        wallet_address=WALLET_A.upper().replace("0X", "0x"),
        wallet=_wallet(WALLET_A, eth_price=3100.0),
        now=noon + timedelta(hours=3),
    )

    rows = DailySnapshot.objects.filter(user=user)
    assert rows.count() == 1
    snap = rows.get()
    assert snap.date == date(2024, 3, 15)
    assert snap.tokens_nav_usd == Decimal("3100.00")
    assert snap.positions_nav_usd == Decimal("1000.00")
    assert snap.total_nav_usd == Decimal("4100.00")
    assert snap.chain_distribution == {"eth": "3100.00"}
    assert snap.protocol_distribution == {"Aave V3": "1000.00"}


@pytest.mark.django_db
def test_new_day_creates_new_row(user, noon):
    upsert_snapshot(
        user=user, wallet_address=WALLET_A, wallet=_wallet(WALLET_A), now=noon
    )
    upsert_snapshot(
        user=user,
        wallet_address=WALLET_A,
        wallet=_wallet(WALLET_A, eth_price=3200.0),
        now=noon + timedelta(days=1),
    )

    history = get_history(user=user, wallet_address=WALLET_A)
    assert [s.date for s in history] == [date(2024, 3, 15), date(2024, 3, 16)]

    latest = get_latest_snapshot(user=user, wallet_address=WALLET_A)
    assert latest.date == date(2024, 3, 16)
    earlier = get_latest_snapshot(
        user=user, wallet_address=WALLET_A, on_or_before=date(2024, 3, 15)
    )
    assert earlier.total_nav_usd == Decimal("4000.00")


@pytest.mark.django_db
def test_non_finite_values_are_stored_as_zero(user, noon):
    wallet = EnrichedWallet(
        address=WALLET_A,
        tokens=[Token("ETH", float("nan"), 3000.0)],
        protocols=[
            Protocol(
                protocol_id="x", name="X", chain="eth", net_usd_value=float("nan")
            )
        ],
    )
    snap = upsert_snapshot(user=user, wallet_address=WALLET_A, wallet=wallet, now=noon)
    snap.refresh_from_db()

    assert snap.total_nav_usd == Decimal("0.00")
    assert snap.positions_nav_usd == Decimal("0.00")


@pytest.mark.django_db
def test_snapshots_are_scoped_per_user(user, other_user, noon):
    upsert_snapshot(
        user=user, wallet_address=WALLET_A, wallet=_wallet(WALLET_A), now=noon
    )
    upsert_snapshot(
        user=other_user, wallet_address=WALLET_A, wallet=_wallet(WALLET_A), now=noon
    )

    assert DailySnapshot.objects.count() == 2
    assert len(get_history(user=user)) == 1


@pytest.mark.django_db
def test_portfolio_totals_sum_tracked_wallets(user, noon):
    TrackedWallet.objects.create(user=user, address=WALLET_A)
    TrackedWallet.objects.create(user=user, address=WALLET_B)
    upsert_snapshot(
        user=user,
        wallet_address=WALLET_A,
        wallet=_wallet(WALLET_A, rewards=20.0),
        now=noon,
    )
    upsert_snapshot(
        user=user,
        wallet_address=WALLET_B,
        wallet=_wallet(WALLET_B, eth_price=2000.0),
        now=noon - timedelta(days=2),
    )

    totals = get_portfolio_totals(user=user, as_of=date(2024, 3, 15))

    assert totals.tokens_value == Decimal("5000.00")
    assert totals.positions_value == Decimal("2020.00")
    assert totals.unclaimed_rewards_value == Decimal("20.00")

    before = get_portfolio_totals(user=user, as_of=date(2024, 3, 14))
    assert before.tokens_value == Decimal("2000.00")


@pytest.mark.django_db
def test_portfolio_totals_without_tracked_wallets(user, noon):
    upsert_snapshot(
        user=user, wallet_address=WALLET_A, wallet=_wallet(WALLET_A), now=noon
    )
    totals = get_portfolio_totals(user=user)
    assert totals.total_value == Decimal("4000.00")


def test_day_bounds_cover_the_local_day():
    start, end = day_bounds(datetime(2024, 3, 16, 3, 0, tzinfo=dt_timezone.utc))
    assert start.date() == end.date() == date(2024, 3, 15)
    assert (end - start) < timedelta(days=1)
    assert start.hour == 0
