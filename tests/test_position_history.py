from __future__ import annotations

from datetime import date, timedelta
from decimal import Decimal

import pytest
from portfolio.models import PositionHistory
from portfolio.services.identity import dedupe_protocols
from portfolio.services.position_history import (
    get_position_history,
    mark_inactive_positions,
    record_positions,
)
from tests.conftest import WALLET_A
from tests.factories import raw_item, raw_protocol


def _protocols(*pools):
    return dedupe_protocols(
        [
            raw_protocol(
                "Aave V3",
                net=2000.0,
                items=[
                    raw_item(
                        pool=pool,
                        supply=[("USDC", 1000.0, 1.0)],
                        rewards=[("AAVE", 2.0, 1.0)],
                        net=1002.0,
                    )
                    for pool in pools
                ],
            )
        ]
    )


def _active(rows):
    return {(r.protocol_name, r.debank_position_id) for r in rows}


@pytest.mark.django_db
def test_record_positions_upserts_per_day(user, noon):
    record_positions(
        user=user, wallet_address=WALLET_A, protocols=_protocols("p1"), now=noon
    )
    rows = record_positions(
        user=user, wallet_address=WALLET_A, protocols=_protocols("p1"), now=noon
    )

    assert PositionHistory.objects.count() == 1
    row = rows[0]
    assert row.debank_position_id == "p1"
    assert row.date == date(2024, 3, 15)
    assert row.total_value == Decimal("1002.00")
    assert row.unclaimed_rewards_value == Decimal("2.00")
    assert row.protocol_data["pool_id"] == "p1"


@pytest.mark.django_db
def test_missing_position_is_marked_inactive(user, noon):
    record_positions(
        user=user, wallet_address=WALLET_A, protocols=_protocols("p1", "p2"), now=noon
    )

    tomorrow = noon + timedelta(days=1)
    rows = record_positions(
        user=user, wallet_address=WALLET_A, protocols=_protocols("p1"), now=tomorrow
    )
    marked = mark_inactive_positions(
        user=user, wallet_address=WALLET_A, active_ids=_active(rows), now=tomorrow
    )

    assert marked == 1
    closed = PositionHistory.objects.get(
        debank_position_id="p2", date=date(2024, 3, 16)
    )
    assert closed.is_active is False
    assert closed.total_value == Decimal("1002.00")

    # earlier history is untouched
    assert PositionHistory.objects.get(
        debank_position_id="p2", date=date(2024, 3, 15)
    ).is_active

    # running again the same day is a no-op
    again = mark_inactive_positions(
        user=user, wallet_address=WALLET_A, active_ids=_active(rows), now=tomorrow
    )
    assert again == 0


@pytest.mark.django_db
def test_position_history_excludes_inactive_by_default(user, noon):
    record_positions(
        user=user, wallet_address=WALLET_A, protocols=_protocols("p1"), now=noon
    )
    later = noon + timedelta(days=1)
    mark_inactive_positions(
        user=user, wallet_address=WALLET_A, active_ids=set(), now=later
    )

    active = get_position_history(user=user, position_id="p1")
    everything = get_position_history(
        user=user, position_id="p1", include_inactive=True
    )

    assert [r.date for r in active] == [date(2024, 3, 15)]
    assert [r.date for r in everything] == [date(2024, 3, 16), date(2024, 3, 15)]


@pytest.mark.django_db
def test_positions_on_skipped_chains_stay_active(user, noon):
    record_positions(
        user=user, wallet_address=WALLET_A, protocols=_protocols("p1"), now=noon
    )
    later = noon + timedelta(days=1)

    marked = mark_inactive_positions(
        user=user,
        wallet_address=WALLET_A,
        active_ids=set(),
        skip_chains=["eth"],
        now=later,
    )

    assert marked == 0
    assert not PositionHistory.objects.filter(is_active=False).exists()
