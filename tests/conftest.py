from __future__ import annotations

from datetime import datetime
from datetime import timezone as dt_timezone

import pytest
from core.errors import UpstreamFetchError
from services.debank.client import ChainFetch
from services.market_data.price_provider import PriceQuote
from tests.factories import raw_item, raw_protocol, raw_token

WALLET_A = "0x" + "a" * 40
WALLET_B = "0x" + "b" * 40


class FakeDebankClient:
    """
    Serves canned token/protocol payloads per wallet; unknown wallets fail.
    ``failed_chains`` maps a wallet to chains reported as failed on each call.
    """

    def __init__(self, wallets=None, failing=(), failed_chains=None):
        self.wallets = wallets or {}
        self.failing = {a.lower() for a in failing}
        self.failed_chains = failed_chains or {}
        self.calls = []

    def _check(self, address):
        self.calls.append(address)
        if address in self.failing or address not in self.wallets:
            raise UpstreamFetchError(
                "DeBank unavailable", source="debank", wallet_address=address
            )

    def fetch_tokens(self, address):
        self._check(address)
        return ChainFetch(
            items=list(self.wallets[address].get("tokens", [])),
            failed_chains=list(self.failed_chains.get(address, [])),
        )

    def fetch_protocols(self, address):
        self._check(address)
        return ChainFetch(
            items=list(self.wallets[address].get("protocols", [])),
            failed_chains=list(self.failed_chains.get(address, [])),
        )


class FakePriceProvider:
    def __init__(self, prices=None):
        self.prices = dict(prices or {})

    def get_prices(self, *, symbols):
        wanted = {s.lower() for s in symbols if s}
        return PriceQuote(
            prices={s: p for s, p in self.prices.items() if s in wanted},
            missing=sorted(wanted - set(self.prices)),
        )


@pytest.fixture
def user(django_user_model):
    return django_user_model.objects.create_user(username="alice", password="pw")


@pytest.fixture
def other_user(django_user_model):
    return django_user_model.objects.create_user(username="bob", password="pw")


@pytest.fixture
def noon():
    # 08:00 in New York, same calendar day
    return datetime(2024, 3, 15, 12, 0, tzinfo=dt_timezone.utc)


@pytest.fixture
def wallet_payload():
    return {
        "tokens": [
            raw_token("ETH", 1.0, 3000.0, chain="eth", name="Ether"),
            raw_token("USDC", 500.0, 1.0, chain="arb", name="USD Coin"),
        ],
        "protocols": [
            raw_protocol(
                "Aave V3",
                net=1005.0,
                items=[
                    raw_item(
                        pool="0xaave",
                        supply=[("USDC", 1000.0, 1.0)],
                        rewards=[("AAVE", 0.05, 100.0)],
                        net=1005.0,
                    )
                ],
            ),
        ],
    }


@pytest.fixture
def fake_client(wallet_payload):
    return FakeDebankClient(wallets={WALLET_A: wallet_payload})


@pytest.fixture
def price_provider():
    return FakePriceProvider()
