from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, Optional

import requests

log = logging.getLogger(__name__)

# Symbol -> CoinGecko coin id. Wrapped symbols map to the underlying coin.
SYMBOL_TO_COINGECKO_ID: Dict[str, str] = {
    "eth": "ethereum",
    "weth": "ethereum",
    "btc": "bitcoin",
    "wbtc": "wrapped-bitcoin",
    "usdt": "tether",
    "usdc": "usd-coin",
    "dai": "dai",
    "busd": "binance-usd",
    "matic": "matic-network",
    "wmatic": "matic-network",
    "bnb": "binancecoin",
    "wbnb": "binancecoin",
    "avax": "avalanche-2",
    "wavax": "avalanche-2",
    "op": "optimism",
    "arb": "arbitrum",
    "uni": "uniswap",
    "sushi": "sushi",
    "aave": "aave",
    "comp": "compound-coin",
    "mkr": "maker",
    "snx": "havven",
    "crv": "curve-dao-token",
    "cvx": "convex-finance",
    "frax": "frax",
    "fxs": "frax-share",
    "bal": "balancer",
    "yfi": "yearn-finance",
    "lusd": "liquity-usd",
    "susd": "nusd",
    "tusd": "true-usd",
    "gusd": "gemini-dollar",
    "usdp": "paxos-standard",
    "ftm": "fantom",
    "wftm": "fantom",
    "celo": "celo",
    "glmr": "moonbeam",
    "wglmr": "moonbeam",
}


@dataclass
class PriceQuote:
    prices: Dict[str, float] = field(default_factory=dict)
    missing: list = field(default_factory=list)


class CoinGeckoPriceProvider:
    """
    Spot USD prices by token symbol. Best effort: any HTTP or decode
    failure is logged and yields an empty quote so callers fall back to
    the aggregator's own prices.
    """

    def __init__(
        self,
        *,
        base_url: str = "https://api.coingecko.com/api/v3",
        timeout: float = 15.0,
        session: Optional[requests.Session] = None,
        symbol_map: Optional[Dict[str, str]] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.symbol_map = symbol_map or SYMBOL_TO_COINGECKO_ID

    @classmethod
    def from_settings(cls) -> "CoinGeckoPriceProvider":
        from django.conf import settings

        return cls(
            base_url=settings.COINGECKO_BASE_URL,
            timeout=float(settings.PRICE_TIMEOUT_SECONDS),
        )

    def get_prices(self, *, symbols: Iterable[str]) -> PriceQuote:
        wanted = sorted({(s or "").lower() for s in symbols if s})
        ids = sorted({self.symbol_map[s] for s in wanted if s in self.symbol_map})
        quote = PriceQuote(missing=[s for s in wanted if s not in self.symbol_map])
        if not ids:
            return quote

        try:
            resp = self.session.get(
                f"{self.base_url}/simple/price",
                params={"ids": ",".join(ids), "vs_currencies": "usd"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            data = resp.json() or {}
        except (requests.RequestException, ValueError) as e:
            log.warning("CoinGecko price fetch failed for %s ids: %s", len(ids), e)
            return quote

        for sym in wanted:
            coin = self.symbol_map.get(sym)
            usd = (data.get(coin) or {}).get("usd") if coin else None
            if isinstance(usd, (int, float)) and usd > 0:
                quote.prices[sym] = float(usd)
            elif coin:
                quote.missing.append(sym)

        return quote
