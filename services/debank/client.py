from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional

import requests
from core.errors import UpstreamFetchError

log = logging.getLogger(__name__)

DEFAULT_CHAINS = ("eth", "bsc", "arb", "matic", "base", "op")

SPAM_KEYWORDS = (
    "visit",
    "claim",
    "airdrop",
    "reward",
    "www.",
    "http",
    ".com",
    ".io",
    ".xyz",
    ".top",
    ".eu",
)


def is_spam_token(token: dict) -> bool:
    name = str(token.get("name") or "").lower()
    symbol = str(token.get("symbol") or "").lower()
    return any(k in name or k in symbol for k in SPAM_KEYWORDS)


@dataclass
class ChainFetch:
    """Per-chain results of one wallet call; failed chains are listed, not raised."""

    items: List[dict] = field(default_factory=list)
    failed_chains: List[str] = field(default_factory=list)


class DebankClient:
    """
    Thin client for the DeBank Pro OpenAPI. One request per chain; a chain
    that errors is logged and skipped. Only when every chain fails does the
    call raise UpstreamFetchError.
    """

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = "https://pro-openapi.debank.com/v1",
        chains: Optional[List[str]] = None,
        timeout: float = 10.0,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.chains = list(chains or DEFAULT_CHAINS)
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {"AccessKey": api_key, "Accept": "application/json"}
        )

    @classmethod
    def from_settings(cls) -> "DebankClient":
        from django.conf import settings

        return cls(
            api_key=settings.DEBANK_API_KEY,
            base_url=settings.DEBANK_BASE_URL,
            chains=list(settings.DEBANK_CHAINS),
            timeout=float(settings.UPSTREAM_TIMEOUT_SECONDS),
        )

    def _get(self, path: str, params: dict) -> Any:
        resp = self.session.get(
            f"{self.base_url}{path}", params=params, timeout=self.timeout
        )
        resp.raise_for_status()
        return resp.json()

    def _per_chain(
        self,
        *,
        address: str,
        path: str,
        extra_params: dict,
        what: str,
        keep: Callable[[dict], bool] = lambda _: True,
    ) -> ChainFetch:
        out = ChainFetch()
        for chain in self.chains:
            try:
                data = self._get(
                    path, {"id": address, "chain_id": chain, **extra_params}
                )
            except (requests.RequestException, ValueError) as e:
                log.warning(
                    "DeBank %s fetch failed wallet=%s chain=%s: %s",
                    what,
                    address,
                    chain,
                    e,
                )
                out.failed_chains.append(chain)
                continue

            for item in data or []:
                if not isinstance(item, dict) or not keep(item):
                    continue
                item.setdefault("chain", chain)
                out.items.append(item)

        if self.chains and len(out.failed_chains) == len(self.chains):
            raise UpstreamFetchError(
                f"DeBank {what} unavailable on every chain",
                source="debank",
                wallet_address=address,
            )
        return out

    def fetch_tokens(self, address: str) -> ChainFetch:
        return self._per_chain(
            address=address,
            path="/user/token_list",
            extra_params={"is_all": "false"},
            what="token",
            keep=lambda t: not is_spam_token(t),
        )

    def fetch_protocols(self, address: str) -> ChainFetch:
        return self._per_chain(
            address=address,
            path="/user/all_complex_protocol_list",
            extra_params={},
            what="protocol",
        )
