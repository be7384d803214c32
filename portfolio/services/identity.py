"""
Position identity and de-duplication for aggregator protocol payloads.

The aggregator can return the same protocol more than once (one entry per
chain, or repeated pages) and the same position more than once inside a
protocol. ``dedupe_protocols`` folds those repeats so every downstream sum
counts each position exactly once.
"""

from __future__ import annotations

import hashlib
import math
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

# Protocols whose reported NAV is below this are re-valued from their tokens.
MIN_REPORTED_NAV_USD = 0.01


def safe_float(value: Any) -> float:
    """Coerce upstream numerics; None/NaN/inf/garbage become 0.0."""
    if value is None or isinstance(value, bool):
        return 0.0
    try:
        f = float(value)
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(f):
        return 0.0
    return f


def resolve_price(
    symbol: str, upstream_price: Any, prices: Mapping[str, float] | None = None
) -> float:
    """
    Price precedence: market price for the symbol, then for the un-wrapped
    symbol (``weth`` -> ``eth``), then the aggregator's own price.
    """
    upstream = max(safe_float(upstream_price), 0.0)
    if not prices or not symbol:
        return upstream

    sym = symbol.lower()
    price = safe_float(prices.get(sym))
    if price > 0:
        return price

    if sym.startswith("w") and len(sym) > 1:
        price = safe_float(prices.get(sym[1:]))
        if price > 0:
            return price

    return upstream


@dataclass(frozen=True)
class Token:
    symbol: str
    amount: float
    price: float
    chain: str = ""
    name: str = ""
    decimals: int | None = None

    def __post_init__(self):
        object.__setattr__(self, "symbol", str(self.symbol or ""))
        object.__setattr__(self, "amount", max(safe_float(self.amount), 0.0))
        object.__setattr__(self, "price", max(safe_float(self.price), 0.0))

    @property
    def usd_value(self) -> float:
        return self.amount * self.price

    @classmethod
    def from_raw(
        cls,
        raw: Mapping[str, Any],
        *,
        chain: str = "",
        prices: Mapping[str, float] | None = None,
    ) -> "Token":
        symbol = raw.get("optimized_symbol") or raw.get("symbol") or ""
        decimals = raw.get("decimals")
        return cls(
            symbol=symbol,
            amount=raw.get("amount"),
            price=resolve_price(symbol, raw.get("price"), prices),
            chain=raw.get("chain") or chain,
            name=raw.get("name") or "",
            decimals=int(decimals) if isinstance(decimals, (int, float)) else None,
        )

    def as_dict(self) -> dict:
        return {
            "symbol": self.symbol,
            "name": self.name,
            "chain": self.chain,
            "amount": self.amount,
            "price": self.price,
            "usd_value": self.usd_value,
            "decimals": self.decimals,
        }


@dataclass(frozen=True)
class Position:
    position_id: str
    position_key: str
    name: str
    chain: str
    pool_id: str | None
    supply_tokens: tuple[Token, ...] = ()
    reward_tokens: tuple[Token, ...] = ()
    reported_usd_value: float = 0.0

    def __post_init__(self):
        object.__setattr__(
            self, "reported_usd_value", max(safe_float(self.reported_usd_value), 0.0)
        )

    @property
    def supply_usd_value(self) -> float:
        return sum(t.usd_value for t in self.supply_tokens)

    @property
    def unclaimed_rewards_usd(self) -> float:
        return sum(t.usd_value for t in self.reward_tokens)

    @property
    def total_usd_value(self) -> float:
        if self.reported_usd_value > 0:
            return self.reported_usd_value
        return self.supply_usd_value + self.unclaimed_rewards_usd

    def as_dict(self) -> dict:
        return {
            "position_id": self.position_id,
            "position_key": self.position_key,
            "name": self.name,
            "chain": self.chain,
            "pool_id": self.pool_id,
            "supply_tokens": [t.as_dict() for t in self.supply_tokens],
            "reward_tokens": [t.as_dict() for t in self.reward_tokens],
            "total_usd_value": self.total_usd_value,
            "unclaimed_rewards_usd": self.unclaimed_rewards_usd,
        }


@dataclass
class Protocol:
    protocol_id: str
    name: str
    chain: str
    net_usd_value: float
    positions: list[Position] = field(default_factory=list)
    logo_url: str = ""

    @property
    def token_value_usd(self) -> float:
        return sum(
            p.supply_usd_value + p.unclaimed_rewards_usd for p in self.positions
        )

    @property
    def unclaimed_rewards_usd(self) -> float:
        return sum(p.unclaimed_rewards_usd for p in self.positions)

    def as_dict(self) -> dict:
        return {
            "protocol_id": self.protocol_id,
            "name": self.name,
            "chain": self.chain,
            "net_usd_value": self.net_usd_value,
            "logo_url": self.logo_url,
            "positions": [p.as_dict() for p in self.positions],
        }


def _detail(item: Mapping[str, Any]) -> Mapping[str, Any]:
    return item.get("detail") or {}


def _pool_id(item: Mapping[str, Any]) -> str | None:
    pool = item.get("pool") or {}
    pid = pool.get("id") if isinstance(pool, Mapping) else None
    return str(pid) if pid else None


def position_key(item: Mapping[str, Any]) -> str:
    """
    Identity of a position inside one fetch: pool id plus the sorted
    ``symbol:amount`` pairs of its supply tokens (6 decimals).
    """
    supply = _detail(item).get("supply_token_list") or []
    parts = sorted(
        f"{t.get('symbol') or ''}:{safe_float(t.get('amount')):.6f}" for t in supply
    )
    return f"{_pool_id(item) or 'no-pool'}-{'|'.join(parts)}"


def position_id(protocol: Mapping[str, Any], item: Mapping[str, Any]) -> str:
    """
    Identifier that survives across fetches. Token amounts never take part
    in it, so a position keeps its ID while its balances move.
    """
    item_id = _detail(item).get("portfolio_item_id")
    if item_id:
        return str(item_id)

    pool_id = _pool_id(item)
    if pool_id:
        return pool_id

    supply = _detail(item).get("supply_token_list") or []
    symbols = ",".join(sorted(str(t.get("symbol") or "") for t in supply))
    seed = "|".join(
        [
            str(protocol.get("id") or protocol.get("name") or ""),
            str(item.get("_chain") or protocol.get("chain") or ""),
            str(item.get("name") or ""),
            symbols,
        ]
    )
    return "h:" + hashlib.sha1(seed.encode("utf-8")).hexdigest()[:16]


def _build_position(
    protocol: Mapping[str, Any],
    item: Mapping[str, Any],
    *,
    key: str,
    pid: str,
    prices: Mapping[str, float] | None,
) -> Position:
    chain = str(item.get("_chain") or protocol.get("chain") or "")
    detail = _detail(item)
    stats = item.get("stats") or {}
    if not isinstance(stats, Mapping):
        stats = {}
    return Position(
        position_id=pid,
        position_key=key,
        name=str(item.get("name") or ""),
        chain=chain,
        pool_id=_pool_id(item),
        supply_tokens=tuple(
            Token.from_raw(t, chain=chain, prices=prices)
            for t in detail.get("supply_token_list") or []
        ),
        reward_tokens=tuple(
            Token.from_raw(t, chain=chain, prices=prices)
            for t in detail.get("reward_token_list") or []
        ),
        reported_usd_value=stats.get("net_usd_value"),
    )


def _group_by_name(raw_protocols: Iterable[Mapping[str, Any]]) -> list[dict]:
    grouped: dict[str, dict] = {}
    for raw in raw_protocols:
        if not isinstance(raw, Mapping):
            continue
        name = str(raw.get("name") or raw.get("id") or "")
        chain = raw.get("chain") or raw.get("chain_id") or ""
        items = [
            {**item, "_chain": item.get("chain") or chain}
            for item in raw.get("portfolio_item_list") or []
            if isinstance(item, Mapping)
        ]
        net = max(safe_float(raw.get("net_usd_value")), 0.0)

        existing = grouped.get(name)
        if existing is None:
            grouped[name] = {
                **raw,
                "name": name,
                "chain": chain,
                "items": items,
                "net": net,
            }
        else:
            existing["items"].extend(items)
            existing["net"] = max(existing["net"], net)
    return list(grouped.values())


def dedupe_protocols(
    raw_protocols: Iterable[Mapping[str, Any]],
    *,
    prices: Mapping[str, float] | None = None,
) -> list[Protocol]:
    """
    Merge protocols by name and drop repeated positions.

    Within a protocol the first position seen for a position key wins; later
    duplicates are discarded, not summed. A protocol whose reported NAV is
    missing or below one cent is re-valued as the sum of its positions'
    supply and reward token values.
    """
    out: list[Protocol] = []

    for group in _group_by_name(raw_protocols):
        seen: set[str] = set()
        id_counts: dict[str, int] = {}
        positions: list[Position] = []

        for item in group["items"]:
            key = position_key(item)
            if key in seen:
                continue
            seen.add(key)

            base_id = position_id(group, item)
            n = id_counts.get(base_id, 0) + 1
            id_counts[base_id] = n
            pid = base_id if n == 1 else f"{base_id}#{n}"

            positions.append(
                _build_position(group, item, key=key, pid=pid, prices=prices)
            )

        protocol = Protocol(
            protocol_id=str(group.get("id") or group["name"]),
            name=group["name"],
            chain=str(group.get("chain") or ""),
            net_usd_value=group["net"],
            positions=positions,
            logo_url=str(group.get("logo_url") or ""),
        )
        if protocol.net_usd_value < MIN_REPORTED_NAV_USD:
            protocol.net_usd_value = protocol.token_value_usd

        out.append(protocol)

    return out


def count_positions(raw_protocols: Iterable[Mapping[str, Any]]) -> int:
    return sum(
        len(p.get("portfolio_item_list") or [])
        for p in raw_protocols
        if isinstance(p, Mapping)
    )
