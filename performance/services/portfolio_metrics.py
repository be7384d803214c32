from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

import numpy as np
import pandas as pd
from core.errors import InvalidInputError
from django.db.models import Sum
from django.utils import timezone
from performance.services.apy import annualize
from portfolio.models import DailySnapshot

USD_Q = Decimal("0.01")
RISK_FREE_RATE = 0.05
LOOKBACK_DAYS = {"daily": 1, "weekly": 7, "monthly": 30}


def _q_usd(x: Decimal) -> Decimal:
    return x.quantize(USD_Q, rounding=ROUND_HALF_UP)


def _compute_max_drawdown(nav: pd.Series) -> float:
    """
    nav: float series indexed by date (ascending).
    Returns the deepest drawdown as a negative fraction, e.g. -0.12.
    """
    if nav is None or len(nav) < 2:
        return 0.0
    running_max = nav.cummax().replace(0, np.nan)
    dd = (nav / running_max) - 1.0
    m = float(dd.min(skipna=True)) if dd.notna().any() else 0.0
    return m if np.isfinite(m) else 0.0


def _get_total_series(
    *,
    user,
    start: Optional[date] = None,
    end: Optional[date] = None,
    wallet_address: Optional[str] = None,
) -> pd.Series:
    """Daily portfolio value (sum over wallets) indexed by date, ascending."""
    qs = DailySnapshot.objects.filter(user=user)
    if wallet_address:
        qs = qs.filter(wallet_address=wallet_address.strip().lower())
    if start:
        qs = qs.filter(date__gte=start)
    if end:
        qs = qs.filter(date__lte=end)

    rows = list(qs.values("date").annotate(total=Sum("total_nav_usd")).order_by("date"))
    if not rows:
        return pd.Series(dtype=float)
    df = pd.DataFrame(rows)
    df["total"] = df["total"].astype(float)
    return df.set_index("date")["total"]


def _latest_total_on_or_before(*, user, d: date) -> Decimal:
    latest = (
        DailySnapshot.objects.filter(user=user, date__lte=d)
        .order_by("-date")
        .values_list("date", flat=True)
        .first()
    )
    if latest is None:
        return Decimal("0")
    return DailySnapshot.objects.filter(user=user, date=latest).aggregate(
        s=Sum("total_nav_usd")
    ).get("s") or Decimal("0")


@dataclass
class PnLResult:
    report_type: str
    as_of: date
    current_value: Decimal
    previous_value: Decimal
    pnl: Decimal
    pnl_pct: Decimal

    def as_dict(self) -> dict:
        return {k: str(v) for k, v in asdict(self).items()}


def compute_pnl(
    *, user, report_type: str = "daily", as_of: Optional[date] = None
) -> PnLResult:
    if report_type not in LOOKBACK_DAYS:
        raise InvalidInputError(
            f"report_type must be one of {sorted(LOOKBACK_DAYS)}, got {report_type!r}"
        )
    as_of = as_of or timezone.localdate()

    current = _latest_total_on_or_before(user=user, d=as_of)
    previous = _latest_total_on_or_before(
        user=user, d=as_of - timedelta(days=LOOKBACK_DAYS[report_type])
    )
    pnl = current - previous
    if previous > 0:
        pct = pnl / previous * Decimal("100")
    else:
        pct = Decimal("100") if current > 0 else Decimal("0")

    return PnLResult(
        report_type=report_type,
        as_of=as_of,
        current_value=_q_usd(current),
        previous_value=_q_usd(previous),
        pnl=_q_usd(pnl),
        pnl_pct=_q_usd(pct),
    )


@dataclass
class PerformanceMetrics:
    period_days: int
    observations: int
    total_return_pct: float = 0.0
    annualized_return_pct: float = 0.0
    volatility_pct: float = 0.0
    sharpe_ratio: float = 0.0
    max_drawdown_pct: float = 0.0
    win_rate_pct: float = 0.0

    def as_dict(self) -> dict:
        return asdict(self)


def compute_performance_metrics(
    *,
    user,
    period_days: int = 30,
    wallet_address: Optional[str] = None,
    as_of: Optional[date] = None,
) -> PerformanceMetrics:
    if period_days <= 0:
        raise InvalidInputError("period_days must be > 0")
    as_of = as_of or timezone.localdate()

    nav = _get_total_series(
        user=user,
        start=as_of - timedelta(days=period_days),
        end=as_of,
        wallet_address=wallet_address,
    )
    out = PerformanceMetrics(period_days=period_days, observations=len(nav))
    if len(nav) < 2 or nav.iloc[0] <= 0:
        return out

    returns = nav.pct_change().replace([np.inf, -np.inf], np.nan).dropna()
    total_return = float(nav.iloc[-1] / nav.iloc[0] - 1.0)
    span_days = max((nav.index[-1] - nav.index[0]).days, 1)

    annualized_pct, _ = annualize(total_return, float(span_days))
    annualized = annualized_pct / 100.0
    volatility = float(returns.std() * math.sqrt(365)) if len(returns) > 1 else 0.0
    if not np.isfinite(volatility):
        volatility = 0.0

    out.total_return_pct = round(total_return * 100, 4)
    out.annualized_return_pct = round(annualized * 100, 4)
    out.volatility_pct = round(volatility * 100, 4)
    out.sharpe_ratio = (
        round((annualized - RISK_FREE_RATE) / volatility, 4) if volatility > 0 else 0.0
    )
    out.max_drawdown_pct = round(_compute_max_drawdown(nav) * 100, 4)
    if len(returns):
        out.win_rate_pct = round(float((returns > 0).mean()) * 100, 4)
    return out
