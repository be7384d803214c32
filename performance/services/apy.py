"""
Per-position APY from PositionHistory.

For every position the engine takes the latest record on or before the
target date and the latest record on or before ``target_date - period_days``
and annualizes the rewards earned between them. Positions without the
earlier point are estimated from their current unclaimed rewards instead.
Every position gets a number and a confidence label; suspicious results are
downgraded and annotated, never dropped.
"""

from __future__ import annotations

import logging
import math
from dataclasses import asdict, dataclass, field
from datetime import date, datetime
from typing import Dict, List, Optional

import numpy as np
import pandas as pd
from core.errors import InvalidInputError
from django.conf import settings
from django.db import models
from django.utils import timezone
from portfolio.models import PositionHistory

log = logging.getLogger(__name__)

DAYS_PER_YEAR = 365.0
# Annualized figures beyond this are clamped.
MAX_APY_PCT = 1_000_000.0
MAD_SCALE = 1.4826


class Confidence(models.TextChoices):
    HIGH = "high", "High"
    MEDIUM = "medium", "Medium"
    LOW = "low", "Low"


_RANK = {Confidence.HIGH: 0, Confidence.MEDIUM: 1, Confidence.LOW: 2}


@dataclass
class APYResult:
    position_id: str
    protocol_name: str
    position_name: str
    wallet_address: str
    apy: float
    confidence: str
    is_new_position: bool
    period_return: float = 0.0
    days: float = 0.0
    current_value: float = 0.0
    baseline_value: float = 0.0
    unclaimed_rewards: float = 0.0
    rewards_earned: float = 0.0
    calculation_method: str = ""
    warnings: List[str] = field(default_factory=list)

    def downgrade(self, to: str, warning: str | None = None) -> None:
        if _RANK[Confidence(to)] > _RANK[Confidence(self.confidence)]:
            self.confidence = Confidence(to).value
        if warning:
            self.warnings.append(warning)

    def as_dict(self) -> dict:
        return asdict(self)


def _setting(name: str, default):
    return getattr(settings, name, default)


def annualize(period_return: float, days: float) -> tuple[float, bool]:
    """
    ``((1 + r) ** (365 / days) - 1) * 100`` computed in log space.
    Returns (apy_pct, clamped). Never returns NaN or infinity.
    """
    if not math.isfinite(period_return) or days <= 0:
        return 0.0, False
    if period_return <= -1.0:
        return -100.0, False

    log_growth = (DAYS_PER_YEAR / days) * math.log1p(period_return)
    if log_growth > math.log1p(MAX_APY_PCT / 100.0):
        return MAX_APY_PCT, True
    return math.expm1(log_growth) * 100.0, False


def _load_history(*, user, target_date: date) -> pd.DataFrame:
    rows = list(
        PositionHistory.objects.filter(user=user, date__lte=target_date).values(
            "wallet_address",
            "protocol_name",
            "position_name",
            "debank_position_id",
            "date",
            "total_value",
            "unclaimed_rewards_value",
            "is_active",
        )
    )
    if not rows:
        return pd.DataFrame()

    df = pd.DataFrame(rows)
    df["date"] = pd.to_datetime(df["date"])
    df["total_value"] = df["total_value"].astype(float)
    df["unclaimed_rewards_value"] = df["unclaimed_rewards_value"].astype(float)
    df["is_active"] = df["is_active"].astype(bool)
    return df.sort_values("date")


def _new_position_result(g: pd.DataFrame, current: pd.Series, base: dict) -> APYResult:
    value = float(current["total_value"])
    rewards = float(current["unclaimed_rewards_value"])
    first_seen = g.loc[g["is_active"], "date"].min()
    days = max((current["date"] - first_seen).days, 1)

    res = APYResult(
        **base,
        apy=0.0,
        confidence=Confidence.LOW.value,
        is_new_position=True,
        days=float(days),
        current_value=value,
        unclaimed_rewards=rewards,
        rewards_earned=rewards,
        calculation_method="unclaimed_rewards_rate",
    )
    res.warnings.append(
        f"New position: APY estimated from unclaimed rewards over {days} day(s)"
    )
    if value <= 0:
        res.warnings.append("Position value is zero; APY set to 0")
        return res

    daily_rate = rewards / value / days
    res.period_return = daily_rate
    res.apy, clamped = annualize(daily_rate, 1.0)
    if clamped:
        res.warnings.append("APY exceeded the calculable range and was clamped")
    return res


def _existing_position_result(
    g: pd.DataFrame,
    current: pd.Series,
    baseline: pd.Series,
    base: dict,
    *,
    max_gap_days: int,
) -> APYResult:
    cur_value = float(current["total_value"])
    base_value = float(baseline["total_value"])
    cur_rewards = float(current["unclaimed_rewards_value"])
    base_rewards = float(baseline["unclaimed_rewards_value"])
    elapsed = (current["date"] - baseline["date"]).days

    res = APYResult(
        **base,
        apy=0.0,
        confidence=Confidence.HIGH.value,
        is_new_position=False,
        days=float(elapsed),
        current_value=cur_value,
        baseline_value=base_value,
        unclaimed_rewards=cur_rewards,
        calculation_method="rewards_delta",
    )

    if elapsed <= 0:
        res.downgrade(
            Confidence.LOW, "No elapsed time between reference snapshots; APY set to 0"
        )
        return res

    earned = cur_rewards - base_rewards
    if earned < 0:
        earned = cur_rewards
        res.warnings.append(
            "Unclaimed rewards dropped during the window (claimed?); "
            "using current unclaimed rewards"
        )
    res.rewards_earned = earned

    denominator = base_value if base_value > 0 else cur_value
    if denominator <= 0:
        res.downgrade(Confidence.LOW, "Position value is zero; APY set to 0")
        return res

    res.period_return = earned / denominator
    res.apy, clamped = annualize(res.period_return, float(elapsed))
    if clamped:
        res.downgrade(
            Confidence.LOW, "APY exceeded the calculable range and was clamped"
        )

    window = g[(g["date"] >= baseline["date"]) & (g["date"] <= current["date"])]
    gaps = window["date"].diff().dt.days.dropna()
    if (gaps > max_gap_days).any():
        res.downgrade(
            Confidence.MEDIUM,
            f"History has a gap of {int(gaps.max())} days inside the window",
        )
    if not window["is_active"].all():
        res.downgrade(Confidence.MEDIUM, "Position was inactive inside the window")

    return res


def _flag_outliers(
    results: Dict[str, APYResult], *, threshold: float, min_peers: int
) -> None:
    """
    Leave-one-out robust z-score: each APY is compared to the median and
    MAD of all the other positions in the same call.
    """
    keys = list(results)
    apys = np.array([results[k].apy for k in keys], dtype=float)
    if len(apys) - 1 < min_peers:
        return

    for i, key in enumerate(keys):
        peers = np.delete(apys, i)
        median = float(np.median(peers))
        mad = float(np.median(np.abs(peers - median))) * MAD_SCALE
        if mad <= 0:
            continue
        score = abs(apys[i] - median) / mad
        if score > threshold:
            results[key].downgrade(
                Confidence.LOW,
                f"APY of {apys[i]:.2f}% is a statistical outlier vs other positions "
                f"(median {median:.2f}%)",
            )


def _validate(target_date, period_days) -> tuple[date, int]:
    if isinstance(target_date, datetime):
        if timezone.is_aware(target_date):
            target_date = timezone.localtime(target_date)
        target_date = target_date.date()
    if not isinstance(target_date, date):
        raise InvalidInputError(f"target_date must be a date, got {target_date!r}")
    if isinstance(period_days, bool) or not isinstance(period_days, int):
        raise InvalidInputError(f"period_days must be an integer, got {period_days!r}")
    if period_days < 0:
        raise InvalidInputError("period_days must be >= 0")
    return target_date, period_days


def calculate_all_position_apys(
    *,
    user,
    target_date: Optional[date] = None,
    period_days: Optional[int] = None,
) -> Dict[str, APYResult]:
    """
    APY for every position that is active on ``target_date``.

    Read-only. Results are keyed by position ID; when the same ID appears
    under more than one wallet the key is ``"<wallet>:<position_id>"``.
    """
    if target_date is None:
        target_date = timezone.localdate()
    if period_days is None:
        period_days = int(_setting("APY_DEFAULT_PERIOD_DAYS", 1))
    target_date, period_days = _validate(target_date, period_days)

    df = _load_history(user=user, target_date=target_date)
    if df.empty:
        return {}

    max_gap_days = int(_setting("APY_MAX_GAP_DAYS", 2))
    ceiling = float(_setting("APY_SANITY_CEILING_PCT", 100.0))
    cutoff = pd.Timestamp(target_date) - pd.Timedelta(days=period_days)

    groups = df.groupby(
        ["wallet_address", "protocol_name", "debank_position_id"], sort=True
    )
    id_counts = df.groupby("debank_position_id")["wallet_address"].nunique()

    results: Dict[str, APYResult] = {}
    for (wallet, protocol, pid), g in groups:
        current = g.iloc[-1]
        if not current["is_active"]:
            continue

        base = {
            "position_id": pid,
            "protocol_name": protocol,
            "position_name": current["position_name"],
            "wallet_address": wallet,
        }

        earlier = g[g["date"] <= cutoff]
        if earlier.empty:
            res = _new_position_result(g, current, base)
        else:
            res = _existing_position_result(
                g, current, earlier.iloc[-1], base, max_gap_days=max_gap_days
            )

        prior = g[g["date"] < current["date"]]
        if (~prior["is_active"]).any():
            res.downgrade(Confidence.LOW, "Position was closed and later reopened")

        if res.apy > ceiling:
            res.downgrade(
                Confidence.LOW,
                f"APY of {res.apy:.2f}% exceeds the {ceiling:.0f}% sanity ceiling",
            )

        key = pid if id_counts.get(pid, 1) == 1 else f"{wallet}:{pid}"
        results[key] = res

    _flag_outliers(
        results,
        threshold=float(_setting("APY_OUTLIER_MAD_THRESHOLD", 5.0)),
        min_peers=int(_setting("APY_OUTLIER_MIN_PEERS", 3)),
    )

    log.info(
        "Computed APY for %s position(s) user=%s date=%s period=%sd (low=%s)",
        len(results),
        user.pk,
        target_date,
        period_days,
        sum(1 for r in results.values() if r.confidence == Confidence.LOW),
    )
    return results


def get_apy(
    *,
    user,
    target_date: Optional[date] = None,
    period_days: Optional[int] = None,
) -> Dict[str, dict]:
    return {
        pid: res.as_dict()
        for pid, res in calculate_all_position_apys(
            user=user, target_date=target_date, period_days=period_days
        ).items()
    }
