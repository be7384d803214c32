from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Any, Mapping, Optional

from core.errors import InvalidInputError, PersistenceError
from django.db import DatabaseError, transaction
from django.utils import timezone
from fees.models import NAVSettings
from fees.services.nav import (
    FeeSettings,
    NavCalculation,
    PortfolioTotals,
    compute_nav,
    validation_warnings,
)
from portfolio.services.snapshots import get_portfolio_totals

log = logging.getLogger(__name__)


def _validate_period(year: Any, month: Any) -> tuple[int, int]:
    if isinstance(year, bool) or isinstance(month, bool):
        raise InvalidInputError("year and month must be integers")
    try:
        year, month = int(year), int(month)
    except (TypeError, ValueError):
        raise InvalidInputError(f"Invalid period: year={year!r} month={month!r}")
    if not 1 <= month <= 12:
        raise InvalidInputError(f"month must be 1..12, got {month}")
    if not 1970 <= year <= 9999:
        raise InvalidInputError(f"year out of range: {year}")
    return year, month


def _prev_month(year: int, month: int) -> tuple[int, int]:
    if month == 1:
        return year - 1, 12
    return year, month - 1


def _month_end(year: int, month: int) -> date:
    return date(year, month, calendar.monthrange(year, month)[1])


def _period(year: int, month: int) -> str:
    return f"{year:04d}-{month:02d}"


@dataclass
class PriorNav:
    found: bool
    prior_pre_fee_nav: Decimal
    source: str
    prior_year: int
    prior_month: int
    message: str
    prior_summary: dict = field(default_factory=dict)

    def as_dict(self) -> dict:
        return {
            "found": self.found,
            "prior_pre_fee_nav": str(self.prior_pre_fee_nav),
            "source": self.source,
            "prior_year": self.prior_year,
            "prior_month": self.prior_month,
            "message": self.message,
            "prior_summary": self.prior_summary,
        }


def get_prior_nav(*, user, year: int, month: int) -> PriorNav:
    """
    Look up the previous calendar month's stored pre-fee NAV (January rolls
    back to December of the previous year). Only a month whose NAV has been
    calculated counts as found.
    """
    year, month = _validate_period(year, month)
    py, pm = _prev_month(year, month)
    month_name = calendar.month_name[pm]

    prior = (
        NAVSettings.objects.filter(user=user, year=py, month=pm)
        .exclude(calculation_date__isnull=True)
        .first()
    )
    if prior is None:
        return PriorNav(
            found=False,
            prior_pre_fee_nav=Decimal("0"),
            source=NAVSettings.PriorNavSource.FALLBACK_NEEDED,
            prior_year=py,
            prior_month=pm,
            message=(
                "No prior month data found. Consider using current portfolio "
                "value as baseline for first month."
            ),
        )

    return PriorNav(
        found=True,
        prior_pre_fee_nav=prior.pre_fee_nav,
        source=NAVSettings.PriorNavSource.AUTO_LOADED,
        prior_year=py,
        prior_month=pm,
        message=f"Loaded from {month_name} {py} NAV report",
        prior_summary={
            "total_assets": str(prior.total_assets),
            "net_assets": str(prior.net_assets),
            "performance": str(prior.performance),
        },
    )


def get_nav(*, user, year: int, month: int) -> NAVSettings:
    """
    Settings for (user, year, month), created with defaults on first read.
    A new row has its prior pre-fee NAV seeded from the previous month.
    """
    year, month = _validate_period(year, month)

    existing = NAVSettings.objects.filter(user=user, year=year, month=month).first()
    if existing:
        return existing

    prior = get_prior_nav(user=user, year=year, month=month)
    try:
        with transaction.atomic():
            obj, created = NAVSettings.objects.get_or_create(
                user=user,
                year=year,
                month=month,
                defaults={
                    "prior_pre_fee_nav": prior.prior_pre_fee_nav,
                    "prior_pre_fee_nav_source": prior.source,
                },
            )
    except DatabaseError as e:
        log.exception(
            "Creating NAV settings failed user=%s period=%s",
            user.pk,
            _period(year, month),
        )
        raise PersistenceError(
            f"Could not create NAV settings: {e}",
            user_id=user.pk,
            period=_period(year, month),
        ) from e

    if created:
        log.info(
            "Created NAV settings user=%s period=%s prior=%s (%s)",
            user.pk,
            obj.period,
            obj.prior_pre_fee_nav,
            obj.prior_pre_fee_nav_source,
        )
    return obj


def _coerce_nav_calculations(data: Mapping[str, Any] | NavCalculation) -> dict:
    if isinstance(data, NavCalculation):
        data = data.as_dict()
    out = {}
    for name in NAVSettings.NAV_CALCULATION_FIELDS:
        value = data.get(name)
        if value is None:
            out[name] = Decimal("0")
            continue
        try:
            d = Decimal(str(value))
        except ArithmeticError:
            raise InvalidInputError(f"{name} must be numeric, got {value!r}")
        if not d.is_finite():
            raise InvalidInputError(f"{name} must be finite, got {value!r}")
        out[name] = d.quantize(Decimal("0.01"))
    return out


def save_nav(
    *,
    user,
    year: int,
    month: int,
    fee_settings: Mapping[str, Any] | FeeSettings,
    nav_calculations: Mapping[str, Any] | NavCalculation,
    portfolio_data: Optional[Mapping[str, Any]] = None,
) -> NAVSettings:
    """
    Upsert fee settings and NAV figures for the period. Advisory warnings are
    recomputed from the saved figures and stored alongside them.
    """
    year, month = _validate_period(year, month)
    if not isinstance(fee_settings, FeeSettings):
        fee_settings = FeeSettings.from_mapping(fee_settings)
    calc = _coerce_nav_calculations(nav_calculations)

    warnings = validation_warnings(
        performance=calc["performance"],
        pre_fee_nav=calc["pre_fee_nav"],
        settings=fee_settings,
    )

    defaults = {
        **{f: getattr(fee_settings, f) for f in NAVSettings.FEE_SETTING_FIELDS},
        **calc,
        "validation_warnings": warnings,
        "calculation_date": timezone.now(),
    }
    if portfolio_data is not None:
        defaults["portfolio_data"] = dict(portfolio_data)

    try:
        with transaction.atomic():
            obj, _ = NAVSettings.objects.update_or_create(
                user=user, year=year, month=month, defaults=defaults
            )
            obj.refresh_from_db()
    except DatabaseError as e:
        log.exception(
            "Saving NAV settings failed user=%s period=%s",
            user.pk,
            _period(year, month),
        )
        raise PersistenceError(
            f"Could not save NAV settings: {e}",
            user_id=user.pk,
            period=_period(year, month),
        ) from e

    for w in warnings:
        log.warning("NAV %s user=%s: %s", obj.period, user.pk, w)
    return obj


def compute_and_save_nav(
    *,
    user,
    year: int,
    month: int,
    fee_settings: Optional[Mapping[str, Any]] = None,
    portfolio_totals: Optional[PortfolioTotals] = None,
) -> NAVSettings:
    """
    Run the NAV waterfall for the period and store it. Overrides in
    ``fee_settings`` are merged over the stored settings; portfolio totals
    default to the latest snapshots on or before the month end. An explicit
    prior NAV marks its source as manual.
    """
    stored = get_nav(user=user, year=year, month=month)
    base = FeeSettings.from_mapping(stored.fee_settings_dict())
    overrides = dict(fee_settings or {})
    if overrides.get("prior_pre_fee_nav") is not None:
        overrides.setdefault(
            "prior_pre_fee_nav_source", NAVSettings.PriorNavSource.MANUAL
        )
    settings_ = FeeSettings.from_mapping(overrides, base=base)

    if portfolio_totals is None:
        as_of = min(_month_end(stored.year, stored.month), timezone.localdate())
        portfolio_totals = get_portfolio_totals(user=user, as_of=as_of)

    calc = compute_nav(portfolio_totals, settings_)
    return save_nav(
        user=user,
        year=stored.year,
        month=stored.month,
        fee_settings=settings_,
        nav_calculations=calc,
        portfolio_data={
            "tokens_value": str(portfolio_totals.tokens_value),
            "positions_value": str(portfolio_totals.positions_value),
            "unclaimed_rewards_value": str(portfolio_totals.unclaimed_rewards_value),
        },
    )


def apply_portfolio_estimate(
    *, user, year: int, month: int, as_of: Optional[date] = None
) -> NAVSettings:
    """First-month setup: use the current portfolio value as the prior NAV."""
    obj = get_nav(user=user, year=year, month=month)
    totals = get_portfolio_totals(user=user, as_of=as_of)

    obj.prior_pre_fee_nav = totals.total_value.quantize(Decimal("0.01"))
    obj.prior_pre_fee_nav_source = NAVSettings.PriorNavSource.PORTFOLIO_ESTIMATE
    try:
        obj.save(
            update_fields=[
                "prior_pre_fee_nav",
                "prior_pre_fee_nav_source",
                "updated_at",
            ]
        )
    except DatabaseError as e:
        raise PersistenceError(
            f"Could not save portfolio estimate: {e}",
            user_id=user.pk,
            period=obj.period,
        ) from e
    return obj


def list_available_months(*, user) -> list[dict]:
    return [
        {
            "year": y,
            "month": m,
            "label": f"{calendar.month_name[m]} {y}",
        }
        for y, m in NAVSettings.objects.filter(user=user)
        .order_by("-year", "-month")
        .values_list("year", "month")
    ]


def get_nav_history(*, user, limit: int = 12) -> list[dict]:
    if limit <= 0:
        raise InvalidInputError("limit must be > 0")
    rows = NAVSettings.objects.filter(user=user).order_by("-year", "-month")[:limit]
    return [
        {
            "year": r.year,
            "month": r.month,
            "label": f"{calendar.month_name[r.month]} {r.year}",
            "pre_fee_nav": str(r.pre_fee_nav),
            "net_assets": str(r.net_assets),
            "performance": str(r.performance),
            "calculation_date": (
                r.calculation_date.isoformat() if r.calculation_date else None
            ),
        }
        for r in rows
    ]


def reset_nav(*, user, year: Optional[int] = None, month: Optional[int] = None) -> int:
    """
    Administrative reset: delete the user's NAV settings for one period, or
    all of them when no period is given. Returns the number of rows deleted.
    """
    qs = NAVSettings.objects.filter(user=user)
    period = "all"
    if year is not None or month is not None:
        if year is None or month is None:
            raise InvalidInputError("reset needs both year and month, or neither")
        year, month = _validate_period(year, month)
        qs = qs.filter(year=year, month=month)
        period = _period(year, month)

    try:
        with transaction.atomic():
            deleted, _ = qs.delete()
    except DatabaseError as e:
        raise PersistenceError(
            f"Could not reset NAV settings: {e}", user_id=user.pk, period=period
        ) from e

    log.warning(
        "Reset NAV settings user=%s period=%s deleted=%s", user.pk, period, deleted
    )
    return deleted
