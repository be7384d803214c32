from __future__ import annotations

from dataclasses import asdict, dataclass, field
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Mapping

from core.errors import InvalidInputError

USD_Q = Decimal("0.01")
ZERO = Decimal("0")
HUNDRED = Decimal("100")
MONTHS = Decimal("12")

HIGH_PERFORMANCE_PCT = Decimal("100")
LOW_PERFORMANCE_PCT = Decimal("-90")


def _q_usd(x: Decimal) -> Decimal:
    return x.quantize(USD_Q, rounding=ROUND_HALF_UP)


def _to_decimal(value: Any, *, name: str, allow_negative: bool = False) -> Decimal:
    if value is None or value == "":
        return ZERO
    if isinstance(value, bool):
        raise InvalidInputError(f"{name} must be numeric, got {value!r}")
    try:
        d = Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidInputError(f"{name} must be numeric, got {value!r}")
    if not d.is_finite():
        raise InvalidInputError(f"{name} must be finite, got {value!r}")
    if d < 0 and not allow_negative:
        raise InvalidInputError(f"{name} must be >= 0, got {value!r}")
    return d


# Mirrored by the TextChoices on fees.models.NAVSettings.
HURDLE_ANNUAL = "annual"
HURDLE_MONTHLY = "monthly"
HURDLE_TYPES = (HURDLE_ANNUAL, HURDLE_MONTHLY)

PAID = "paid"
NOT_PAID = "not_paid"
PARTIALLY_PAID = "partially_paid"
PAYMENT_STATUSES = (PAID, NOT_PAID, PARTIALLY_PAID)

PRIOR_NAV_SOURCES = ("manual", "auto_loaded", "portfolio_estimate", "fallback_needed")


@dataclass(frozen=True)
class PortfolioTotals:
    tokens_value: Decimal = ZERO
    positions_value: Decimal = ZERO
    unclaimed_rewards_value: Decimal = ZERO

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "PortfolioTotals":
        return cls(
            tokens_value=_to_decimal(data.get("tokens_value"), name="tokens_value"),
            positions_value=_to_decimal(
                data.get("positions_value"), name="positions_value"
            ),
            unclaimed_rewards_value=_to_decimal(
                data.get("unclaimed_rewards_value"), name="unclaimed_rewards_value"
            ),
        )

    @property
    def total_value(self) -> Decimal:
        return self.tokens_value + self.positions_value


@dataclass(frozen=True)
class FeeSettings:
    annual_expense: Decimal = Decimal("600")
    monthly_expense: Decimal = Decimal("50")
    prior_pre_fee_nav: Decimal = ZERO
    prior_pre_fee_nav_source: str = "manual"
    net_flows: Decimal = ZERO
    hurdle_rate: Decimal = ZERO
    hurdle_rate_type: str = HURDLE_ANNUAL
    high_water_mark: Decimal = ZERO
    performance_fee_rate: Decimal = Decimal("0.25")
    accrued_performance_fee_rate: Decimal = Decimal("0.25")
    fee_payment_status: str = NOT_PAID
    partial_payment_amount: Decimal = ZERO

    @classmethod
    def from_mapping(
        cls, data: Mapping[str, Any], *, base: "FeeSettings | None" = None
    ) -> "FeeSettings":
        """
        Build settings from a loose mapping (command line, JSON payload or a
        stored row). Keys that are missing fall back to ``base`` or defaults.
        Raises InvalidInputError on non-numeric or negative amounts and on
        unknown enum values.
        """
        base = base or cls()
        merged = {**asdict(base), **{k: v for k, v in data.items() if v is not None}}

        hurdle_type = str(merged["hurdle_rate_type"])
        if hurdle_type not in HURDLE_TYPES:
            raise InvalidInputError(f"Unknown hurdle_rate_type: {hurdle_type!r}")

        status = str(merged["fee_payment_status"])
        if status not in PAYMENT_STATUSES:
            raise InvalidInputError(f"Unknown fee_payment_status: {status!r}")

        source = str(merged["prior_pre_fee_nav_source"])
        if source not in PRIOR_NAV_SOURCES:
            raise InvalidInputError(f"Unknown prior_pre_fee_nav_source: {source!r}")

        return cls(
            annual_expense=_to_decimal(merged["annual_expense"], name="annual_expense"),
            monthly_expense=_to_decimal(
                merged["monthly_expense"], name="monthly_expense"
            ),
            prior_pre_fee_nav=_to_decimal(
                merged["prior_pre_fee_nav"],
                name="prior_pre_fee_nav",
                allow_negative=True,
            ),
            prior_pre_fee_nav_source=source,
            net_flows=_to_decimal(
                merged["net_flows"], name="net_flows", allow_negative=True
            ),
            hurdle_rate=_to_decimal(merged["hurdle_rate"], name="hurdle_rate"),
            hurdle_rate_type=hurdle_type,
            high_water_mark=_to_decimal(
                merged["high_water_mark"], name="high_water_mark"
            ),
            performance_fee_rate=_to_decimal(
                merged["performance_fee_rate"], name="performance_fee_rate"
            ),
            accrued_performance_fee_rate=_to_decimal(
                merged["accrued_performance_fee_rate"],
                name="accrued_performance_fee_rate",
            ),
            fee_payment_status=status,
            partial_payment_amount=_to_decimal(
                merged["partial_payment_amount"], name="partial_payment_amount"
            ),
        )

    def as_dict(self) -> dict:
        return {
            k: (str(v) if isinstance(v, Decimal) else v)
            for k, v in asdict(self).items()
        }


@dataclass(frozen=True)
class NavCalculation:
    investments: Decimal
    dividends_receivable: Decimal
    total_assets: Decimal
    accrued_expenses: Decimal
    total_liabilities: Decimal
    pre_fee_nav: Decimal
    performance: Decimal
    hurdle_amount: Decimal
    performance_fee: Decimal
    accrued_performance_fees: Decimal
    net_assets: Decimal
    validation_warnings: tuple[str, ...] = field(default_factory=tuple)

    def as_dict(self) -> dict:
        """Line items by stable name, amounts as strings."""
        out = {}
        for k, v in asdict(self).items():
            if isinstance(v, Decimal):
                out[k] = str(v)
            else:
                out[k] = list(v)
        return out


def hurdle_amount(settings: FeeSettings) -> Decimal:
    prior = settings.prior_pre_fee_nav
    if settings.hurdle_rate <= 0 or prior <= 0:
        return ZERO
    rate = settings.hurdle_rate / HUNDRED
    if settings.hurdle_rate_type == HURDLE_ANNUAL:
        rate = rate / MONTHS
    return rate * prior


def performance_fee(performance: Decimal, hurdle: Decimal, rate: Decimal) -> Decimal:
    if performance <= hurdle:
        return ZERO
    return (performance - hurdle) * rate


def accrued_performance_fees(
    dividends_receivable: Decimal, settings: FeeSettings
) -> Decimal:
    if settings.fee_payment_status == PAID:
        return ZERO
    calculated = dividends_receivable * settings.accrued_performance_fee_rate
    if settings.fee_payment_status == PARTIALLY_PAID:
        return max(ZERO, calculated - settings.partial_payment_amount)
    return calculated


def validation_warnings(
    *, performance: Decimal, pre_fee_nav: Decimal, settings: FeeSettings
) -> list[str]:
    warnings: list[str] = []
    prior = settings.prior_pre_fee_nav

    if prior > 0:
        pct = performance / prior * HUNDRED
        if pct > HIGH_PERFORMANCE_PCT:
            warnings.append(
                f"Performance of {pct:.1f}% seems unrealistically high - "
                "please verify prior NAV"
            )
        elif pct < LOW_PERFORMANCE_PCT:
            warnings.append(
                f"Performance of {pct:.1f}% seems unrealistically low - "
                "please verify calculations"
            )
        if abs(settings.net_flows) > prior:
            warnings.append(
                f"Net flows ({_q_usd(settings.net_flows)}) are larger than "
                "prior NAV - please verify"
            )

    if pre_fee_nav < 0:
        warnings.append("Current NAV is negative - please review calculations")

    return warnings


def compute_nav(totals: PortfolioTotals, settings: FeeSettings) -> NavCalculation:
    """
    Monthly NAV and fee waterfall.

    Net flows are added to performance: a deposit (positive) raises the
    baseline, a withdrawal (negative) lowers computed performance. Outputs
    are quantized to cents; intermediate arithmetic is exact.
    """
    investments = (
        totals.tokens_value + totals.positions_value - totals.unclaimed_rewards_value
    )
    dividends = totals.unclaimed_rewards_value
    total_assets = investments + dividends
    accrued_expenses = settings.monthly_expense
    total_liabilities = accrued_expenses
    pre_fee_nav = total_assets - accrued_expenses
    performance = pre_fee_nav - settings.prior_pre_fee_nav + settings.net_flows

    hurdle = hurdle_amount(settings)
    perf_fee = performance_fee(performance, hurdle, settings.performance_fee_rate)
    accrued_fees = accrued_performance_fees(dividends, settings)
    net_assets = pre_fee_nav - perf_fee - accrued_fees

    warnings = validation_warnings(
        performance=performance, pre_fee_nav=pre_fee_nav, settings=settings
    )

    return NavCalculation(
        investments=_q_usd(investments),
        dividends_receivable=_q_usd(dividends),
        total_assets=_q_usd(total_assets),
        accrued_expenses=_q_usd(accrued_expenses),
        total_liabilities=_q_usd(total_liabilities),
        pre_fee_nav=_q_usd(pre_fee_nav),
        performance=_q_usd(performance),
        hurdle_amount=_q_usd(hurdle),
        performance_fee=_q_usd(perf_fee),
        accrued_performance_fees=_q_usd(accrued_fees),
        net_assets=_q_usd(net_assets),
        validation_warnings=tuple(warnings),
    )
