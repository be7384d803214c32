from __future__ import annotations

from decimal import Decimal

import pytest
from core.errors import InvalidInputError
from fees.services.nav import (
    FeeSettings,
    PortfolioTotals,
    accrued_performance_fees,
    compute_nav,
)


def _totals(tokens, positions=0, rewards=0):
    return PortfolioTotals(
        tokens_value=Decimal(str(tokens)),
        positions_value=Decimal(str(positions)),
        unclaimed_rewards_value=Decimal(str(rewards)),
    )


def _settings(**kw):
    return FeeSettings.from_mapping(kw)


def test_balance_sheet_lines():
    calc = compute_nav(_totals(1000, 500, 50), _settings(monthly_expense="50"))

    assert calc.investments == Decimal("1450.00")
    assert calc.dividends_receivable == Decimal("50.00")
    assert calc.total_assets == Decimal("1500.00")
    assert calc.accrued_expenses == Decimal("50.00")
    assert calc.total_liabilities == Decimal("50.00")
    assert calc.pre_fee_nav == Decimal("1450.00")


def test_withdrawal_lowers_performance():
    calc = compute_nav(
        _totals(950),
        _settings(monthly_expense="50", prior_pre_fee_nav="1000", net_flows="-200"),
    )

    assert calc.pre_fee_nav == Decimal("900.00")
    assert calc.performance == Decimal("-300.00")
    assert calc.performance_fee == Decimal("0.00")


def test_hurdle_and_performance_fee():
    # pre-fee NAV 1300 against a prior of 1000
    calc = compute_nav(
        _totals(1350),
        _settings(
            monthly_expense="50",
            prior_pre_fee_nav="1000",
            hurdle_rate="12",
            hurdle_rate_type="annual",
            performance_fee_rate="0.25",
        ),
    )

    assert calc.performance == Decimal("300.00")
    assert calc.hurdle_amount == Decimal("10.00")
    assert calc.performance_fee == Decimal("72.50")
    assert calc.net_assets == Decimal("1227.50")


def test_monthly_hurdle_is_not_divided():
    calc = compute_nav(
        _totals(1350),
        _settings(
            monthly_expense="50",
            prior_pre_fee_nav="1000",
            hurdle_rate="1",
            hurdle_rate_type="monthly",
        ),
    )
    assert calc.hurdle_amount == Decimal("10.00")


def test_partially_paid_accrued_fees():
    settings = _settings(
        fee_payment_status="partially_paid",
        accrued_performance_fee_rate="0.25",
        partial_payment_amount="50",
    )
    # 280 * 0.25 = 70 calculated, 50 already paid
    assert accrued_performance_fees(Decimal("280"), settings) == Decimal("20")

    overpaid = _settings(
        fee_payment_status="partially_paid", partial_payment_amount="500"
    )
    assert accrued_performance_fees(Decimal("280"), overpaid) == Decimal("0")


@pytest.mark.parametrize("rewards", ["0", "50", "12345.67"])
def test_paid_status_clears_accrued_fees(rewards):
    calc = compute_nav(
        _totals(1000, 0, rewards), _settings(fee_payment_status="paid")
    )
    assert calc.accrued_performance_fees == Decimal("0.00")


def test_not_paid_accrues_full_amount():
    calc = compute_nav(_totals(1000, 0, 100), _settings())
    assert calc.accrued_performance_fees == Decimal("25.00")
    assert calc.net_assets == (
        calc.pre_fee_nav - calc.performance_fee - Decimal("25.00")
    )


def test_performance_fee_is_monotonic_in_performance():
    fees = []
    for tokens in range(900, 1600, 50):
        calc = compute_nav(
            _totals(tokens),
            _settings(prior_pre_fee_nav="1000", hurdle_rate="8"),
        )
        assert calc.performance_fee >= 0
        fees.append(calc.performance_fee)
    assert fees == sorted(fees)


@pytest.mark.parametrize("hurdle_type", ["annual", "monthly"])
def test_performance_fee_never_rises_with_hurdle(hurdle_type):
    fees = []
    for rate in ("0", "1", "2", "5", "8", "12", "20", "50"):
        calc = compute_nav(
            _totals(1350),
            _settings(
                prior_pre_fee_nav="1000",
                hurdle_rate=rate,
                hurdle_rate_type=hurdle_type,
            ),
        )
        assert calc.performance_fee >= 0
        fees.append(calc.performance_fee)
    assert fees == sorted(fees, reverse=True)
    assert fees[0] > fees[-1]


def test_compute_nav_is_deterministic():
    totals = _totals("1234.567", "89.01", "2.5")
    settings = _settings(prior_pre_fee_nav="1000", hurdle_rate="8", net_flows="10")
    assert compute_nav(totals, settings) == compute_nav(totals, settings)


def test_warnings_for_unrealistic_performance():
    high = compute_nav(_totals(3050), _settings(prior_pre_fee_nav="1000"))
    assert any("unrealistically high" in w for w in high.validation_warnings)

    low = compute_nav(_totals(50), _settings(prior_pre_fee_nav="1000"))
    assert any("unrealistically low" in w for w in low.validation_warnings)

    flows = compute_nav(
        _totals(1050), _settings(prior_pre_fee_nav="1000", net_flows="-1500")
    )
    assert any("Net flows" in w for w in flows.validation_warnings)

    negative = compute_nav(_totals(10), _settings(monthly_expense="50"))
    assert negative.pre_fee_nav == Decimal("-40.00")
    assert any("negative" in w for w in negative.validation_warnings)


def test_warnings_do_not_change_figures():
    calc = compute_nav(_totals(3050), _settings(prior_pre_fee_nav="1000"))
    assert calc.validation_warnings
    assert calc.pre_fee_nav == Decimal("3000.00")
    assert calc.performance == Decimal("2000.00")


@pytest.mark.parametrize(
    "overrides",
    [
        {"monthly_expense": "-1"},
        {"hurdle_rate": "abc"},
        {"performance_fee_rate": "NaN"},
        {"hurdle_rate_type": "weekly"},
        {"fee_payment_status": "maybe"},
        {"prior_pre_fee_nav_source": "guess"},
        {"net_flows": True},
    ],
)
def test_invalid_settings_are_rejected(overrides):
    with pytest.raises(InvalidInputError):
        FeeSettings.from_mapping(overrides)


def test_negative_prior_nav_and_flows_are_allowed():
    s = _settings(prior_pre_fee_nav="-10", net_flows="-5")
    assert s.prior_pre_fee_nav == Decimal("-10")
    assert s.net_flows == Decimal("-5")


def test_overrides_merge_over_base():
    base = _settings(hurdle_rate="8", monthly_expense="75")
    merged = FeeSettings.from_mapping({"net_flows": "100"}, base=base)
    assert merged.hurdle_rate == Decimal("8")
    assert merged.monthly_expense == Decimal("75")
    assert merged.net_flows == Decimal("100")


def test_as_dict_uses_stable_names():
    out = compute_nav(_totals(1000), _settings()).as_dict()
    assert out["pre_fee_nav"] == "950.00"
    assert out["validation_warnings"] == []
    assert set(out) >= {"investments", "net_assets", "hurdle_amount"}
