from __future__ import annotations

from decimal import Decimal

from django.conf import settings
from django.core.validators import MaxValueValidator, MinValueValidator
from django.db import models


class NAVSettings(models.Model):
    """
    Monthly fee inputs and the NAV waterfall computed from them, one row per
    (user, year, month).
    """

    class HurdleRateType(models.TextChoices):
        ANNUAL = "annual", "Annual"
        MONTHLY = "monthly", "Monthly"

    class FeePaymentStatus(models.TextChoices):
        PAID = "paid", "Paid"
        NOT_PAID = "not_paid", "Not paid"
        PARTIALLY_PAID = "partially_paid", "Partially paid"

    class PriorNavSource(models.TextChoices):
        MANUAL = "manual", "Manual"
        AUTO_LOADED = "auto_loaded", "Loaded from prior month"
        PORTFOLIO_ESTIMATE = "portfolio_estimate", "Current portfolio value"
        FALLBACK_NEEDED = "fallback_needed", "No prior month found"

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="nav_settings",
    )
    year = models.PositiveIntegerField()
    month = models.PositiveSmallIntegerField(
        validators=[MinValueValidator(1), MaxValueValidator(12)]
    )

    # ---- fee settings (inputs) ----
    annual_expense = models.DecimalField(max_digits=18, decimal_places=2, default=600)
    monthly_expense = models.DecimalField(max_digits=18, decimal_places=2, default=50)
    prior_pre_fee_nav = models.DecimalField(
        max_digits=20,
        decimal_places=2,
        default=0,
        help_text="Pre-fee NAV of the previous month",
    )
    prior_pre_fee_nav_source = models.CharField(
        max_length=32,
        choices=PriorNavSource.choices,
        default=PriorNavSource.MANUAL,
    )
    net_flows = models.DecimalField(
        max_digits=20,
        decimal_places=2,
        default=0,
        help_text="Deposits positive, withdrawals negative",
    )
    hurdle_rate = models.DecimalField(
        max_digits=8, decimal_places=4, default=0, help_text="Percent, e.g. 8 for 8%"
    )
    hurdle_rate_type = models.CharField(
        max_length=16, choices=HurdleRateType.choices, default=HurdleRateType.ANNUAL
    )
    high_water_mark = models.DecimalField(max_digits=20, decimal_places=2, default=0)
    performance_fee_rate = models.DecimalField(
        max_digits=6,
        decimal_places=4,
        default=Decimal("0.25"),
        help_text="Fraction, e.g. 0.25",
    )
    accrued_performance_fee_rate = models.DecimalField(
        max_digits=6, decimal_places=4, default=Decimal("0.25")
    )
    fee_payment_status = models.CharField(
        max_length=16,
        choices=FeePaymentStatus.choices,
        default=FeePaymentStatus.NOT_PAID,
        db_index=True,
    )
    partial_payment_amount = models.DecimalField(
        max_digits=20, decimal_places=2, default=0
    )

    # ---- NAV calculation (outputs) ----
    investments = models.DecimalField(max_digits=20, decimal_places=2, default=0)
    dividends_receivable = models.DecimalField(
        max_digits=20, decimal_places=2, default=0
    )
    total_assets = models.DecimalField(max_digits=20, decimal_places=2, default=0)
    accrued_expenses = models.DecimalField(max_digits=20, decimal_places=2, default=0)
    total_liabilities = models.DecimalField(max_digits=20, decimal_places=2, default=0)
    pre_fee_nav = models.DecimalField(max_digits=20, decimal_places=2, default=0)
    performance = models.DecimalField(max_digits=20, decimal_places=2, default=0)
    hurdle_amount = models.DecimalField(max_digits=20, decimal_places=2, default=0)
    performance_fee = models.DecimalField(max_digits=20, decimal_places=2, default=0)
    accrued_performance_fees = models.DecimalField(
        max_digits=20, decimal_places=2, default=0
    )
    net_assets = models.DecimalField(max_digits=20, decimal_places=2, default=0)
    validation_warnings = models.JSONField(default=list)

    portfolio_data = models.JSONField(
        default=dict, help_text="Portfolio totals the calculation was based on"
    )
    calculation_date = models.DateTimeField(null=True, blank=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["user", "year", "month"],
                name="uq_navsettings_user_year_month",
            )
        ]
        ordering = ["-year", "-month"]
        verbose_name = "NAV settings"
        verbose_name_plural = "NAV settings"

    FEE_SETTING_FIELDS = (
        "annual_expense",
        "monthly_expense",
        "prior_pre_fee_nav",
        "prior_pre_fee_nav_source",
        "net_flows",
        "hurdle_rate",
        "hurdle_rate_type",
        "high_water_mark",
        "performance_fee_rate",
        "accrued_performance_fee_rate",
        "fee_payment_status",
        "partial_payment_amount",
    )

    NAV_CALCULATION_FIELDS = (
        "investments",
        "dividends_receivable",
        "total_assets",
        "accrued_expenses",
        "total_liabilities",
        "pre_fee_nav",
        "performance",
        "hurdle_amount",
        "performance_fee",
        "accrued_performance_fees",
        "net_assets",
    )

    @property
    def period(self) -> str:
        return f"{self.year:04d}-{self.month:02d}"

    def fee_settings_dict(self) -> dict:
        return {f: getattr(self, f) for f in self.FEE_SETTING_FIELDS}

    def __str__(self):
        return f"{self.user_id} NAV {self.period}"
