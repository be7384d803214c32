from decimal import Decimal

import django.core.validators
import django.db.models.deletion
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="NAVSettings",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True,
                        primary_key=True,
                        serialize=False,
                        verbose_name="ID",
                    ),
                ),
                ("year", models.PositiveIntegerField()),
                (
                    "month",
                    models.PositiveSmallIntegerField(
                        validators=[
                            django.core.validators.MinValueValidator(1),
                            django.core.validators.MaxValueValidator(12),
                        ]
                    ),
                ),
                (
                    "annual_expense",
                    models.DecimalField(decimal_places=2, default=600, max_digits=18),
                ),
                (
                    "monthly_expense",
                    models.DecimalField(decimal_places=2, default=50, max_digits=18),
                ),
                (
                    "prior_pre_fee_nav",
                    models.DecimalField(
                        decimal_places=2,
                        default=0,
                        help_text="Pre-fee NAV of the previous month",
                        max_digits=20,
                    ),
                ),
                (
                    "prior_pre_fee_nav_source",
                    models.CharField(
                        choices=[
                            ("manual", "Manual"),
                            ("auto_loaded", "Loaded from prior month"),
                            ("portfolio_estimate", "Current portfolio value"),
                            ("fallback_needed", "No prior month found"),
                        ],
                        default="manual",
                        max_length=32,
                    ),
                ),
                (
                    "net_flows",
                    models.DecimalField(
                        decimal_places=2,
                        default=0,
                        help_text="Deposits positive, withdrawals negative",
                        max_digits=20,
                    ),
                ),
                (
                    "hurdle_rate",
                    models.DecimalField(
                        decimal_places=4,
                        default=0,
                        help_text="Percent, e.g. 8 for 8%",
                        max_digits=8,
                    ),
                ),
                (
                    "hurdle_rate_type",
                    models.CharField(
                        choices=[("annual", "Annual"), ("monthly", "Monthly")],
                        default="annual",
                        max_length=16,
                    ),
                ),
                (
                    "high_water_mark",
                    models.DecimalField(decimal_places=2, default=0, max_digits=20),
                ),
                (
                    "performance_fee_rate",
                    models.DecimalField(
                        decimal_places=4,
                        default=Decimal("0.25"),
                        help_text="Fraction, e.g. 0.25",
                        max_digits=6,
                    ),
                ),
                (
                    "accrued_performance_fee_rate",
                    models.DecimalField(
                        decimal_places=4, default=Decimal("0.25"), max_digits=6
                    ),
                ),
                (
                    "fee_payment_status",
                    models.CharField(
                        choices=[
                            ("paid", "Paid"),
                            ("not_paid", "Not paid"),
                            ("partially_paid", "Partially paid"),
                        ],
                        db_index=True,
                        default="not_paid",
                        max_length=16,
                    ),
                ),
                (
                    "partial_payment_amount",
                    models.DecimalField(decimal_places=2, default=0, max_digits=20),
                ),
                (
                    "investments",
                    models.DecimalField(decimal_places=2, default=0, max_digits=20),
                ),
                (
                    "dividends_receivable",
                    models.DecimalField(decimal_places=2, default=0, max_digits=20),
                ),
                (
                    "total_assets",
                    models.DecimalField(decimal_places=2, default=0, max_digits=20),
                ),
                (
                    "accrued_expenses",
                    models.DecimalField(decimal_places=2, default=0, max_digits=20),
                ),
                (
                    "total_liabilities",
                    models.DecimalField(decimal_places=2, default=0, max_digits=20),
                ),
                (
                    "pre_fee_nav",
                    models.DecimalField(decimal_places=2, default=0, max_digits=20),
                ),
                (
                    "performance",
                    models.DecimalField(decimal_places=2, default=0, max_digits=20),
                ),
                (
                    "hurdle_amount",
                    models.DecimalField(decimal_places=2, default=0, max_digits=20),
                ),
                (
                    "performance_fee",
                    models.DecimalField(decimal_places=2, default=0, max_digits=20),
                ),
                (
                    "accrued_performance_fees",
                    models.DecimalField(decimal_places=2, default=0, max_digits=20),
                ),
                (
                    "net_assets",
                    models.DecimalField(decimal_places=2, default=0, max_digits=20),
                ),
                ("validation_warnings", models.JSONField(default=list)),
                (
                    "portfolio_data",
                    models.JSONField(
                        default=dict,
                        help_text="Portfolio totals the calculation was based on",
                    ),
                ),
                ("calculation_date", models.DateTimeField(blank=True, null=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="nav_settings",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "NAV settings",
                "verbose_name_plural": "NAV settings",
                "ordering": ["-year", "-month"],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("user", "year", "month"),
                        name="uq_navsettings_user_year_month",
                    )
                ],
            },
        ),
    ]
