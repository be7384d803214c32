from __future__ import annotations

from django.contrib import admin, messages
from django.db.models import Sum
from fees.models import NAVSettings


@admin.register(NAVSettings)
class NAVSettingsAdmin(admin.ModelAdmin):
    list_display = (
        "period",
        "user",
        "pre_fee_nav",
        "performance",
        "performance_fee",
        "accrued_performance_fees",
        "net_assets",
        "fee_payment_status",
        "prior_pre_fee_nav_source",
        "calculation_date",
    )
    list_filter = ("fee_payment_status", "prior_pre_fee_nav_source", "year")
    search_fields = ("user__username", "user__email")
    ordering = ("-year", "-month")

    # Calculation outputs are written by the NAV engine
    readonly_fields = NAVSettings.NAV_CALCULATION_FIELDS + (
        "validation_warnings",
        "portfolio_data",
        "calculation_date",
        "created_at",
        "updated_at",
    )

    fieldsets = (
        (None, {"fields": ("user", "year", "month")}),
        ("Fee settings", {"fields": NAVSettings.FEE_SETTING_FIELDS}),
        (
            "NAV calculation",
            {
                "fields": NAVSettings.NAV_CALCULATION_FIELDS
                + ("validation_warnings", "calculation_date")
            },
        ),
        ("Audit", {"fields": ("portfolio_data", "created_at", "updated_at")}),
    )

    actions = ("mark_paid", "mark_not_paid")

    @admin.display(description="Period", ordering="year")
    def period(self, obj):
        return obj.period

    @admin.action(description="Mark accrued performance fees as PAID")
    def mark_paid(self, request, queryset):
        updated = queryset.update(
            fee_payment_status=NAVSettings.FeePaymentStatus.PAID,
            partial_payment_amount=0,
        )
        self.message_user(
            request,
            f"Marked {updated} period(s) as paid. Recompute NAV to refresh net assets.",
            level=messages.SUCCESS,
        )

    @admin.action(description="Mark accrued performance fees as NOT PAID")
    def mark_not_paid(self, request, queryset):
        updated = queryset.update(
            fee_payment_status=NAVSettings.FeePaymentStatus.NOT_PAID,
            partial_payment_amount=0,
        )
        self.message_user(
            request,
            f"Marked {updated} period(s) as not paid. "
            "Recompute NAV to refresh net assets.",
            level=messages.SUCCESS,
        )

    def changelist_view(self, request, extra_context=None):
        """
        Adds the total of outstanding accrued performance fees to the
        changelist page context.
        """
        extra_context = extra_context or {}
        outstanding = (
            NAVSettings.objects.exclude(
                fee_payment_status=NAVSettings.FeePaymentStatus.PAID
            )
            .aggregate(total=Sum("accrued_performance_fees"))
            .get("total")
            or 0
        )
        extra_context["outstanding_accrued_fees"] = outstanding
        return super().changelist_view(request, extra_context=extra_context)
