from __future__ import annotations

from django.contrib import admin, messages
from portfolio.models import DailySnapshot, PositionHistory, TrackedWallet


@admin.register(TrackedWallet)
class TrackedWalletAdmin(admin.ModelAdmin):
    list_display = ("address", "user", "label", "is_active", "created_at")
    list_filter = ("is_active",)
    search_fields = ("address", "label", "user__username", "user__email")
    ordering = ("user", "address")

    actions = ("refresh_now",)

    @admin.action(description="Refresh selected wallets now (queued)")
    def refresh_now(self, request, queryset):
        from portfolio.tasks import refresh_user_wallets_task

        user_ids = sorted(set(queryset.values_list("user_id", flat=True)))
        for user_id in user_ids:
            refresh_user_wallets_task.delay(user_id=user_id)
        self.message_user(
            request,
            f"Queued wallet refresh for {len(user_ids)} user(s).",
            level=messages.SUCCESS,
        )


@admin.register(DailySnapshot)
class DailySnapshotAdmin(admin.ModelAdmin):
    list_display = (
        "date",
        "user",
        "wallet_address",
        "total_nav_usd",
        "tokens_nav_usd",
        "positions_nav_usd",
        "data_source",
        "processing_ms",
        "updated_at",
    )
    list_filter = ("data_source",)
    search_fields = ("wallet_address", "user__username")
    date_hierarchy = "date"
    ordering = ("-date", "wallet_address")

    # Snapshots are written by the refresh pipeline only
    readonly_fields = (
        "user",
        "wallet_address",
        "date",
        "captured_at",
        "total_nav_usd",
        "tokens_nav_usd",
        "positions_nav_usd",
        "tokens",
        "positions",
        "chain_distribution",
        "protocol_distribution",
        "data_source",
        "processing_ms",
        "created_at",
        "updated_at",
    )


@admin.register(PositionHistory)
class PositionHistoryAdmin(admin.ModelAdmin):
    list_display = (
        "date",
        "protocol_name",
        "position_name",
        "debank_position_id",
        "wallet_address",
        "total_value",
        "unclaimed_rewards_value",
        "is_active",
    )
    list_filter = ("is_active", "protocol_name")
    search_fields = ("debank_position_id", "position_name", "wallet_address")
    date_hierarchy = "date"
    ordering = ("-date", "protocol_name")
