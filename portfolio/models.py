from __future__ import annotations

from django.conf import settings
from django.db import models


class TrackedWallet(models.Model):
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="tracked_wallets",
    )
    address = models.CharField(max_length=64, help_text="Lower-cased EVM address")
    label = models.CharField(max_length=128, blank=True, default="")
    is_active = models.BooleanField(default=True, db_index=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        unique_together = [("user", "address")]
        ordering = ["user_id", "address"]

    def save(self, *args, **kwargs):
        self.address = (self.address or "").strip().lower()
        super().save(*args, **kwargs)

    def __str__(self):
        return f"{self.user_id}:{self.address}"


class DailySnapshot(models.Model):
    """
    One valuation per (user, wallet, local calendar day). Re-running a
    refresh on the same day overwrites the row in place.
    """

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="daily_snapshots",
    )
    wallet_address = models.CharField(max_length=64, db_index=True)

    date = models.DateField(help_text="Day bucket in the reference time zone")
    captured_at = models.DateTimeField(help_text="When the valuation was taken")

    total_nav_usd = models.DecimalField(
        max_digits=20,
        decimal_places=2,
        default=0,
        help_text="Tokens plus protocol positions (USD)",
    )
    tokens_nav_usd = models.DecimalField(max_digits=20, decimal_places=2, default=0)
    positions_nav_usd = models.DecimalField(max_digits=20, decimal_places=2, default=0)

    tokens = models.JSONField(
        default=list,
        help_text="Wallet token balances: symbol, amount, price, usd_value, chain",
    )
    positions = models.JSONField(
        default=list,
        help_text="Deduplicated protocol positions with supply/reward tokens",
    )

    chain_distribution = models.JSONField(
        default=dict, help_text="USD value of wallet tokens per chain"
    )
    protocol_distribution = models.JSONField(
        default=dict, help_text="USD value of positions per protocol"
    )

    data_source = models.CharField(max_length=32, default="debank")
    processing_ms = models.PositiveIntegerField(default=0)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["user", "wallet_address", "date"],
                name="uq_dailysnapshot_user_wallet_date",
            )
        ]
        ordering = ["-date"]
        indexes = [
            models.Index(fields=["user", "date"], name="dailysnap_user_date_idx"),
            models.Index(
                fields=["user", "wallet_address", "date"],
                name="dailysnap_user_wallet_date_idx",
            ),
        ]

    def __str__(self):
        return f"{self.wallet_address} {self.date} ${self.total_nav_usd}"


class PositionHistory(models.Model):
    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.CASCADE,
        related_name="position_history",
    )
    wallet_address = models.CharField(max_length=64)
    protocol_name = models.CharField(max_length=128)
    position_name = models.CharField(max_length=256, blank=True, default="")
    debank_position_id = models.CharField(
        max_length=128,
        help_text="Stable position ID (portfolio item id, pool id or derived hash)",
    )

    date = models.DateField(help_text="Day bucket in the reference time zone")
    captured_at = models.DateTimeField()

    total_value = models.DecimalField(max_digits=20, decimal_places=2, default=0)
    unclaimed_rewards_value = models.DecimalField(
        max_digits=20, decimal_places=2, default=0
    )

    tokens = models.JSONField(default=list, help_text="Supply tokens")
    rewards = models.JSONField(default=list, help_text="Reward tokens")

    is_active = models.BooleanField(
        default=True,
        help_text="False once the position stops appearing upstream",
    )
    protocol_data = models.JSONField(default=dict)

    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=[
                    "user",
                    "wallet_address",
                    "protocol_name",
                    "debank_position_id",
                    "date",
                ],
                name="uq_positionhistory_position_date",
            )
        ]
        ordering = ["-date"]
        indexes = [
            models.Index(
                fields=["user", "debank_position_id", "date"],
                name="poshist_user_pos_date_idx",
            ),
            models.Index(
                fields=["user", "wallet_address", "date"],
                name="poshist_user_wallet_date_idx",
            ),
        ]

    def __str__(self):
        state = "" if self.is_active else " (inactive)"
        return f"{self.protocol_name}/{self.debank_position_id} {self.date}{state}"
