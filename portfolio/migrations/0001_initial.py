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
            name="TrackedWallet",
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
                (
                    "address",
                    models.CharField(help_text="Lower-cased EVM address", max_length=64),
                ),
                ("label", models.CharField(blank=True, default="", max_length=128)),
                ("is_active", models.BooleanField(db_index=True, default=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="tracked_wallets",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["user_id", "address"],
                "unique_together": {("user", "address")},
            },
        ),
        migrations.CreateModel(
            name="DailySnapshot",
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
                ("wallet_address", models.CharField(db_index=True, max_length=64)),
                (
                    "date",
                    models.DateField(help_text="Day bucket in the reference time zone"),
                ),
                (
                    "captured_at",
                    models.DateTimeField(help_text="When the valuation was taken"),
                ),
                (
                    "total_nav_usd",
                    models.DecimalField(
                        decimal_places=2,
                        default=0,
                        help_text="Tokens plus protocol positions (USD)",
                        max_digits=20,
                    ),
                ),
                (
                    "tokens_nav_usd",
                    models.DecimalField(decimal_places=2, default=0, max_digits=20),
                ),
                (
                    "positions_nav_usd",
                    models.DecimalField(decimal_places=2, default=0, max_digits=20),
                ),
                (
                    "tokens",
                    models.JSONField(
                        default=list,
                        help_text="Wallet token balances: symbol, amount, price, usd_value, chain",
                    ),
                ),
                (
                    "positions",
                    models.JSONField(
                        default=list,
                        help_text="Deduplicated protocol positions with supply/reward tokens",
                    ),
                ),
                (
                    "chain_distribution",
                    models.JSONField(
                        default=dict, help_text="USD value of wallet tokens per chain"
                    ),
                ),
                (
                    "protocol_distribution",
                    models.JSONField(
                        default=dict, help_text="USD value of positions per protocol"
                    ),
                ),
                ("data_source", models.CharField(default="debank", max_length=32)),
                ("processing_ms", models.PositiveIntegerField(default=0)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="daily_snapshots",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-date"],
                "indexes": [
                    models.Index(
                        fields=["user", "date"], name="dailysnap_user_date_idx"
                    ),
                    models.Index(
                        fields=["user", "wallet_address", "date"],
                        name="dailysnap_user_wallet_date_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("user", "wallet_address", "date"),
                        name="uq_dailysnapshot_user_wallet_date",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="PositionHistory",
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
                ("wallet_address", models.CharField(max_length=64)),
                ("protocol_name", models.CharField(max_length=128)),
                (
                    "position_name",
                    models.CharField(blank=True, default="", max_length=256),
                ),
                (
                    "debank_position_id",
                    models.CharField(
                        help_text="Stable position ID (portfolio item id, pool id or derived hash)",
                        max_length=128,
                    ),
                ),
                (
                    "date",
                    models.DateField(help_text="Day bucket in the reference time zone"),
                ),
                ("captured_at", models.DateTimeField()),
                (
                    "total_value",
                    models.DecimalField(decimal_places=2, default=0, max_digits=20),
                ),
                (
                    "unclaimed_rewards_value",
                    models.DecimalField(decimal_places=2, default=0, max_digits=20),
                ),
                ("tokens", models.JSONField(default=list, help_text="Supply tokens")),
                ("rewards", models.JSONField(default=list, help_text="Reward tokens")),
                (
                    "is_active",
                    models.BooleanField(
                        default=True,
                        help_text="False once the position stops appearing upstream",
                    ),
                ),
                ("protocol_data", models.JSONField(default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                (
                    "user",
                    models.ForeignKey(
                        on_delete=django.db.models.deletion.CASCADE,
                        related_name="position_history",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "ordering": ["-date"],
                "indexes": [
                    models.Index(
                        fields=["user", "debank_position_id", "date"],
                        name="poshist_user_pos_date_idx",
                    ),
                    models.Index(
                        fields=["user", "wallet_address", "date"],
                        name="poshist_user_wallet_date_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=(
                            "user",
                            "wallet_address",
                            "protocol_name",
                            "debank_position_id",
                            "date",
                        ),
                        name="uq_positionhistory_position_date",
                    )
                ],
            },
        ),
    ]
