from __future__ import annotations

import json
from datetime import date

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError
from performance.services.portfolio_metrics import (
    compute_performance_metrics,
    compute_pnl,
)


class Command(BaseCommand):
    help = "Print PnL and risk/return metrics from a user's daily snapshots."

    def add_arguments(self, parser):
        parser.add_argument("--user-id", type=int, required=True)
        parser.add_argument(
            "--report-type", choices=["daily", "weekly", "monthly"], default="daily"
        )
        parser.add_argument("--period-days", type=int, default=30)
        parser.add_argument("--wallet", type=str, default=None)
        parser.add_argument("--date", type=str, default=None)

    def handle(self, *args, **opts):
        as_of = None
        if opts.get("date"):
            try:
                as_of = date.fromisoformat(opts["date"])
            except ValueError:
                raise CommandError("Invalid --date format. Use YYYY-MM-DD")

        try:
            user = get_user_model().objects.get(pk=opts["user_id"])
        except get_user_model().DoesNotExist:
            raise CommandError(f"User not found: id={opts['user_id']}")

        try:
            pnl = compute_pnl(user=user, report_type=opts["report_type"], as_of=as_of)
            metrics = compute_performance_metrics(
                user=user,
                period_days=opts["period_days"],
                wallet_address=opts["wallet"],
                as_of=as_of,
            )
        except Exception as e:
            raise CommandError(str(e))

        payload = {"pnl": pnl.as_dict(), "metrics": metrics.as_dict()}
        self.stdout.write(json.dumps(payload, indent=2))
