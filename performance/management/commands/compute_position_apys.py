from __future__ import annotations

import json
from datetime import date

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError
from performance.services.apy import get_apy
from performance.tasks import compute_position_apys_task


class Command(BaseCommand):
    help = "Compute per-position APY (with confidence) from PositionHistory."

    def add_arguments(self, parser):
        parser.add_argument("--user-id", type=int, required=True)
        parser.add_argument(
            "--date",
            type=str,
            default=None,
            help="Target date YYYY-MM-DD (default: today)",
        )
        parser.add_argument(
            "--period-days",
            type=int,
            default=None,
            help="Look-back window in days (default: APY_DEFAULT_PERIOD_DAYS)",
        )
        parser.add_argument("--async", action="store_true", dest="run_async")

    def handle(self, *args, **opts):
        date_str = opts.get("date")
        target_date = None
        if date_str:
            try:
                target_date = date.fromisoformat(date_str)
            except ValueError:
                raise CommandError("Invalid --date format. Use YYYY-MM-DD")

        if opts["run_async"]:
            res = compute_position_apys_task.delay(
                user_id=opts["user_id"],
                target_date=date_str,
                period_days=opts["period_days"],
            )
            self.stdout.write(json.dumps({"queued": True, "task_id": res.id}, indent=2))
            return

        try:
            user = get_user_model().objects.get(pk=opts["user_id"])
        except get_user_model().DoesNotExist:
            raise CommandError(f"User not found: id={opts['user_id']}")

        try:
            apys = get_apy(
                user=user, target_date=target_date, period_days=opts["period_days"]
            )
        except Exception as e:
            raise CommandError(str(e))

        self.stdout.write(json.dumps(apys, indent=2))
