from __future__ import annotations

import json

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError
from portfolio.services.wallet_processor import refresh_user_wallets
from portfolio.tasks import refresh_user_wallets_task


class Command(BaseCommand):
    help = (
        "Refresh every tracked wallet of a user from DeBank: upsert today's "
        "DailySnapshot and PositionHistory rows."
    )

    def add_arguments(self, parser):
        parser.add_argument("--user-id", type=int, required=True)
        parser.add_argument(
            "--async",
            action="store_true",
            dest="run_async",
            help="Queue via Celery instead of running inline",
        )

    def handle(self, *args, **opts):
        user_id = opts["user_id"]

        if opts["run_async"]:
            res = refresh_user_wallets_task.delay(user_id=user_id)
            self.stdout.write(json.dumps({"queued": True, "task_id": res.id}, indent=2))
            return

        try:
            user = get_user_model().objects.get(pk=user_id)
        except get_user_model().DoesNotExist:
            raise CommandError(f"User not found: id={user_id}")

        try:
            results = refresh_user_wallets(user=user)
        except Exception as e:
            raise CommandError(str(e))

        payload = {
            "user_id": user_id,
            "wallets": [r.as_dict() for r in results],
        }
        self.stdout.write(json.dumps(payload, indent=2))
