from __future__ import annotations

import json

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError
from fees.models import NAVSettings
from fees.services.nav_settings import (
    get_nav,
    get_nav_history,
    get_prior_nav,
    list_available_months,
    reset_nav,
)


class Command(BaseCommand):
    help = "Inspect or reset a user's monthly NAV settings."

    def add_arguments(self, parser):
        parser.add_argument(
            "action", choices=["show", "prior", "months", "history", "reset"]
        )
        parser.add_argument("--user-id", type=int, required=True)
        parser.add_argument("--year", type=int, default=None)
        parser.add_argument("--month", type=int, default=None)
        parser.add_argument("--limit", type=int, default=12)
        parser.add_argument(
            "--yes", action="store_true", help="Confirm a reset without prompting"
        )

    def handle(self, *args, **opts):
        try:
            user = get_user_model().objects.get(pk=opts["user_id"])
        except get_user_model().DoesNotExist:
            raise CommandError(f"User not found: id={opts['user_id']}")

        action = opts["action"]
        year, month = opts["year"], opts["month"]
        if action in ("show", "prior") and (year is None or month is None):
            raise CommandError(f"{action} needs --year and --month")
        if action == "reset" and not opts["yes"]:
            raise CommandError("Refusing to reset without --yes")

        try:
            if action == "show":
                nav = get_nav(user=user, year=year, month=month)
                payload = {
                    "period": nav.period,
                    "fee_settings": {
                        k: str(v) for k, v in nav.fee_settings_dict().items()
                    },
                    "nav_calculations": {
                        f: str(getattr(nav, f))
                        for f in NAVSettings.NAV_CALCULATION_FIELDS
                    },
                    "validation_warnings": nav.validation_warnings,
                }
            elif action == "prior":
                payload = get_prior_nav(user=user, year=year, month=month).as_dict()
            elif action == "months":
                payload = {"months": list_available_months(user=user)}
            elif action == "history":
                payload = {"history": get_nav_history(user=user, limit=opts["limit"])}
            else:
                deleted = reset_nav(user=user, year=year, month=month)
                payload = {"deleted": deleted}
        except Exception as e:
            raise CommandError(str(e))

        self.stdout.write(json.dumps(payload, indent=2))
