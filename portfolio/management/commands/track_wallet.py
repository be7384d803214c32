from __future__ import annotations

import json
import re

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError
from portfolio.models import TrackedWallet

ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")


class Command(BaseCommand):
    help = "Add (or deactivate) a wallet address in a user's tracked wallets."

    def add_arguments(self, parser):
        parser.add_argument("--user-id", type=int, required=True)
        parser.add_argument("--address", type=str, required=True)
        parser.add_argument("--label", type=str, default="")
        parser.add_argument("--deactivate", action="store_true")

    def handle(self, *args, **opts):
        address = opts["address"].strip()
        if not ADDRESS_RE.match(address):
            raise CommandError(f"Invalid wallet address: {address}")

        try:
            user = get_user_model().objects.get(pk=opts["user_id"])
        except get_user_model().DoesNotExist:
            raise CommandError(f"User not found: id={opts['user_id']}")

        wallet, created = TrackedWallet.objects.update_or_create(
            user=user,
            address=address.lower(),
            defaults={
                "label": opts["label"],
                "is_active": not opts["deactivate"],
            },
        )

        payload = {
            "user_id": user.pk,
            "address": wallet.address,
            "label": wallet.label,
            "is_active": wallet.is_active,
            "created": created,
        }
        self.stdout.write(json.dumps(payload, indent=2))
