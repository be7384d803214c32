from __future__ import annotations

import json

from django.contrib.auth import get_user_model
from django.core.management.base import BaseCommand, CommandError
from fees.models import NAVSettings
from fees.services.nav_settings import apply_portfolio_estimate, compute_and_save_nav
from fees.tasks import compute_monthly_nav_task


class Command(BaseCommand):
    help = (
        "Compute the monthly NAV / fee waterfall for a user from the latest "
        "wallet snapshots and store it in NAVSettings."
    )

    def add_arguments(self, parser):
        parser.add_argument("--user-id", type=int, required=True)
        parser.add_argument("--year", type=int, required=True)
        parser.add_argument("--month", type=int, required=True)
        parser.add_argument("--net-flows", type=str, default=None)
        parser.add_argument("--monthly-expense", type=str, default=None)
        parser.add_argument("--hurdle-rate", type=str, default=None)
        parser.add_argument(
            "--hurdle-rate-type",
            choices=NAVSettings.HurdleRateType.values,
            default=None,
        )
        parser.add_argument("--performance-fee-rate", type=str, default=None)
        parser.add_argument("--accrued-performance-fee-rate", type=str, default=None)
        parser.add_argument(
            "--fee-payment-status",
            choices=NAVSettings.FeePaymentStatus.values,
            default=None,
        )
        parser.add_argument("--partial-payment-amount", type=str, default=None)
        parser.add_argument("--prior-pre-fee-nav", type=str, default=None)
        parser.add_argument(
            "--use-portfolio-estimate",
            action="store_true",
            help="First month: use the current portfolio value as prior NAV",
        )
        parser.add_argument("--async", action="store_true", dest="run_async")

    def handle(self, *args, **opts):
        overrides = {
            "net_flows": opts["net_flows"],
            "monthly_expense": opts["monthly_expense"],
            "hurdle_rate": opts["hurdle_rate"],
            "hurdle_rate_type": opts["hurdle_rate_type"],
            "performance_fee_rate": opts["performance_fee_rate"],
            "accrued_performance_fee_rate": opts["accrued_performance_fee_rate"],
            "fee_payment_status": opts["fee_payment_status"],
            "partial_payment_amount": opts["partial_payment_amount"],
        }
        if opts["prior_pre_fee_nav"] is not None:
            overrides["prior_pre_fee_nav"] = opts["prior_pre_fee_nav"]
            overrides["prior_pre_fee_nav_source"] = NAVSettings.PriorNavSource.MANUAL
        overrides = {k: v for k, v in overrides.items() if v is not None}

        if opts["run_async"]:
            res = compute_monthly_nav_task.delay(
                user_id=opts["user_id"],
                year=opts["year"],
                month=opts["month"],
                fee_settings={k: str(v) for k, v in overrides.items()},
            )
            self.stdout.write(json.dumps({"queued": True, "task_id": res.id}, indent=2))
            return

        try:
            user = get_user_model().objects.get(pk=opts["user_id"])
        except get_user_model().DoesNotExist:
            raise CommandError(f"User not found: id={opts['user_id']}")

        try:
            if opts["use_portfolio_estimate"]:
                apply_portfolio_estimate(
                    user=user, year=opts["year"], month=opts["month"]
                )
            nav = compute_and_save_nav(
                user=user,
                year=opts["year"],
                month=opts["month"],
                fee_settings=overrides,
            )
        except Exception as e:
            raise CommandError(str(e))

        payload = {
            "user_id": user.pk,
            "period": nav.period,
            "fee_settings": {
                k: str(v) for k, v in nav.fee_settings_dict().items()
            },
            "nav_calculations": {
                f: str(getattr(nav, f)) for f in NAVSettings.NAV_CALCULATION_FIELDS
            },
            "validation_warnings": nav.validation_warnings,
        }
        self.stdout.write(json.dumps(payload, indent=2))
