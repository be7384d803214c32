import logging

import sentry_sdk
from django.conf import settings
from sentry_sdk.integrations.django import DjangoIntegration
from sentry_sdk.integrations.logging import LoggingIntegration

log = logging.getLogger(__name__)


def init_sentry(*, component: str) -> bool:
    """
    Initialise Sentry when SENTRY_ENABLED and SENTRY_URL are set.
    Returns True when the SDK was initialised.
    """
    dsn = (getattr(settings, "SENTRY_URL", "") or "").strip()
    enabled = bool(getattr(settings, "SENTRY_ENABLED", False))

    if not (enabled and dsn):
        return False

    sentry_sdk.init(
        dsn=dsn,
        integrations=[
            DjangoIntegration(),
            # fallbacks are logged at WARNING; only ERROR becomes an event
            LoggingIntegration(level=logging.INFO, event_level=logging.ERROR),
        ],
        send_default_pii=True,
        environment=getattr(settings, "SENTRY_ENVIRONMENT", "development"),
        traces_sample_rate=float(getattr(settings, "SENTRY_TRACES_SAMPLE_RATE", 0.0)),
    )
    sentry_sdk.set_tag("component", component)
    log.info("Sentry initialised for %s", component)
    return True
