import logging

from django.apps import AppConfig
from django.conf import settings
from django.db.backends.signals import connection_created

from .db_pragmas import enable_sqlite_pragmas

log = logging.getLogger(__name__)


class CoreConfig(AppConfig):
    name = "core"
    verbose_name = "Portfolio core"

    def ready(self):
        connection_created.connect(
            enable_sqlite_pragmas, dispatch_uid="core.enable_sqlite_pragmas"
        )

        if not getattr(settings, "DEBANK_API_KEY", ""):
            log.warning(
                "DEBANK_API_KEY is not set; wallet refreshes will fall back "
                "to stored snapshots"
            )
