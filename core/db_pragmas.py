import logging

from django.conf import settings
from django.db.utils import OperationalError

log = logging.getLogger(__name__)


def enable_sqlite_pragmas(sender, connection, **kwargs):
    if connection.vendor != "sqlite":
        return

    busy_ms = int(getattr(settings, "SQLITE_BUSY_TIMEOUT_MS", 30000))

    try:
        with connection.cursor() as cursor:
            # writers wait up to SQLITE_BUSY_TIMEOUT_MS for the lock
            cursor.execute(f"PRAGMA busy_timeout={busy_ms};")
            cursor.execute("PRAGMA synchronous=NORMAL;")
            cursor.execute("PRAGMA foreign_keys=ON;")

            # in-memory databases can't switch to WAL
            if not connection.is_in_memory_db():
                cursor.execute("PRAGMA journal_mode=WAL;")

    except OperationalError as e:
        msg = str(e).lower()
        if "database is locked" in msg:
            log.warning("SQLite is locked while applying PRAGMAs; continuing: %s", e)
            return
        raise
