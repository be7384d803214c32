from django.conf import settings
from django.core.management.base import BaseCommand
from django.db import connection


class Command(BaseCommand):
    help = "Configure SQLite PRAGMAs for the snapshot store (WAL, busy_timeout, etc.)"

    def handle(self, *args, **options):
        if connection.vendor != "sqlite":
            self.stdout.write(self.style.WARNING("Not SQLite; skipping."))
            return

        busy_ms = int(getattr(settings, "SQLITE_BUSY_TIMEOUT_MS", 30000))

        with connection.cursor() as cursor:
            cursor.execute("PRAGMA journal_mode=WAL;")
            cursor.execute("PRAGMA synchronous=NORMAL;")
            cursor.execute(f"PRAGMA busy_timeout={busy_ms};")
            cursor.execute("PRAGMA foreign_keys=ON;")

            cursor.execute("PRAGMA journal_mode;")
            mode = cursor.fetchone()[0]
            cursor.execute("PRAGMA busy_timeout;")
            timeout = cursor.fetchone()[0]
            self.stdout.write(
                self.style.SUCCESS(
                    f"SQLite configured. journal_mode={mode} busy_timeout={timeout}ms"
                )
            )
