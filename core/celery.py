import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "core.settings")
os.environ.setdefault("DJANGO_CONFIGURATION", "Development")

import configurations

configurations.setup()

from core.sentry import init_sentry

init_sentry(component="celery")


app = Celery("core")

# namespace='CELERY' means all celery-related configuration keys
# should have a `CELERY_` prefix.
app.config_from_object("django.conf:settings", namespace="CELERY")

# Picks up portfolio.tasks, performance.tasks and fees.tasks.
app.autodiscover_tasks()
