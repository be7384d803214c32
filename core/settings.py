from __future__ import annotations

from pathlib import Path

from configurations import Configuration, values

BASE_DIR = Path(__file__).resolve().parent.parent


class Base(Configuration):
    SECRET_KEY = values.SecretValue(environ_prefix=None)
    DEBUG = values.BooleanValue(False, environ_prefix=None)
    ALLOWED_HOSTS = values.ListValue(["localhost", "127.0.0.1"], environ_prefix=None)

    INSTALLED_APPS = [
        "django.contrib.admin",
        "django.contrib.auth",
        "django.contrib.contenttypes",
        "django.contrib.sessions",
        "django.contrib.messages",
        "django.contrib.staticfiles",
        "core",
        "portfolio",
        "performance",
        "fees",
    ]

    MIDDLEWARE = [
        "django.middleware.security.SecurityMiddleware",
        "django.contrib.sessions.middleware.SessionMiddleware",
        "django.middleware.common.CommonMiddleware",
        "django.middleware.csrf.CsrfViewMiddleware",
        "django.contrib.auth.middleware.AuthenticationMiddleware",
        "django.contrib.messages.middleware.MessageMiddleware",
        "django.middleware.clickjacking.XFrameOptionsMiddleware",
    ]

    ROOT_URLCONF = "core.urls"
    WSGI_APPLICATION = "core.wsgi.application"

    TEMPLATES = [
        {
            "BACKEND": "django.template.backends.django.DjangoTemplates",
            "DIRS": [],
            "APP_DIRS": True,
            "OPTIONS": {
                "context_processors": [
                    "django.template.context_processors.request",
                    "django.contrib.auth.context_processors.auth",
                    "django.contrib.messages.context_processors.messages",
                ],
            },
        },
    ]

    SQLITE_PATH = values.Value(str(BASE_DIR / "operations.db"), environ_prefix=None)
    SQLITE_BUSY_TIMEOUT_MS = values.IntegerValue(30000, environ_prefix=None)

    @property
    def DATABASES(self):
        return {
            "default": {
                "ENGINE": "django.db.backends.sqlite3",
                "NAME": self.SQLITE_PATH,
                "OPTIONS": {"timeout": self.SQLITE_BUSY_TIMEOUT_MS / 1000},
            }
        }

    DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

    LANGUAGE_CODE = "en-us"
    # Day buckets for snapshots and position history are taken in this zone.
    TIME_ZONE = values.Value("America/New_York", environ_prefix=None)
    USE_I18N = True
    USE_TZ = True

    STATIC_URL = "static/"
    STATIC_ROOT = BASE_DIR / "staticfiles"

    # ---- upstream data sources ----
    DEBANK_API_KEY = values.Value("", environ_prefix=None)
    DEBANK_BASE_URL = values.Value(
        "https://pro-openapi.debank.com/v1", environ_prefix=None
    )
    DEBANK_CHAINS = values.ListValue(
        ["eth", "bsc", "arb", "matic", "base", "op"], environ_prefix=None
    )
    COINGECKO_BASE_URL = values.Value(
        "https://api.coingecko.com/api/v3", environ_prefix=None
    )
    UPSTREAM_TIMEOUT_SECONDS = values.FloatValue(10.0, environ_prefix=None)
    PRICE_TIMEOUT_SECONDS = values.FloatValue(15.0, environ_prefix=None)
    WALLET_REFRESH_WORKERS = values.IntegerValue(4, environ_prefix=None)

    # ---- APY confidence ----
    APY_SANITY_CEILING_PCT = values.FloatValue(100.0, environ_prefix=None)
    APY_MAX_GAP_DAYS = values.IntegerValue(2, environ_prefix=None)
    APY_OUTLIER_MAD_THRESHOLD = values.FloatValue(5.0, environ_prefix=None)
    APY_OUTLIER_MIN_PEERS = values.IntegerValue(3, environ_prefix=None)
    APY_DEFAULT_PERIOD_DAYS = values.IntegerValue(1, environ_prefix=None)

    # ---- sentry ----
    SENTRY_URL = values.Value("", environ_prefix=None)
    SENTRY_ENABLED = values.BooleanValue(False, environ_prefix=None)
    SENTRY_ENVIRONMENT = values.Value("development", environ_prefix=None)
    SENTRY_TRACES_SAMPLE_RATE = values.FloatValue(0.0, environ_prefix=None)

    # ---- celery ----
    CELERY_BROKER_URL = values.Value("redis://localhost:6379/0", environ_prefix=None)
    CELERY_RESULT_BACKEND = values.Value(
        "redis://localhost:6379/0", environ_prefix=None
    )
    CELERY_TASK_SERIALIZER = "json"
    CELERY_RESULT_SERIALIZER = "json"
    CELERY_ACCEPT_CONTENT = ["json"]
    CELERY_TIMEZONE = "America/New_York"

    LOG_LEVEL = values.Value("INFO", environ_prefix=None)

    @property
    def LOGGING(self):
        return {
            "version": 1,
            "disable_existing_loggers": False,
            "formatters": {
                "simple": {
                    "format": "%(asctime)s %(levelname)s %(name)s: %(message)s",
                },
            },
            "handlers": {
                "console": {
                    "class": "logging.StreamHandler",
                    "formatter": "simple",
                },
            },
            "root": {"handlers": ["console"], "level": self.LOG_LEVEL},
            "loggers": {
                "django.db.backends": {"level": "WARNING"},
                "urllib3": {"level": "WARNING"},
            },
        }


class Development(Base):
    DEBUG = True
    SECRET_KEY = values.Value("dev-insecure-key", environ_prefix=None)


class Production(Base):
    SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")
    SESSION_COOKIE_SECURE = True
    CSRF_COOKIE_SECURE = True


class Test(Base):
    SECRET_KEY = "test-secret-key"
    DEBUG = False
    SQLITE_PATH = ":memory:"
    DEBANK_API_KEY = "test-key"
    CELERY_TASK_ALWAYS_EAGER = True
    CELERY_BROKER_URL = "memory://"
    CELERY_RESULT_BACKEND = "cache+memory://"
    PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]
    LOG_LEVEL = "WARNING"
