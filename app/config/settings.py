"""
Django settings for the wallet billing backend.

This is the single settings file for all environments. Configuration is driven
by environment variables using django-environ, following the 12-factor app
methodology.

Environment files:
    - .env.development: Development settings (DEBUG=True)
    - .env.production: Production settings (DEBUG=False)

For more information on this file, see:
https://docs.djangoproject.com/en/5.2/topics/settings/
"""

import os
from pathlib import Path

import environ

# =============================================================================
# Path Configuration
# =============================================================================
BASE_DIR = Path(__file__).resolve().parent.parent

# =============================================================================
# Environment Configuration
# =============================================================================
env = environ.Env(
    DEBUG=(bool, False),  # Default to False for safety
    ALLOWED_HOSTS=(list, []),
    LOG_LEVEL=(str, "INFO"),
)

# Note: In Docker, env vars are passed directly; .env files are for local dev
env_file = os.environ.get("ENV_FILE", BASE_DIR.parent / ".env.development")
if Path(env_file).exists():
    environ.Env.read_env(env_file)

# =============================================================================
# Core Settings
# =============================================================================
# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = env("SECRET_KEY")

DEBUG = env("DEBUG")

ALLOWED_HOSTS = env("ALLOWED_HOSTS")

# =============================================================================
# Application Definition
# =============================================================================
INSTALLED_APPS = [
    "django.contrib.contenttypes",
    "django_celery_beat",
    # Local apps
    "core",
    "billing",
]

# =============================================================================
# Database Configuration
# =============================================================================
# Wallet mutations rely on SELECT ... FOR UPDATE row locks, so PostgreSQL is
# the supported production backend (psycopg3).
DATABASES = {
    "default": env.db(
        "DATABASE_URL",
        default="postgres://postgres:postgres@db:5432/app_dev",
    ),
}

if DATABASES["default"]["ENGINE"] == "django.db.backends.postgresql":
    DATABASES["default"]["OPTIONS"] = {
        "connect_timeout": 10,
    }

# =============================================================================
# Celery Configuration
# =============================================================================
CELERY_BROKER_URL = env("CELERY_BROKER_URL", default="redis://redis:6379/1")
CELERY_RESULT_BACKEND = env("CELERY_RESULT_BACKEND", default="redis://redis:6379/1")
CELERY_ACCEPT_CONTENT = ["json"]
CELERY_TASK_SERIALIZER = "json"
CELERY_RESULT_SERIALIZER = "json"
CELERY_TIMEZONE = "UTC"
CELERY_TASK_TRACK_STARTED = True
CELERY_TASK_TIME_LIMIT = 5 * 60  # 5 minutes
CELERY_TASK_ALWAYS_EAGER = env.bool("CELERY_TASK_ALWAYS_EAGER", default=False)
CELERY_BEAT_SCHEDULER = "django_celery_beat.schedulers:DatabaseScheduler"

# =============================================================================
# Wallet Configuration
# =============================================================================
# Amounts are integers in the smallest currency unit (paise for INR)
WALLET_DEFAULT_CURRENCY = env("WALLET_DEFAULT_CURRENCY", default="INR")

# Upper bound on how long a wallet mutation waits for the account row lock
# (PostgreSQL lock_timeout). Exceeding it raises AccountLockTimeout.
WALLET_LOCK_TIMEOUT_MS = env.int("WALLET_LOCK_TIMEOUT_MS", default=5000)

# Delivery statuses whose message id matches no pending charge may fall back
# to the single open charge for the same recipient within this window.
WALLET_RECIPIENT_FALLBACK_ENABLED = env.bool(
    "WALLET_RECIPIENT_FALLBACK_ENABLED", default=True
)
WALLET_RECIPIENT_FALLBACK_WINDOW_HOURS = env.int(
    "WALLET_RECIPIENT_FALLBACK_WINDOW_HOURS", default=72
)

# =============================================================================
# Webhook Processing
# =============================================================================
WEBHOOK_MAX_RETRIES = env.int("WEBHOOK_MAX_RETRIES", default=5)

# "sent" settles the charge like "delivered". Disable to wait for
# "delivered", "read" or "failed" before resolving a charge.
WEBHOOK_SETTLE_ON_SENT = env.bool("WEBHOOK_SETTLE_ON_SENT", default=True)

# =============================================================================
# Internationalization
# =============================================================================
LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

# =============================================================================
# Default Primary Key Field Type
# =============================================================================
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

# =============================================================================
# Logging Configuration
# =============================================================================
LOG_LEVEL = env("LOG_LEVEL")

# Log file name determined by service (worker, beat)
LOG_FILE_NAME = env("LOG_FILE_NAME", default="django.log")
LOG_DIR = BASE_DIR / "logs"

LOG_DIR.mkdir(parents=True, exist_ok=True)

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "{levelname} {asctime} {module} {process:d} {thread:d} {message}",
            "style": "{",
        },
        "simple": {
            "format": "{levelname} {message}",
            "style": "{",
        },
        "file": {
            "format": "[{asctime}] {levelname} {name} {module}:{lineno} - {message}",
            "style": "{",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
        "file": {
            # Max 10MB per file, keeps 5 backups
            "level": "DEBUG",
            "class": "logging.handlers.RotatingFileHandler",
            "filename": LOG_DIR / LOG_FILE_NAME,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "formatter": "file",
            "encoding": "utf-8",
        },
    },
    "root": {
        "handlers": ["console", "file"],
        "level": LOG_LEVEL,
    },
    "loggers": {
        "django": {
            "handlers": ["console", "file"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
        "celery": {
            "handlers": ["console", "file"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
        "billing": {
            "handlers": ["console", "file"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
    },
}
