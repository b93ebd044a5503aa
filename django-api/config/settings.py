"""Django settings for the reservations service.

Values come from the environment; a local ``.env`` file is loaded first.
"""

import os
from pathlib import Path

import structlog
from dotenv import load_dotenv

BASE_DIR = Path(__file__).resolve().parent.parent

load_dotenv(BASE_DIR / ".env")


def env_bool(name: str, default: bool = False) -> bool:
    return os.getenv(name, str(default)).strip().lower() in ("1", "true", "yes", "on")


SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "insecure-development-key")
DEBUG = env_bool("DJANGO_DEBUG", True)
ALLOWED_HOSTS = [h for h in os.getenv("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1,testserver").split(",") if h]

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "reservations.apps.ReservationsConfig",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
]

ROOT_URLCONF = "config.urls"

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

if os.getenv("POSTGRES_DB"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.environ["POSTGRES_DB"],
            "USER": os.getenv("POSTGRES_USER", "postgres"),
            "PASSWORD": os.getenv("POSTGRES_PASSWORD", ""),
            "HOST": os.getenv("POSTGRES_HOST", "localhost"),
            "PORT": os.getenv("POSTGRES_PORT", "5432"),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": BASE_DIR / "db.sqlite3",
        }
    }

CACHES = {
    "default": {
        "BACKEND": os.getenv("CACHE_BACKEND", "django.core.cache.backends.locmem.LocMemCache"),
        "LOCATION": os.getenv("CACHE_LOCATION", "reservations"),
    }
}

REST_FRAMEWORK = {
    "DEFAULT_RENDERER_CLASSES": ["rest_framework.renderers.JSONRenderer"],
    "UNAUTHENTICATED_USER": None,
}

LANGUAGE_CODE = "en-us"
TIME_ZONE = os.getenv("TIME_ZONE", "America/Caracas")
USE_I18N = True
USE_TZ = True

STATIC_URL = "static/"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

GATEWAY_LIVE = env_bool("GATEWAY_LIVE", False)

RESERVATIONS = {
    "MIN_ITEMS": int(os.getenv("RESERVATIONS_MIN_ITEMS", "1")),
    "MAX_ITEMS": int(os.getenv("RESERVATIONS_MAX_ITEMS", "5")),
    "GATEWAY_HOLD_MINUTES": int(os.getenv("RESERVATIONS_GATEWAY_HOLD_MINUTES", "30")),
    "MANUAL_HOLD_HOURS": int(os.getenv("RESERVATIONS_MANUAL_HOLD_HOURS", "72")),
    "UNIT_PRICE": os.getenv("RESERVATIONS_UNIT_PRICE", "25.00"),
    "CURRENCY": os.getenv("RESERVATIONS_CURRENCY", "USD"),
    "GATEWAY_CURRENCY": os.getenv("RESERVATIONS_GATEWAY_CURRENCY", "VES"),
    "EXCHANGE_RATE": os.getenv("RESERVATIONS_EXCHANGE_RATE", "1"),
    "NUMBER_WIDTH": int(os.getenv("RESERVATIONS_NUMBER_WIDTH", "4")),
    "SEQUENCE_NAME": "race_numbers",
    "SEQUENCE_START": int(os.getenv("RESERVATIONS_SEQUENCE_START", "1")),
    "AVAILABILITY_CACHE_TTL": int(os.getenv("RESERVATIONS_AVAILABILITY_CACHE_TTL", "30")),
    "NOTIFIER": os.getenv("RESERVATIONS_NOTIFIER", ""),
    "GATEWAY": {
        "BASE_URL": os.getenv(
            "GATEWAY_BASE_URL",
            "https://pay.megasoft.com.ve" if GATEWAY_LIVE else "https://paytest.megasoft.com.ve",
        ),
        "USERNAME": os.getenv("GATEWAY_USERNAME", ""),
        "PASSWORD": os.getenv("GATEWAY_PASSWORD", ""),
        "AFFILIATION_CODE": os.getenv("GATEWAY_AFFILIATION_CODE", ""),
        "COMMERCE_PHONE": os.getenv("GATEWAY_COMMERCE_PHONE", ""),
        "COMMERCE_BANK_CODE": os.getenv("GATEWAY_COMMERCE_BANK_CODE", "0105"),
        "WEBHOOK_SECRET": os.getenv("GATEWAY_WEBHOOK_SECRET", ""),
        "LIVE": GATEWAY_LIVE,
    },
}

LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if DEBUG else "INFO")

_shared_processors = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
]

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "structured": {
            "()": structlog.stdlib.ProcessorFormatter,
            "processors": [
                structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                structlog.dev.ConsoleRenderer()
                if DEBUG
                else structlog.processors.JSONRenderer(),
            ],
            "foreign_pre_chain": _shared_processors,
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "structured",
        },
    },
    "root": {"handlers": ["console"], "level": LOG_LEVEL},
    "loggers": {
        "django.db.backends": {"level": "INFO"},
        "urllib3": {"level": "WARNING"},
    },
}

structlog.configure(
    processors=[
        structlog.stdlib.filter_by_level,
        *_shared_processors,
        structlog.stdlib.PositionalArgumentsFormatter(),
        *([] if DEBUG else [structlog.processors.format_exc_info]),
        structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
    ],
    logger_factory=structlog.stdlib.LoggerFactory(),
    wrapper_class=structlog.stdlib.BoundLogger,
    cache_logger_on_first_use=True,
)
