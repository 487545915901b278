"""
Django settings for pinegenie.

Everything environment-specific is read through django-environ; see
`.env.example` for the variables a deployment is expected to provide.
"""

import os
from pathlib import Path

import dj_database_url
import environ

BASE_DIR = Path(__file__).resolve().parent.parent

env = environ.Env(DEBUG=(bool, False))
environ.Env.read_env(BASE_DIR / ".env")

DEBUG = env.bool("DEBUG", False)
ENV = env("ENV", default=("prod" if not DEBUG else "dev")).lower()
IS_PROD = not DEBUG

SECRET_KEY = env("SECRET_KEY", default=None)
if not SECRET_KEY:
    if DEBUG:
        SECRET_KEY = "dev-insecure-key"
    else:
        raise RuntimeError("SECRET_KEY is not set in environment.")

ALLOWED_HOSTS = env.list("ALLOWED_HOSTS", default=["127.0.0.1", "localhost"])
CSRF_TRUSTED_ORIGINS = env.list("CSRF_TRUSTED_ORIGINS", default=[])

ROOT_URLCONF = "pinegenie.urls"
ASGI_APPLICATION = "pinegenie.asgi.application"

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "drf_spectacular",
    "core.apps.CoreConfig",
    "subscriptions.apps.SubscriptionsConfig",
    "payments.apps.PaymentsConfig",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "core.middleware.RequestIDMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
]

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

# ---------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------
DATABASES = {
    "default": dj_database_url.parse(
        env("DATABASE_URL", default=f"sqlite:///{BASE_DIR / 'db.sqlite3'}"),
        conn_max_age=600,
    )
}

# In-tests: in-memory sqlite
if os.environ.get("PYTEST_CURRENT_TEST"):
    DATABASES = {"default": {"ENGINE": "django.db.backends.sqlite3", "NAME": ":memory:"}}

# ---------------------------------------------------------------------
# PayU
# ---------------------------------------------------------------------
PAYU_MERCHANT_KEY = env("PAYU_MERCHANT_KEY", default="")
PAYU_MERCHANT_SALT = env("PAYU_MERCHANT_SALT", default="")
PAYU_ENVIRONMENT = env("PAYU_ENVIRONMENT", default="production" if IS_PROD else "test").lower()
PAYU_BASE_URL = env(
    "PAYU_BASE_URL",
    default=(
        "https://secure.payu.in/_payment"
        if PAYU_ENVIRONMENT == "production"
        else "https://test.payu.in/_payment"
    ),
)
PAYU_VERIFY_URL = env(
    "PAYU_VERIFY_URL",
    default=(
        "https://info.payu.in/merchant/postservice.php?form=2"
        if PAYU_ENVIRONMENT == "production"
        else "https://test.payu.in/merchant/postservice.php?form=2"
    ),
)

if IS_PROD:
    missing = [k for k, v in {
        "PAYU_MERCHANT_KEY": PAYU_MERCHANT_KEY,
        "PAYU_MERCHANT_SALT": PAYU_MERCHANT_SALT,
    }.items() if not v]
    if missing:
        raise RuntimeError(f"Missing required payment envs: {', '.join(missing)}")

# Amount limits in INR
PAYMENTS_MIN_AMOUNT = env("PAYMENTS_MIN_AMOUNT", default="1.00")
PAYMENTS_MAX_AMOUNT = env("PAYMENTS_MAX_AMOUNT", default="100000.00")

# Grants subscriptions / tokens once a payment is final
PAYMENTS_SIDE_EFFECT = env(
    "PAYMENTS_SIDE_EFFECT", default="subscriptions.services.apply_side_effect"
)
PAYMENTS_SIDE_EFFECT_TIMEOUT = env.float("PAYMENTS_SIDE_EFFECT_TIMEOUT", default=10.0)
PAYMENTS_SIDE_EFFECT_ATTEMPTS = env.int("PAYMENTS_SIDE_EFFECT_ATTEMPTS", default=3)
PAYMENTS_SIDE_EFFECT_BACKOFF = env.float("PAYMENTS_SIDE_EFFECT_BACKOFF", default=0.5)
PAYMENTS_SIDE_EFFECT_MAX_DELAY = env.float("PAYMENTS_SIDE_EFFECT_MAX_DELAY", default=5.0)

# Deferred notifications are replayed by celery until this budget is spent
PAYMENTS_REPLAY_MAX_ATTEMPTS = env.int("PAYMENTS_REPLAY_MAX_ATTEMPTS", default=8)
PAYMENTS_REPLAY_WINDOW_HOURS = env.int("PAYMENTS_REPLAY_WINDOW_HOURS", default=24)

PAYMENTS_STALE_AFTER_MINUTES = env.int("PAYMENTS_STALE_AFTER_MINUTES", default=30)
PAYMENTS_LEDGER_RETENTION_DAYS = env.int("PAYMENTS_LEDGER_RETENTION_DAYS", default=400)
PAYMENTS_RESULT_URL = env("PAYMENTS_RESULT_URL", default="/billing/result/")

# ---------------------------------------------------------------------
# Celery
# ---------------------------------------------------------------------
CELERY_BROKER_URL = env("CELERY_BROKER_URL", default="redis://localhost:6379/0")
CELERY_TIMEZONE = "Asia/Kolkata"
CELERY_BEAT_SCHEDULE = {
    "payments-replay-deferred": {
        "task": "payments.tasks.replay_deferred_notifications",
        "schedule": 60.0,
        "options": {"queue": "default"},
    },
    "payments-reconcile-stale": {
        "task": "payments.tasks.reconcile_stale_transactions",
        "schedule": 15 * 60.0,
        "options": {"queue": "default"},
    },
}

# ------------------------- Auth / API -------------------------

AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.UserAttributeSimilarityValidator"},
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator"},
    {"NAME": "django.contrib.auth.password_validation.CommonPasswordValidator"},
    {"NAME": "django.contrib.auth.password_validation.NumericPasswordValidator"},
]

REST_FRAMEWORK = {
    "DEFAULT_PERMISSION_CLASSES": ["rest_framework.permissions.IsAuthenticated"],
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
    ],
    "DEFAULT_THROTTLE_CLASSES": ["rest_framework.throttling.UserRateThrottle"],
    "DEFAULT_THROTTLE_RATES": {"user": "120/min"},
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
}

SPECTACULAR_SETTINGS = {
    "TITLE": "PineGenie Billing API",
    "DESCRIPTION": "Versioned DRF API for checkout and payment status.",
    "VERSION": "1.0.0",
}

LANGUAGE_CODE = "en-us"
TIME_ZONE = "Asia/Kolkata"
USE_I18N = True
USE_TZ = True

STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

SECURE_SSL_REDIRECT = IS_PROD
SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https") if IS_PROD else None
SESSION_COOKIE_SECURE = IS_PROD
CSRF_COOKIE_SECURE = IS_PROD

# ---------------------------------------------------------------------
# Email (security alerts go to ADMINS)
# ---------------------------------------------------------------------
EMAIL_BACKEND = env("EMAIL_BACKEND", default="django.core.mail.backends.console.EmailBackend")
EMAIL_HOST = env("EMAIL_HOST", default="localhost")
EMAIL_PORT = env.int("EMAIL_PORT", default=25)
DEFAULT_FROM_EMAIL = env("DEFAULT_FROM_EMAIL", default="no-reply@pinegenie.local")
SERVER_EMAIL = env("SERVER_EMAIL", default=DEFAULT_FROM_EMAIL)
ADMINS = [("Billing", addr) for addr in env.list("ADMIN_EMAILS", default=[])]

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "handlers": {
        "console": {"class": "logging.StreamHandler"},
        "mail_admins": {
            "class": "django.utils.log.AdminEmailHandler",
            "level": "ERROR",
        },
    },
    "root": {"handlers": ["console"], "level": "INFO"},
    "loggers": {
        "django": {"handlers": ["console"], "level": "INFO", "propagate": False},
        "payments": {"handlers": ["console"], "level": "DEBUG", "propagate": False},
        "payments.security": {
            "handlers": ["console", "mail_admins"],
            "level": "INFO",
            "propagate": False,
        },
        "subscriptions": {"handlers": ["console"], "level": "DEBUG", "propagate": False},
        "metrics": {"handlers": ["console"], "level": "INFO", "propagate": False},
    },
}

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"
