"""
Django settings for astroluna project.

Values come from the environment (a `.env` file is loaded by
`astroluna.utils`). Defaults target local development: sqlite, an
in-process cache and console email.
"""
import os
from datetime import timedelta
from pathlib import Path

from .utils import _split_env_list, _ensure_http_scheme, _env_bool, _env_int

# Build paths inside the project like this: BASE_DIR / 'subdir'.
BASE_DIR = Path(__file__).resolve().parent.parent

SECRET_KEY = os.getenv("DJANGO_SECRET_KEY", "django-insecure-astroluna-dev-key-change-me")

DEBUG = _env_bool("DJANGO_DEBUG", False)

# development | production
APP_ENV = os.getenv("APP_ENV", "development").strip().lower()

ALLOWED_HOSTS = _split_env_list("DJANGO_ALLOWED_HOSTS", "localhost,127.0.0.1,testserver")
CSRF_TRUSTED_ORIGINS = _ensure_http_scheme(_split_env_list("CSRF_TRUSTED_ORIGINS"))

# Public URL of this deployment, used in payment callbacks and emails
BASE_URL = os.getenv("BASE_URL", "http://localhost:8000").rstrip("/")


# Application definition

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    "rest_framework",
    "rest_framework_simplejwt.token_blacklist",
    "drf_spectacular",
    "account",
    "credits",
    "ratelimit",
    "currency",
    "payments",
    "generation",
    "logviewer",
]

MIDDLEWARE = [
    "django.middleware.security.SecurityMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
    "django.middleware.common.CommonMiddleware",
    "django.middleware.csrf.CsrfViewMiddleware",
    "django.contrib.auth.middleware.AuthenticationMiddleware",
    "django.contrib.messages.middleware.MessageMiddleware",
    "django.middleware.clickjacking.XFrameOptionsMiddleware",
    "ratelimit.middleware.ApiRateLimitMiddleware",
]

ROOT_URLCONF = "astroluna.urls"

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

ASGI_APPLICATION = "astroluna.asgi.application"


# Database

DB_ENGINE = os.getenv("DB_ENGINE", "sqlite").strip().lower()
if DB_ENGINE in ("postgres", "postgresql"):
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": os.getenv("DB_NAME", "astroluna"),
            "USER": os.getenv("DB_USER", "astroluna"),
            "PASSWORD": os.getenv("DB_PASSWORD", ""),
            "HOST": os.getenv("DB_HOST", "localhost"),
            "PORT": os.getenv("DB_PORT", "5432"),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": os.getenv("DB_NAME", str(BASE_DIR / "db.sqlite3")),
        }
    }

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

AUTH_USER_MODEL = "account.User"


# Cache: Redis when configured, otherwise process-local memory (tests)

REDIS_URL = os.getenv("REDIS_URL", "").strip()
if REDIS_URL:
    CACHES = {
        "default": {
            "BACKEND": "django_redis.cache.RedisCache",
            "LOCATION": REDIS_URL,
            "OPTIONS": {
                "CLIENT_CLASS": "django_redis.client.DefaultClient",
            },
            "KEY_PREFIX": "astroluna",
        }
    }
else:
    CACHES = {
        "default": {
            "BACKEND": "django.core.cache.backends.locmem.LocMemCache",
            "LOCATION": "astroluna",
        }
    }


# Password validation and hashing

PASSWORD_HASHERS = [
    "django.contrib.auth.hashers.BCryptSHA256PasswordHasher",
    "django.contrib.auth.hashers.PBKDF2PasswordHasher",
]

AUTH_PASSWORD_VALIDATORS = [
    {"NAME": "django.contrib.auth.password_validation.MinimumLengthValidator", "OPTIONS": {"min_length": 6}},
]


# Internationalization

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True


# Static files (CSS, JavaScript, Images)

STATIC_URL = "static/"
STATIC_ROOT = BASE_DIR / "staticfiles"


# Email (verification and password reset)

EMAIL_BACKEND = os.getenv("EMAIL_BACKEND", "django.core.mail.backends.console.EmailBackend")
DEFAULT_FROM_EMAIL = os.getenv("DEFAULT_FROM_EMAIL", "AstroLuna <no-reply@astroluna.app>")
EMAIL_HOST = os.getenv("EMAIL_HOST", "localhost")
EMAIL_PORT = _env_int("EMAIL_PORT", 25)
EMAIL_HOST_USER = os.getenv("EMAIL_HOST_USER", "")
EMAIL_HOST_PASSWORD = os.getenv("EMAIL_HOST_PASSWORD", "")
EMAIL_USE_TLS = _env_bool("EMAIL_USE_TLS", False)


# REST framework / JWT / OpenAPI

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (
        "rest_framework_simplejwt.authentication.JWTAuthentication",
        "rest_framework.authentication.SessionAuthentication",
    ),
    "DEFAULT_PERMISSION_CLASSES": (
        "rest_framework.permissions.IsAuthenticated",
    ),
    "DEFAULT_SCHEMA_CLASS": "drf_spectacular.openapi.AutoSchema",
    "EXCEPTION_HANDLER": "astroluna.exceptions.api_exception_handler",
    "PAGE_SIZE": _env_int("API_PAGE_SIZE", 100),
}

SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(minutes=15),
    "REFRESH_TOKEN_LIFETIME": timedelta(days=7),
    "ROTATE_REFRESH_TOKENS": True,
    "BLACKLIST_AFTER_ROTATION": True,
    "UPDATE_LAST_LOGIN": True,
    "SIGNING_KEY": os.getenv("JWT_SECRET", SECRET_KEY),
    "ISSUER": "astroluna",
    "AUDIENCE": "astroluna-users",
    "AUTH_HEADER_TYPES": ("Bearer",),
}

SPECTACULAR_SETTINGS = {
    "TITLE": "AstroLuna API",
    "DESCRIPTION": "Accounts, credits, payments, currency and AI astrology content.",
    "VERSION": "0.1.0",
    "SERVE_INCLUDE_SCHEMA": False,
}


# Credits and services

SERVICE_COSTS = {
    "astroscope": 15,
    "tarotpath": 20,
    "zodiac_tome": 10,
}

CREDITS_PER_EUR = 10

# (eur_amount, credits, bonus_percent)
CREDIT_PACKAGES = [
    {"eur_amount": 5, "credits": 50, "bonus_percent": 0},
    {"eur_amount": 20, "credits": 220, "bonus_percent": 10},
    {"eur_amount": 100, "credits": 1200, "bonus_percent": 20},
    {"eur_amount": 500, "credits": 7000, "bonus_percent": 40},
    {"eur_amount": 2000, "credits": 32000, "bonus_percent": 60},
]

SUPPORTED_LANGUAGES = ["en", "es", "de"]
SUPPORTED_CURRENCIES = ["EUR", "USD", "GBP"]

PASSWORD_RESET_TTL = timedelta(hours=1)


# Rate limiting

RATE_LIMIT_ENABLED = _env_bool("RATE_LIMIT_ENABLED", True)
RATE_LIMIT_WHITELIST = ["127.0.0.1", "::1", *_split_env_list("WHITELISTED_IPS")]

RATE_LIMITS = {
    "auth": {
        "algorithm": "fixed",
        "limit": 5,
        "window": 15 * 60,
        "message": "Too many authentication attempts, please try again later.",
        "skip_successful": True,
    },
    "register": {
        "algorithm": "fixed",
        "limit": 3,
        "window": 60 * 60,
        "message": "Too many registration attempts, please try again later.",
    },
    "password_reset": {
        "algorithm": "fixed",
        "limit": 3,
        "window": 15 * 60,
        "message": "Too many password reset attempts, please try again later.",
    },
    "api": {
        "algorithm": "fixed",
        "limit": 100,
        "window": 15 * 60,
        "message": "API rate limit exceeded, please try again later.",
    },
    "ai": {
        "algorithm": "sliding",
        "limit": 50,
        "window": 60 * 60,
        "message": "AI generation rate limit exceeded. Please upgrade your plan or try again later.",
    },
    "user": {
        "algorithm": "token_bucket",
        "capacity": 10,
        "refill_rate": 1,
        "refill_interval": 60,
        "message": "Rate limit exceeded for your account",
    },
}


# Currency (NBU)

NBU_API_URL = os.getenv("NBU_API_URL", "https://bank.gov.ua/NBUStatService/v1/statdirectory/exchangenew?json")
CURRENCY_HTTP_TIMEOUT = float(os.getenv("CURRENCY_HTTP_TIMEOUT", "10"))
CURRENCY_RATES_MAX_AGE = timedelta(hours=24)
CURRENCY_FALLBACK_MAX_AGE = timedelta(hours=1)
CURRENCY_REFRESH_INTERVAL_HOURS = _env_int("CURRENCY_REFRESH_INTERVAL_HOURS", 6)
CHECKOUT_QUOTE_TTL = timedelta(minutes=30)


# Payments (SPC)

SPC_API_BASE = os.getenv("SPC_API_BASE", "https://api.sandbox.securepaycard.com").rstrip("/")
SPC_TERMINAL_ID = os.getenv("SPC_TERMINAL_ID", "")
SPC_PUB_KEY = os.getenv("SPC_PUB_KEY", "")
SPC_SEC_KEY = os.getenv("SPC_SEC_KEY", "")
SPC_HTTP_TIMEOUT = float(os.getenv("SPC_HTTP_TIMEOUT", "15"))


# Generative text (Gemini)

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY", "")
GEMINI_API_BASE = os.getenv("GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta").rstrip("/")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-1.5-flash")
GEMINI_TIMEOUT = float(os.getenv("GEMINI_TIMEOUT", "60"))
# canned responses instead of API calls; implied when GEMINI_API_KEY is unset
GEMINI_DEMO_MODE = _env_bool("GEMINI_DEMO_MODE", False)
GEMINI_GENERATION_CONFIG = {
    "temperature": 0.8,
    "topK": 40,
    "topP": 0.95,
    "maxOutputTokens": 2048,
}


# Logging

LOG_DIR = Path(os.getenv("LOG_DIR", str(BASE_DIR.parent / "logs")))
LOG_DIR.mkdir(parents=True, exist_ok=True)
LOG_JSON_PATH = os.getenv("LOG_JSON_PATH", str(LOG_DIR / "astroluna.json"))
SECURITY_LOG_JSON_PATH = os.getenv("SECURITY_LOG_JSON_PATH", str(LOG_DIR / "security.json"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "DEBUG" if DEBUG else "INFO").upper()

_APP_LOGGERS = ("account", "credits", "ratelimit", "currency", "payments", "generation")

LOGGING = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "verbose": {
            "format": "%(asctime)s %(levelname)s %(name)s %(message)s",
        },
        "json": {
            "()": "pythonjsonlogger.json.JsonFormatter",
            "format": "%(asctime)s %(levelname)s %(name)s %(module)s %(process)d %(thread)d %(message)s",
        },
    },
    "handlers": {
        "console": {
            "class": "logging.StreamHandler",
            "formatter": "verbose",
        },
        "json_file": {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": LOG_JSON_PATH,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "encoding": "utf-8",
            "formatter": "json",
        },
        "security_file": {
            "class": "logging.handlers.RotatingFileHandler",
            "filename": SECURITY_LOG_JSON_PATH,
            "maxBytes": 10 * 1024 * 1024,
            "backupCount": 5,
            "encoding": "utf-8",
            "formatter": "json",
        },
    },
    "loggers": {
        "django": {
            "handlers": ["console", "json_file"],
            "level": "INFO",
        },
        "security": {
            "handlers": ["console", "security_file"],
            "level": "INFO",
            "propagate": False,
        },
        **{
            name: {"handlers": ["console", "json_file"], "level": LOG_LEVEL, "propagate": False}
            for name in _APP_LOGGERS
        },
    },
}
