import os
from dotenv import load_dotenv
from urllib.parse import urlparse
from pathlib import Path

BASE_DIR = Path(__file__).resolve().parent.parent

# Load environment variables from .env.
# override=True keeps .env as the single source of truth for app config.
load_dotenv(BASE_DIR / ".env", override=True)


def env_bool(name, default=False):
    val = os.environ.get(name)
    if val is None:
        return default
    return str(val).strip().lower() in ("1", "true", "yes", "on")


def env_int(name, default):
    val = os.environ.get(name)
    if val is None or not str(val).strip():
        return default
    return int(val)


def env_float(name, default):
    val = os.environ.get(name)
    if val is None or not str(val).strip():
        return default
    return float(val)


SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key")
DEBUG = env_bool("DEBUG", True)
ALLOWED_HOSTS = [
    h.strip()
    for h in os.environ.get("ALLOWED_HOSTS", "*").split(",")
    if h.strip()
]
CSRF_TRUSTED_ORIGINS = [
    o.strip()
    for o in os.environ.get("CSRF_TRUSTED_ORIGINS", "").split(",")
    if o.strip()
]

INSTALLED_APPS = [
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    # third-party
    "django_rq",
    "anymail",
    "rest_framework",
    # local apps
    "mailer.apps.MailerConfig",
    "jobs.apps.JobsConfig",
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

ROOT_URLCONF = "config.urls"

TEMPLATES = [
    {
        "BACKEND": "django.template.backends.django.DjangoTemplates",
        "DIRS": [],
        "APP_DIRS": True,
        "OPTIONS": {
            "context_processors": [
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    }
]

WSGI_APPLICATION = "config.wsgi.application"

_DB_NAME = os.environ.get("DB_NAME")
if _DB_NAME:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.postgresql",
            "NAME": _DB_NAME,
            "USER": os.environ.get("DB_USER", ""),
            "PASSWORD": os.environ.get("DB_PASSWORD", ""),
            "HOST": os.environ.get("DB_HOST", "localhost"),
            "PORT": os.environ.get("DB_PORT", "5432"),
            "OPTIONS": (
                {"sslmode": os.environ.get("DB_SSLMODE", "")}
                if os.environ.get("DB_SSLMODE")
                else {}
            ),
        }
    }
else:
    DATABASES = {
        "default": {
            "ENGINE": "django.db.backends.sqlite3",
            "NAME": str(BASE_DIR / "db.sqlite3"),
        }
    }

LANGUAGE_CODE = "en-us"
TIME_ZONE = "UTC"
USE_I18N = True
USE_TZ = True

# Organization locale: quota days and recurring job wall-clock times are
# computed in this zone, independent of TIME_ZONE and the process locale.
ORG_TIME_ZONE = os.environ.get("ORG_TIME_ZONE", "America/Chicago")

STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "static_build"
DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

SESSION_COOKIE_SAMESITE = "Lax"
if not DEBUG:
    SESSION_COOKIE_SECURE = True
    CSRF_COOKIE_SECURE = True

SECURE_SSL_REDIRECT = env_bool("SECURE_SSL_REDIRECT", False)
if env_bool("USE_X_FORWARDED_PROTO", False):
    SECURE_PROXY_SSL_HEADER = ("HTTP_X_FORWARDED_PROTO", "https")

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": [
        "rest_framework.authentication.SessionAuthentication",
        "rest_framework.authentication.BasicAuthentication",
    ],
    "DEFAULT_PERMISSION_CLASSES": [
        "rest_framework.permissions.IsAdminUser",
    ],
}

_REDIS_HOST = os.environ.get("REDIS_HOST", "localhost")
_REDIS_PORT = env_int("REDIS_PORT", 6379)

RQ_QUEUES = {
    "default": {
        "HOST": _REDIS_HOST,
        "PORT": _REDIS_PORT,
        "DB": 0,
        "DEFAULT_TIMEOUT": 600,
    },
    "mail": {
        "HOST": _REDIS_HOST,
        "PORT": _REDIS_PORT,
        "DB": 0,
        "DEFAULT_TIMEOUT": 600,
    },
}

# Email backend (Anymail if configured; fallback to console for dev)
EMAIL_TIMEOUT = env_int("EMAIL_TIMEOUT", 30)
SENDGRID_API_KEY = os.environ.get("SENDGRID_API_KEY")
if SENDGRID_API_KEY:
    ANYMAIL = {
        "SENDGRID_API_KEY": SENDGRID_API_KEY,
        "REQUESTS_TIMEOUT": EMAIL_TIMEOUT,
    }
    _sg_webhook_key = os.environ.get(
        "SENDGRID_TRACKING_WEBHOOK_VERIFICATION_KEY"
    )
    if _sg_webhook_key:
        ANYMAIL[
            "SENDGRID_TRACKING_WEBHOOK_VERIFICATION_KEY"
        ] = _sg_webhook_key
    _webhook_secret = os.environ.get("ANYMAIL_WEBHOOK_SECRET")
    if _webhook_secret:
        ANYMAIL["WEBHOOK_SECRET"] = _webhook_secret
    EMAIL_BACKEND = "anymail.backends.sendgrid.EmailBackend"
else:
    EMAIL_BACKEND = "django.core.mail.backends.console.EmailBackend"
DEFAULT_FROM_EMAIL = os.environ.get(
    "DEFAULT_FROM_EMAIL", "Member Org <noreply@example.org>"
)
SERVER_EMAIL = os.environ.get("SERVER_EMAIL", DEFAULT_FROM_EMAIL)
_admin_emails = os.environ.get("ADMIN_EMAILS", "")
_admin_name = os.environ.get("ADMIN_NAME", "Admin")
ADMINS = [
    (_admin_name, e.strip())
    for e in _admin_emails.split(",")
    if e.strip()
]

# Email queue / delivery worker
EMAIL_QUEUE_BATCH_SIZE = env_int("EMAIL_QUEUE_BATCH_SIZE", 10)
EMAIL_QUEUE_POLL_SECONDS = env_int("EMAIL_QUEUE_POLL_SECONDS", 10)
# Pause between individual sends to stay under provider rate limits
EMAIL_SEND_DELAY_SECONDS = env_float("EMAIL_SEND_DELAY_SECONDS", 1.0)
EMAIL_RETRY_BASE_SECONDS = env_int("EMAIL_RETRY_BASE_SECONDS", 60)
EMAIL_RETRY_MAX_DELAY_SECONDS = env_int("EMAIL_RETRY_MAX_DELAY_SECONDS", 60 * 60)
EMAIL_MAX_RETRIES = env_int("EMAIL_MAX_RETRIES", 5)
EMAIL_CLAIM_LEASE_SECONDS = env_int("EMAIL_CLAIM_LEASE_SECONDS", 5 * 60)
EMAIL_DAILY_QUOTA = env_int("EMAIL_DAILY_QUOTA", 100)

# Scheduled email jobs
SCHEDULED_JOB_POLL_SECONDS = env_int("SCHEDULED_JOB_POLL_SECONDS", 5 * 60)
SCHEDULED_JOB_MAX_FAILURES = env_int("SCHEDULED_JOB_MAX_FAILURES", 5)

# Public URL the portal is served from
SITE_URL = os.environ.get("SITE_URL", "http://localhost:8000")

# Ensure SITE_URL host/origin are whitelisted even if env lists are missing
_parsed_site = urlparse(SITE_URL)
_site_host = _parsed_site.hostname
_site_origin = f"{_parsed_site.scheme}://{_parsed_site.hostname}"
if _parsed_site.port and _parsed_site.port not in (80, 443):
    _site_origin = f"{_site_origin}:{_parsed_site.port}"
if _site_host and "*" not in ALLOWED_HOSTS and _site_host not in ALLOWED_HOSTS:
    ALLOWED_HOSTS.append(_site_host)
if _parsed_site.scheme in ("http", "https") and _site_origin not in CSRF_TRUSTED_ORIGINS:
    CSRF_TRUSTED_ORIGINS.append(_site_origin)

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

LOGGING = {
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
        "mail_admins": {
            "level": "ERROR",
            "class": "django.utils.log.AdminEmailHandler",
        },
    },
    "loggers": {
        "django.request": {
            "handlers": ["mail_admins"],
            "level": "ERROR",
            "propagate": True,
        },
        "mailer": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
        "jobs": {
            "handlers": ["console"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
    },
}
