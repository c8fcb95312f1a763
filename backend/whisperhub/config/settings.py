# config/settings.py
import os
from pathlib import Path

from dotenv import load_dotenv
import dj_database_url
from datetime import timedelta

BASE_DIR = Path(__file__).resolve().parent.parent.parent  # backend/
load_dotenv(BASE_DIR / ".env")

REDIS_URL = os.environ.get("REDIS_URL", "")

REDIS_HOST = os.environ.get("REDIS_HOST", "127.0.0.1")
REDIS_PORT = int(os.environ.get("REDIS_PORT", "6379"))
REDIS_DB = int(os.environ.get("REDIS_DB", "0"))


SECRET_KEY = os.environ.get("DJANGO_SECRET_KEY", "")
DEBUG = os.environ.get("DJANGO_DEBUG", "0") == "1"
ALLOWED_HOSTS = [
    h.strip()
    for h in os.environ.get("DJANGO_ALLOWED_HOSTS", "").split(",")
    if h.strip()
]
CORS_ALLOW_ALL_ORIGINS = True

CORS_ALLOW_CREDENTIALS = True

DATABASES = {
    "default": dj_database_url.config(
        default=os.environ.get("DATABASE_URL", f"sqlite:///{BASE_DIR / 'db.sqlite3'}"),
        conn_max_age=600,
    )
}

INSTALLED_APPS = [
    # django 기본 apps...
    "django.contrib.admin",
    "django.contrib.auth",
    "django.contrib.contenttypes",
    "django.contrib.sessions",
    "django.contrib.messages",
    "django.contrib.staticfiles",
    # third party
    "rest_framework",
    "channels",
    "corsheaders",
    # local apps
    "whisperhub.whisper_match.apps.WhisperMatchConfig",
]


CHANNEL_LAYERS = {
    "default": {
        "BACKEND": "channels_redis.core.RedisChannelLayer",
        "CONFIG": {
            "hosts": [REDIS_URL or (REDIS_HOST, REDIS_PORT)],
        },
    }
}

REST_FRAMEWORK = {
    "DEFAULT_AUTHENTICATION_CLASSES": (
        "rest_framework_simplejwt.authentication.JWTAuthentication",
    ),
    "DEFAULT_PERMISSION_CLASSES": ("rest_framework.permissions.IsAuthenticated",),
    "EXCEPTION_HANDLER": "whisperhub.common.exceptions.custom_exception_handler",
}

SIMPLE_JWT = {
    "ACCESS_TOKEN_LIFETIME": timedelta(days=7),
    "SIGNING_KEY": os.environ.get("JWT_SECRET", SECRET_KEY),
}


def _env_or_none(name):
    value = os.environ.get(name, "").strip()
    return value or None


# Whisper Match (whisperhub/whisper_match/conf.py 에서 읽음)
WHISPER_MATCH = {
    "SESSION_TTL_SECONDS": int(os.environ.get("WHISPER_MATCH_SESSION_TTL_SECONDS", "300")),
    "WAIT_TIMEOUT_SECONDS": _env_or_none("WHISPER_MATCH_WAIT_TIMEOUT_SECONDS"),
    "MAX_WAITING": _env_or_none("WHISPER_MATCH_MAX_WAITING"),
    "MAX_MESSAGES": int(os.environ.get("WHISPER_MATCH_MAX_MESSAGES", "200")),
    "MAX_MESSAGE_LENGTH": int(os.environ.get("WHISPER_MATCH_MAX_MESSAGE_LENGTH", "1000")),
    # memory | database
    "SESSION_BACKEND": os.environ.get("WHISPER_MATCH_SESSION_BACKEND", "database"),
    # memory | redis (redis면 pairing lock 도 redis 로)
    "POOL_BACKEND": os.environ.get("WHISPER_MATCH_POOL_BACKEND", "memory"),
    "STORE_RETRY_ATTEMPTS": int(os.environ.get("WHISPER_MATCH_STORE_RETRY_ATTEMPTS", "3")),
    "STORE_RETRY_DELAY_SECONDS": float(
        os.environ.get("WHISPER_MATCH_STORE_RETRY_DELAY_SECONDS", "0.05")
    ),
    "TERMINAL_RETENTION_SECONDS": int(
        os.environ.get("WHISPER_MATCH_TERMINAL_RETENTION_SECONDS", "3600")
    ),
    # memory 백엔드일 때 프로세스 안에서 도는 sweep 주기
    "SWEEP_INTERVAL_SECONDS": int(os.environ.get("WHISPER_MATCH_SWEEP_INTERVAL_SECONDS", "60")),
}

MIDDLEWARE = [
    "corsheaders.middleware.CorsMiddleware",
    "django.middleware.security.SecurityMiddleware",
    "whitenoise.middleware.WhiteNoiseMiddleware",
    "django.contrib.sessions.middleware.SessionMiddleware",
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
                "django.template.context_processors.debug",
                "django.template.context_processors.request",
                "django.contrib.auth.context_processors.auth",
                "django.contrib.messages.context_processors.messages",
            ],
        },
    },
]

DEFAULT_AUTO_FIELD = "django.db.models.BigAutoField"

ROOT_URLCONF = "whisperhub.config.urls"

ASGI_APPLICATION = "whisperhub.config.asgi.application"  # http + websocket
APPEND_SLASH = False
USE_TZ = True
STATIC_URL = "/static/"
STATIC_ROOT = BASE_DIR / "staticfiles"

STORAGES = {
    "default": {"BACKEND": "django.core.files.storage.FileSystemStorage"},
    "staticfiles": {
        "BACKEND": "whitenoise.storage.CompressedManifestStaticFilesStorage"
    },
}
