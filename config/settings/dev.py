"""
Development settings for the CRM console.
"""

import os
from .base import *  # noqa: F401, F403

# SECURITY WARNING: keep the secret key used in production secret!
SECRET_KEY = os.environ.get(
    "SECRET_KEY", "django-insecure-dev-key-change-in-production"
)

# SECURITY WARNING: don't run with debug turned on in production!
DEBUG = True

ALLOWED_HOSTS = ["localhost", "127.0.0.1", "[::1]"]

# Database
# https://docs.djangoproject.com/en/5.0/ref/settings/#databases

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.postgresql",
        "NAME": os.environ.get("DB_NAME", "crm-console"),
        "USER": os.environ.get("DB_USER", "postgres"),
        "PASSWORD": os.environ.get("DB_PASSWORD", ""),
        "HOST": os.environ.get("DB_HOST", "localhost"),
        "PORT": os.environ.get("DB_PORT", "5432"),
    }
}

# Email backend for development
EMAIL_BACKEND = "django.core.mail.backends.console.EmailBackend"

# Remote CRM API - the Express backend usually runs on port 5000 locally
CRM_API_BASE_URL = os.environ.get("CRM_API_BASE_URL", "http://localhost:5000")

# Celery - use local Redis for development
CELERY_BROKER_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

# Show cache reconciliation chatter while developing
LOGGING["loggers"]["core"] = {  # noqa: F405
    "handlers": ["console"],
    "level": "DEBUG",
    "propagate": False,
}

# Disable SSL redirect in development
SECURE_SSL_REDIRECT = False
