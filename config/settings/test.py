"""
Test settings - SQLite, eager Celery, no external services.
"""

from .base import *  # noqa: F401, F403

SECRET_KEY = "test-secret-key"
DEBUG = False
ALLOWED_HOSTS = ["testserver", "localhost"]

DATABASES = {
    "default": {
        "ENGINE": "django.db.backends.sqlite3",
        "NAME": ":memory:",
    }
}

PASSWORD_HASHERS = ["django.contrib.auth.hashers.MD5PasswordHasher"]

CRM_API_BASE_URL = "http://crm.test"
CRM_API_TOKEN = "test-token"

CELERY_TASK_ALWAYS_EAGER = True
CELERY_BROKER_URL = "memory://"

LOGGING["root"]["level"] = "WARNING"  # noqa: F405
