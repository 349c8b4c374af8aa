"""
Celery configuration for the CRM console.

Usage:
    # Run worker (dev)
    celery -A config worker -l info

    # Run beat scheduler (dev)
    celery -A config beat -l info
"""

import os

from celery import Celery

# Set the default Django settings module
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings.dev')

app = Celery('crm_console')

# Read config from Django settings, using CELERY_ prefix
app.config_from_object('django.conf:settings', namespace='CELERY')

# Auto-discover tasks in all installed apps
app.autodiscover_tasks()


# Celery Beat schedule
app.conf.beat_schedule = {
    'reconcile-college-cache': {
        'task': 'integrations.tasks.reconcile_college_cache',
        'schedule': 900.0,  # Every 15 minutes
    },
}
