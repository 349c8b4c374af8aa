"""
CRM console - dashboard statistics and college cache reconciliation.

This module makes Celery app available for Django.
"""

from .celery import app as celery_app

__all__ = ('celery_app',)
