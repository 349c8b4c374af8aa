"""
Celery tasks for CRM syncing.

Scheduled via Celery Beat (see config/celery.py).
"""

import logging

import requests
from celery import shared_task

from .services.crm_api import CrmApiError

logger = logging.getLogger(__name__)


@shared_task
def reconcile_college_cache():
    """
    Push colleges created or updated only in the local cache to the CRM API.
    Runs every 15 minutes via Celery Beat.
    """
    from core.reconciler import CollegeCacheReconciler

    result = CollegeCacheReconciler().reconcile_pending()

    if result['pushed'] or result['failed']:
        logger.info(
            f"College cache reconciled: {result['pushed']} pushed, {result['failed']} still pending"
        )
    return result


@shared_task(bind=True, max_retries=3, default_retry_delay=60)
def process_lead_status_change(self, lead_id, new_status, old_status=None):
    """
    Run lead-to-college conversion for a status change.
    Queued by the lead status endpoint (core.views.lead_status_changed).
    """
    from core.services import ConversionInProgress, handle_lead_status_update

    try:
        return handle_lead_status_update(lead_id, new_status, old_status)
    except ConversionInProgress:
        logger.info(f"Lead {lead_id} conversion already running, skipping")
        return {'success': False, 'converted': False, 'message': 'Conversion already in progress'}
    except (CrmApiError, requests.exceptions.RequestException) as e:
        logger.warning(f"Lead {lead_id} conversion failed, retrying: {e}")
        raise self.retry(exc=e)
