"""
Analytics views - Dashboard statistics API.
"""

import logging

import requests
from django.contrib.auth.decorators import login_required
from django.http import JsonResponse
from django.views.decorators.http import require_GET

from integrations.services.crm_api import CrmApiError

from .services import fetch_dashboard_stats, get_conversion_stats

logger = logging.getLogger(__name__)


def _page_limit(request):
    try:
        limit = int(request.GET.get('limit', 0))
    except ValueError:
        return None
    return limit if limit > 0 else None


@login_required
@require_GET
def stats_api(request):
    """
    Dashboard statistics for leads, users, colleges and trainers.
    Failed categories come back zeroed, so this always answers 200.
    """
    stats = fetch_dashboard_stats(limit=_page_limit(request))
    return JsonResponse({'success': True, 'data': stats})


@login_required
@require_GET
def conversion_stats_api(request):
    """Lead-to-college conversion statistics."""
    try:
        stats = get_conversion_stats()
    except (CrmApiError, requests.exceptions.RequestException) as e:
        logger.error(f"Conversion stats unavailable: {e}")
        return JsonResponse({'success': False, 'message': str(e)}, status=502)

    return JsonResponse({'success': True, 'data': stats})
