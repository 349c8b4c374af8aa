"""
Views for core app - College and lead conversion JSON API.

Responses use the CRM envelope ({"success": ..., "data": ..., "message": ...}).
Only validation problems (400) and writes that neither the API nor the local
cache accepted (502) are reported as errors.
"""

import json
import logging

import requests
from django.contrib.auth.decorators import login_required
from django.http import JsonResponse
from django.views.decorators.http import require_http_methods, require_POST

from integrations.services.crm_api import CrmApiClient, CrmApiError
from integrations.tasks import process_lead_status_change

from .reconciler import CollegeCacheReconciler
from .services import ConversionInProgress, convert_lead_to_college
from .validators import CollegeValidationError, ensure_valid_college

logger = logging.getLogger(__name__)

REMOTE_ERRORS = (CrmApiError, requests.exceptions.RequestException)


def _json_body(request):
    body = json.loads(request.body) if request.body else {}
    if not isinstance(body, dict):
        raise ValueError('Expected a JSON object')
    return body


def _bad_request(message, errors=None):
    return JsonResponse(
        {'success': False, 'message': message, 'errors': errors or []},
        status=400,
    )


def _remote_failure(error):
    return JsonResponse({'success': False, 'message': str(error)}, status=502)


@login_required
@require_http_methods(['GET', 'POST'])
def college_collection(request):
    """
    GET: list colleges (served from the local cache if the API is down).
    POST: create a college.
    """
    reconciler = CollegeCacheReconciler()

    if request.method == 'POST':
        try:
            data = ensure_valid_college(_json_body(request))
        except ValueError:
            return _bad_request('Invalid JSON')
        except CollegeValidationError as e:
            return _bad_request('College data validation failed', e.errors)

        try:
            result = reconciler.create(data)
        except CrmApiError as e:
            return _remote_failure(e)
        return JsonResponse(result.to_dict(), status=201)

    params = {
        'search': request.GET.get('search') or None,
        'status': request.GET.get('status') or None,
        'type': request.GET.get('type') or None,
        'page': request.GET.get('page') or 1,
        'limit': request.GET.get('limit') or 10,
    }

    try:
        response = reconciler.client.list_colleges(**params)
        if not response.success:
            raise CrmApiError(response.message or 'College list failed')
    except REMOTE_ERRORS as e:
        logger.warning(f"College list unavailable, serving cache: {e}")
        try:
            return JsonResponse({**reconciler.list_cached(
                search=params['search'],
                status=params['status'],
                college_type=params['type'],
                page=params['page'],
                limit=params['limit'],
            ), 'fallback': True})
        except ValueError:
            return _bad_request('page and limit must be numbers')

    return JsonResponse({
        'success': True,
        'data': response.items,
        'pagination': response.pagination.to_dict() if response.pagination else None,
    })


@login_required
@require_http_methods(['GET', 'PUT', 'DELETE'])
def college_detail(request, college_id):
    """Get, update or delete one college."""
    reconciler = CollegeCacheReconciler()

    if request.method == 'PUT':
        try:
            fields = ensure_valid_college(_json_body(request), partial=True)
        except ValueError:
            return _bad_request('Invalid JSON')
        except CollegeValidationError as e:
            return _bad_request('College data validation failed', e.errors)

        try:
            result = reconciler.update(college_id, fields)
        except CrmApiError as e:
            return _remote_failure(e)
        return JsonResponse(result.to_dict())

    if request.method == 'DELETE':
        try:
            result = reconciler.delete(college_id)
        except REMOTE_ERRORS as e:
            return _remote_failure(e)
        return JsonResponse(result.to_dict())

    try:
        response = reconciler.client.get_college(college_id)
        if response.success and response.record is not None:
            return JsonResponse({'success': True, 'data': response.record})
    except REMOTE_ERRORS as e:
        logger.warning(f"College {college_id} fetch failed, checking cache: {e}")

    cached = reconciler.find_by_id(college_id)
    if cached is None:
        return JsonResponse({'success': False, 'message': 'College not found'}, status=404)
    return JsonResponse({'success': True, 'data': cached, 'fallback': True})


@login_required
@require_POST
def lead_convert(request, lead_id):
    """Convert a lead into a college (or link it to an existing one)."""
    try:
        additional = _json_body(request)
    except ValueError:
        return _bad_request('Invalid JSON')

    client = CrmApiClient()
    try:
        response = client.get_lead(lead_id)
    except REMOTE_ERRORS as e:
        return _remote_failure(e)
    if not response.success or response.record is None:
        return JsonResponse(
            {'success': False, 'message': response.message or 'Lead not found'}, status=404
        )

    try:
        result = convert_lead_to_college(response.record, client=client, additional=additional)
    except ConversionInProgress as e:
        return JsonResponse({'success': False, 'message': str(e)}, status=409)
    except CollegeValidationError as e:
        return _bad_request('College data validation failed', e.errors)
    except REMOTE_ERRORS as e:
        return _remote_failure(e)

    return JsonResponse(result)


@login_required
@require_POST
def lead_status_changed(request, lead_id):
    """
    Queue conversion for a lead whose status changed.

    Expects {"status": ..., "previousStatus": ...}; the conversion itself
    runs in the process_lead_status_change task.
    """
    try:
        payload = _json_body(request)
    except ValueError:
        return _bad_request('Invalid JSON')

    new_status = payload.get('status')
    if not isinstance(new_status, str) or not new_status.strip():
        return _bad_request('Lead status is required')

    old_status = payload.get('previousStatus')
    process_lead_status_change.delay(lead_id, new_status, old_status)
    logger.info(f"Queued status change {old_status} -> {new_status} for lead {lead_id}")

    return JsonResponse({'success': True, 'message': 'Lead status change queued'}, status=202)
