"""
Business logic services for core app.
Keep views thin, put logic here.

Lead-to-college conversion: when a lead is marked CONVERTED it is linked to
an existing active college with a matching name, or a new college is created
from the lead's data.
"""

import logging
import re
from typing import Optional

import requests
from django.core.cache import cache
from django.utils import timezone

from integrations.services.crm_api import CrmApiClient, CrmApiError

from .models import ConversionActivity
from .reconciler import CollegeCacheReconciler
from .validators import ensure_valid_college, is_uuid

logger = logging.getLogger(__name__)

CONVERTED_STATUS = 'CONVERTED'

CONVERSION_LOCK_TIMEOUT = 300  # seconds

# Stripped from the end of names in this order before fuzzy comparison
NAME_SUFFIXES = [
    'inc', 'corp', 'corporation', 'ltd', 'limited', 'llc',
    'university', 'college', 'institute', 'institution', 'school',
    'academy', 'center', 'centre',
]

MIN_PARTIAL_MATCH_LENGTH = 3


class ConversionInProgress(Exception):
    """Another worker is already converting this lead."""


def _clean(value) -> str:
    return value.strip() if isinstance(value, str) else ''


def extract_college_name(lead: dict) -> str:
    """Organization, else the lead's name, else a generated name."""
    return (
        _clean(lead.get('organization'))
        or _clean(lead.get('name'))
        or f"College for Lead {lead.get('id')}"
    )


def normalize_college_name(name) -> str:
    """Lowercase, single-spaced, without punctuation."""
    if not name:
        return ''
    normalized = re.sub(r'\s+', ' ', str(name).strip().lower())
    return re.sub(r'[^\w\s]', '', normalized).strip()


def is_exact_match(search_name: str, college_name) -> bool:
    if not search_name or not college_name:
        return False
    return search_name == normalize_college_name(college_name)


def _strip_suffixes(name: str) -> str:
    for suffix in NAME_SUFFIXES:
        name = re.sub(rf'\s+{suffix}$', '', name, flags=re.IGNORECASE)
    return name


def is_fuzzy_match(search_name: str, college_name) -> bool:
    """
    Compare names without institution suffixes.

    Names longer than 3 characters also match when one contains the other.
    """
    if not search_name or not college_name:
        return False

    clean_search = _strip_suffixes(search_name)
    clean_college = _strip_suffixes(normalize_college_name(college_name))

    if clean_search == clean_college:
        return True

    if len(clean_search) > MIN_PARTIAL_MATCH_LENGTH and len(clean_college) > MIN_PARTIAL_MATCH_LENGTH:
        return clean_search in clean_college or clean_college in clean_search
    return False


def find_existing_college(organization_name: str, client: CrmApiClient) -> Optional[dict]:
    """
    Find an active college matching the name, exact matches first.

    Search failures return None so the caller creates a new college.
    """
    normalized = normalize_college_name(organization_name)
    if not normalized:
        return None

    try:
        response = client.search_colleges(normalized, status='ACTIVE', limit=50)
    except (CrmApiError, requests.exceptions.RequestException) as e:
        logger.warning(f"College search for '{organization_name}' failed: {e}")
        return None

    if not response.success:
        return None

    colleges = [c for c in response.items if isinstance(c, dict)]

    for college in colleges:
        if is_exact_match(normalized, college.get('name')):
            logger.info(f"Exact college match for '{organization_name}': {college.get('id')}")
            return college

    for college in colleges:
        if is_fuzzy_match(normalized, college.get('name')):
            logger.info(f"Fuzzy college match for '{organization_name}': {college.get('id')}")
            return college

    return None


def _placeholder_website(college_name: str) -> str:
    host = re.sub(r'[^a-z0-9]', '', college_name.lower()) or 'college'
    return f"https://{host}.edu"


def build_college_from_lead(lead: dict, additional: Optional[dict] = None) -> dict:
    """
    Map a lead to a college payload.

    The lead id is only sent as sourceLeadId when it is a UUID (the API's
    column type); other ids are kept in the notes.
    """
    additional = dict(additional or {})
    college_name = extract_college_name(lead)
    lead_name = lead.get('name')

    college = {
        'name': college_name,
        'status': 'ACTIVE',
        'type': 'OTHER',
        'contactEmail': lead.get('email') or None,
        'contactPhone': lead.get('phone') or None,
        'conversionDate': timezone.now().isoformat(),
        'description': lead.get('requirement') or f"College created from converted lead: {lead_name}",
        'notes': (
            "Automatically created from lead conversion.\n"
            f"Original lead: {lead_name} (ID: {lead.get('id')})\n"
            f"Organization: {lead.get('organization') or 'N/A'}\n"
            f"Source: {lead.get('source') or 'Unknown'}"
        ),
        'address': lead.get('address') or '',
        'city': lead.get('city') or 'Unknown',
        'state': lead.get('state') or 'Unknown',
        'country': lead.get('country') or 'Unknown',
        'postalCode': lead.get('postalCode') or '',
        'website': lead.get('website') or _placeholder_website(college_name),
        'establishedYear': lead.get('establishedYear') or timezone.now().year,
    }

    lead_id = str(lead.get('id'))
    if is_uuid(lead_id):
        college['sourceLeadId'] = lead_id
    else:
        college['notes'] += f"\nOriginal Lead ID (non-UUID): {lead_id}"

    assigned_to = additional.pop('assignedToId', None)
    if isinstance(assigned_to, str) and assigned_to.strip():
        college['assignedToId'] = assigned_to

    college.update(additional)
    return college


def link_lead_to_college(
    lead: dict,
    college_id,
    client: CrmApiClient,
    reconciler: CollegeCacheReconciler,
) -> None:
    """
    Point the lead at the college, then record the lead on the college.

    The lead update must succeed; the college side is best effort.
    """
    now = timezone.now().isoformat()
    client.update_lead(lead['id'], {
        'linkedCollegeId': college_id,
        'conversionDate': now,
        'status': CONVERTED_STATUS,
    })

    college_update = {
        'sourceLeadId': lead['id'],
        'conversionDate': now,
    }
    if lead.get('email'):
        college_update['contactEmail'] = lead['email']
    if lead.get('phone'):
        college_update['contactPhone'] = lead['phone']
    if lead.get('name'):
        college_update['notes'] = f"Linked to converted lead: {lead['name']} (ID: {lead['id']})"

    try:
        result = reconciler.update(college_id, college_update)
        if result.skipped:
            logger.info(f"College {college_id} lead info deferred: {result.message}")
    except (CrmApiError, requests.exceptions.RequestException) as e:
        logger.warning(f"College {college_id} lead info update failed, continuing: {e}")


def log_conversion_activity(lead_id, college_id, action: str, details: dict) -> ConversionActivity:
    return ConversionActivity.objects.create(
        lead_id=str(lead_id),
        college_id=str(college_id or ''),
        action=action,
        details_json=details,
    )


def convert_lead_to_college(
    lead: dict,
    client: Optional[CrmApiClient] = None,
    reconciler: Optional[CollegeCacheReconciler] = None,
    additional: Optional[dict] = None,
) -> dict:
    """
    Convert a lead into a college.

    Steps:
    1. Skip leads already linked to a college
    2. Reuse an active college with a matching name, or create one
    3. Link lead and college
    4. Record a ConversionActivity

    Raises:
        ValueError: lead has no id
        ConversionInProgress: the lead is being converted elsewhere
        CollegeValidationError, CrmApiError: conversion failed (logged as FAILED)
    """
    if not lead or not lead.get('id'):
        raise ValueError('Invalid lead data provided')

    if lead.get('linkedCollegeId'):
        logger.info(f"Lead {lead['id']} already linked to college {lead['linkedCollegeId']}")
        return {
            'success': True,
            'converted': False,
            'alreadyLinked': True,
            'collegeId': lead['linkedCollegeId'],
            'message': 'Lead is already linked to a college',
        }

    lock_key = f"lead-conversion:{lead['id']}"
    if not cache.add(lock_key, True, CONVERSION_LOCK_TIMEOUT):
        raise ConversionInProgress(f"Conversion already in progress for lead {lead['id']}")

    client = client or CrmApiClient()
    reconciler = reconciler or CollegeCacheReconciler(client=client)

    try:
        college_name = extract_college_name(lead)
        college = find_existing_college(college_name, client)
        is_new_college = college is None

        if is_new_college:
            payload = ensure_valid_college(build_college_from_lead(lead, additional))
            college = reconciler.create(payload).data

        link_lead_to_college(lead, college['id'], client, reconciler)

    except Exception as e:
        logger.error(f"Conversion of lead {lead['id']} failed: {e}")
        log_conversion_activity(lead['id'], None, 'FAILED', {
            'error': str(e),
            'leadName': lead.get('name'),
            'organizationName': lead.get('organization'),
        })
        raise
    finally:
        cache.delete(lock_key)

    log_conversion_activity(lead['id'], college['id'], 'CREATED' if is_new_college else 'LINKED', {
        'collegeName': college.get('name'),
        'leadName': lead.get('name'),
        'organizationName': lead.get('organization'),
        'isNewCollege': is_new_college,
    })

    logger.info(f"Lead {lead['id']} converted to college {college['id']} (new={is_new_college})")

    return {
        'success': True,
        'converted': True,
        'isNewCollege': is_new_college,
        'college': {
            'id': college['id'],
            'name': college.get('name'),
            'status': college.get('status'),
        },
        'lead': {
            'id': lead['id'],
            'name': lead.get('name'),
            'linkedCollegeId': college['id'],
        },
        'message': (
            f'Successfully created new college "{college.get("name")}" and linked to lead'
            if is_new_college
            else f'Successfully linked lead to existing college "{college.get("name")}"'
        ),
    }


def handle_lead_status_update(
    lead_id,
    new_status: str,
    old_status: Optional[str] = None,
    client: Optional[CrmApiClient] = None,
) -> dict:
    """
    Trigger conversion when a lead moves into CONVERTED.

    Other transitions are a no-op.
    """
    if new_status != CONVERTED_STATUS or old_status == CONVERTED_STATUS:
        return {'success': True, 'converted': False, 'message': 'No conversion required'}

    client = client or CrmApiClient()
    response = client.get_lead(lead_id)
    if not response.success or response.record is None:
        raise CrmApiError(f"Failed to fetch lead {lead_id}: {response.message}")

    return convert_lead_to_college(response.record, client=client)
