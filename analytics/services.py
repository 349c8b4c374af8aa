"""
Dashboard statistics services.

The CRM API has no count-by-status endpoint, so the dashboard builds its
numbers from list pages. Totals come from `pagination.total`; status
breakdowns are counted on the returned page and scaled up to the total when
the page is only a sample. The scaled breakdown is an estimate.
"""

import logging
import math
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import timedelta, timezone as dt_timezone
from typing import Mapping, Optional

import requests
from django.conf import settings
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from integrations.services.crm_api import (
    ApiEnvelope,
    CrmApiClient,
    CrmApiError,
    EnvelopeDecodeError,
    RESOURCES,
    decode_envelope,
)

logger = logging.getLogger(__name__)

CATEGORIES = RESOURCES

LEAD_NEW_STATUSES = {'NEW', 'START'}
LEAD_QUALIFIED_STATUSES = {'QUALIFIED', 'IN_PROGRESS', 'IN_CONVERSATION', 'ACTIVE'}
LEAD_CONVERTED_STATUSES = {'CONVERTED', 'CONVERT'}


def _upper(record: dict, key: str) -> str:
    value = record.get(key)
    return str(value).upper() if value is not None else ''


def _user_state(record: dict) -> str:
    # An explicit status wins over the isActive flag
    status = _upper(record, 'status')
    if status:
        return status
    active = record.get('isActive')
    if active is True:
        return 'ACTIVE'
    if active is False:
        return 'INACTIVE'
    return ''


CATEGORY_BUCKETS = {
    'leads': (
        ('new', lambda r: _upper(r, 'status') in LEAD_NEW_STATUSES),
        ('qualified', lambda r: _upper(r, 'status') in LEAD_QUALIFIED_STATUSES),
        ('converted', lambda r: _upper(r, 'status') in LEAD_CONVERTED_STATUSES),
    ),
    'users': (
        ('active', lambda r: _user_state(r) == 'ACTIVE'),
        ('inactive', lambda r: _user_state(r) == 'INACTIVE'),
    ),
    'colleges': (
        ('active', lambda r: _upper(r, 'status') == 'ACTIVE'),
        ('inactive', lambda r: _upper(r, 'status') == 'INACTIVE'),
    ),
    'trainers': (
        ('available', lambda r: _upper(r, 'availability') == 'AVAILABLE'),
        ('busy', lambda r: _upper(r, 'availability') == 'BUSY'),
    ),
}


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def as_count(value) -> int:
    """Parse anything the API sends into a non-negative int, 0 on failure."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        number = float(value)
    except (TypeError, ValueError):
        return 0
    if math.isnan(number) or math.isinf(number) or number < 0:
        return 0
    return _round_half_up(number)


def empty_stat(category: str) -> dict:
    """Zeroed stat for a category."""
    stat = {'total': 0}
    for bucket, _ in CATEGORY_BUCKETS[category]:
        stat[bucket] = 0
    return stat


def classify(category: str, records: list) -> dict:
    """Count records per bucket for a category."""
    counts = {bucket: 0 for bucket, _ in CATEGORY_BUCKETS[category]}
    for record in records:
        if not isinstance(record, dict):
            continue
        for bucket, matches in CATEGORY_BUCKETS[category]:
            if matches(record):
                counts[bucket] += 1
    return counts


def aggregate_category(category: str, response) -> dict:
    """
    Build the AggregatedStat for one category.

    Never raises: a failed or undecodable response gives a zeroed stat.
    """
    if response is None:
        logger.warning(f"No {category} response; reporting zero")
        return empty_stat(category)

    if not isinstance(response, ApiEnvelope):
        try:
            response = decode_envelope(response)
        except EnvelopeDecodeError as e:
            logger.warning(f"Undecodable {category} response ({e}); reporting zero")
            return empty_stat(category)

    if not response.success:
        logger.warning(
            f"{category} list call failed ({response.message or 'no message'}); reporting zero"
        )
        return empty_stat(category)

    items = response.items
    sample_size = len(items)

    if response.pagination is not None and response.pagination.total is not None:
        total = as_count(response.pagination.total)
    else:
        total = sample_size
        logger.warning(
            f"{category} response has no pagination.total; "
            f"using page length {sample_size}, which undercounts a truncated page"
        )

    counts = classify(category, items)

    # Sample page of a larger population: scale each bucket by total / sample.
    # The real distribution is not recoverable from a sample; this is an estimate.
    if total > sample_size > 0:
        ratio = total / sample_size
        counts = {bucket: _round_half_up(count * ratio) for bucket, count in counts.items()}

    stat = {'total': as_count(total)}
    for bucket, count in counts.items():
        stat[bucket] = as_count(count)
    return stat


def aggregate(responses: Mapping[str, Optional[ApiEnvelope]]) -> dict:
    """
    Aggregate list responses into dashboard statistics.

    Args:
        responses: category -> ApiEnvelope (or raw envelope dict, or None)

    Returns:
        Dict with leads, users, colleges, trainers stats. A failed category is
        zeroed and does not affect the others.
    """
    return {
        category: aggregate_category(category, responses.get(category))
        for category in CATEGORIES
    }


def fetch_category_responses(client: CrmApiClient, limit: int) -> dict:
    """
    Fetch the four list endpoints in parallel.

    A request that raises is logged and recorded as a failed response, so one
    bad endpoint never fails the batch.
    """
    responses = {}

    with ThreadPoolExecutor(max_workers=len(CATEGORIES)) as executor:
        future_to_category = {
            executor.submit(client.list_resource, category, limit=limit): category
            for category in CATEGORIES
        }

        for future in as_completed(future_to_category):
            category = future_to_category[future]
            try:
                responses[category] = future.result()
            except (CrmApiError, requests.exceptions.RequestException) as e:
                logger.warning(f"Fetching {category} for dashboard stats failed: {e}")
                responses[category] = ApiEnvelope.failure(str(e))

    return responses


def fetch_dashboard_stats(client: Optional[CrmApiClient] = None, limit: Optional[int] = None) -> dict:
    """
    Get dashboard statistics from the CRM API.

    Returns dict with:
    - leads: total, new, qualified, converted
    - users: total, active, inactive
    - colleges: total, active, inactive
    - trainers: total, available, busy
    - lastUpdated: ISO timestamp of this aggregation
    """
    client = client or CrmApiClient()
    limit = limit or settings.CRM_STATS_PAGE_LIMIT

    responses = fetch_category_responses(client, limit)
    stats = aggregate(responses)
    stats['lastUpdated'] = timezone.now().isoformat()

    logger.info(
        "Dashboard stats: "
        + ", ".join(f"{c}={stats[c]['total']}" for c in CATEGORIES)
    )
    return stats


def get_conversion_stats(client: Optional[CrmApiClient] = None, days: int = 30) -> dict:
    """
    Lead conversion statistics for colleges.

    A college counts as converted when it carries a sourceLeadId. Counts are
    taken on one large page of colleges, so both sides of the rate come from
    the same sample.
    """
    client = client or CrmApiClient()
    response = client.list_colleges(limit=settings.CRM_STATS_PAGE_LIMIT)
    if not response.success:
        raise CrmApiError(f"Failed to fetch colleges for statistics: {response.message}")

    colleges = [c for c in response.items if isinstance(c, dict)]
    converted = [c for c in colleges if c.get('sourceLeadId')]

    total_colleges = len(colleges)
    converted_colleges = len(converted)
    rate = (converted_colleges / total_colleges * 100) if total_colleges > 0 else 0

    cutoff = timezone.now() - timedelta(days=days)
    recent_conversions = 0
    for college in converted:
        raw_date = college.get('conversionDate')
        converted_at = parse_datetime(raw_date) if isinstance(raw_date, str) else None
        if converted_at is None:
            continue
        if timezone.is_naive(converted_at):
            converted_at = timezone.make_aware(converted_at, dt_timezone.utc)
        if converted_at > cutoff:
            recent_conversions += 1

    return {
        'totalColleges': total_colleges,
        'convertedColleges': converted_colleges,
        'manualColleges': total_colleges - converted_colleges,
        'conversionRate': f"{rate:.2f}%",
        'recentConversions': recent_conversions,
        'lastUpdated': timezone.now().isoformat(),
    }
