import math
from datetime import datetime, timezone

import pytest
import requests
from unittest.mock import patch

from analytics.services import (
    aggregate,
    aggregate_category,
    as_count,
    fetch_category_responses,
    fetch_dashboard_stats,
    get_conversion_stats,
)
from integrations.services.crm_api import CrmApiError


def leads(*statuses):
    return [{'id': i, 'status': s} for i, s in enumerate(statuses, start=1)]


def test_leads_sample_scaled_to_total(make_envelope):
    """5 of 10 leads returned: buckets are doubled (an estimate, not exact counts)."""
    response = make_envelope(
        leads('NEW', 'START', 'QUALIFIED', 'IN_CONVERSATION', 'CONVERTED'), total=10
    )

    stats = aggregate({'leads': response})

    assert stats['leads'] == {'total': 10, 'new': 4, 'qualified': 4, 'converted': 2}


def test_authoritative_total_wins_over_page_length(make_envelope):
    response = make_envelope([{'id': 1, 'status': 'ACTIVE'}], total=250)

    stat = aggregate_category('colleges', response)

    assert stat['total'] == 250


def test_full_page_is_counted_exactly(make_envelope):
    response = make_envelope(
        [{'availability': 'AVAILABLE'}, {'availability': 'busy'}, {'availability': 'AVAILABLE'}],
        total=3,
    )

    assert aggregate_category('trainers', response) == {'total': 3, 'available': 2, 'busy': 1}


@patch('analytics.services.logger')
def test_missing_total_falls_back_to_page_length(mock_logger, make_envelope):
    response = make_envelope([{'status': 'ACTIVE'}, {'status': 'INACTIVE'}])

    stat = aggregate_category('colleges', response)

    assert stat == {'total': 2, 'active': 1, 'inactive': 1}
    mock_logger.warning.assert_called_once()


def test_failed_category_is_zeroed_without_affecting_others(make_envelope):
    responses = {
        'leads': make_envelope(success=False, message='timeout'),
        'users': make_envelope([{'isActive': True}, {'status': 'INACTIVE'}], total=2),
        'colleges': None,
        'trainers': make_envelope([{'availability': 'BUSY'}], total=1),
    }

    stats = aggregate(responses)

    assert stats['leads'] == {'total': 0, 'new': 0, 'qualified': 0, 'converted': 0}
    assert stats['colleges'] == {'total': 0, 'active': 0, 'inactive': 0}
    assert stats['users'] == {'total': 2, 'active': 1, 'inactive': 1}
    assert stats['trainers'] == {'total': 1, 'available': 0, 'busy': 1}


def test_user_status_takes_precedence_over_is_active(make_envelope):
    """Each user lands in at most one bucket; isActive only counts without a status."""
    response = make_envelope([
        {'status': 'ACTIVE', 'isActive': False},
        {'status': 'inactive', 'isActive': True},
        {'isActive': False},
        {'status': 'PENDING', 'isActive': True},
    ], total=4)

    stat = aggregate_category('users', response)

    assert stat == {'total': 4, 'active': 1, 'inactive': 2}


@pytest.mark.parametrize('raw', [
    [1, 2, 3],
    {'data': []},
    {'success': True, 'pagination': 'oops'},
])
def test_undecodable_raw_response_is_zeroed(raw):
    assert aggregate_category('leads', raw) == {'total': 0, 'new': 0, 'qualified': 0, 'converted': 0}


def test_raw_dict_response_is_decoded():
    raw = {'success': True, 'data': [{'status': 'ACTIVE'}], 'pagination': {'total': '4'}}

    assert aggregate_category('colleges', raw) == {'total': 4, 'active': 4, 'inactive': 0}


@pytest.mark.parametrize('total', [None, 'abc', -5, math.nan, math.inf, True])
def test_bad_totals_never_go_negative(total, make_envelope):
    response = make_envelope([{'status': 'NEW'}, 'junk', None], total=None)
    raw = {'success': True, 'data': response.data, 'pagination': {'total': total}}

    stat = aggregate_category('leads', raw)

    for value in stat.values():
        assert isinstance(value, int)
        assert value >= 0


@pytest.mark.parametrize('value, expected', [
    (None, 0),
    ('12', 12),
    ('2.5', 3),
    (7.49, 7),
    (-1, 0),
    ('nope', 0),
    (False, 0),
    ([], 0),
])
def test_as_count(value, expected):
    assert as_count(value) == expected


def test_fetch_category_responses_settles_all(crm_client, make_envelope):
    """One endpoint raising does not fail the batch."""
    def list_resource(category, limit=None):
        if category == 'users':
            raise requests.exceptions.ConnectionError('refused')
        return make_envelope([], total=7)

    crm_client.list_resource.side_effect = list_resource

    responses = fetch_category_responses(crm_client, limit=100)

    assert set(responses) == {'leads', 'users', 'colleges', 'trainers'}
    assert responses['users'].success is False
    assert responses['leads'].pagination.total == 7
    assert crm_client.list_resource.call_count == 4


def test_fetch_dashboard_stats(crm_client, make_envelope):
    crm_client.list_resource.return_value = make_envelope([{'status': 'ACTIVE'}], total=1)

    stats = fetch_dashboard_stats(client=crm_client, limit=25)

    assert stats['colleges'] == {'total': 1, 'active': 1, 'inactive': 0}
    assert 'lastUpdated' in stats
    crm_client.list_resource.assert_any_call('colleges', limit=25)


@patch('analytics.services.timezone.now')
def test_get_conversion_stats(mock_now, crm_client, make_envelope):
    mock_now.return_value = datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc)

    crm_client.list_colleges.return_value = make_envelope([
        {'id': 'a', 'sourceLeadId': 'l1', 'conversionDate': '2025-03-10T10:00:00Z'},
        {'id': 'b', 'sourceLeadId': 'l2', 'conversionDate': '2024-12-01T10:00:00'},
        {'id': 'c', 'sourceLeadId': 'l3'},
        {'id': 'd'},
        {'id': 'e', 'sourceLeadId': ''},
    ])

    stats = get_conversion_stats(client=crm_client)

    assert stats['totalColleges'] == 5
    assert stats['convertedColleges'] == 3
    assert stats['manualColleges'] == 2
    assert stats['conversionRate'] == '60.00%'
    assert stats['recentConversions'] == 1


def test_get_conversion_stats_empty(crm_client, make_envelope):
    crm_client.list_colleges.return_value = make_envelope([])

    stats = get_conversion_stats(client=crm_client)

    assert stats['conversionRate'] == '0.00%'
    assert stats['totalColleges'] == 0


def test_get_conversion_stats_failure_raises(crm_client, make_envelope):
    crm_client.list_colleges.return_value = make_envelope(success=False, message='down')

    with pytest.raises(CrmApiError):
        get_conversion_stats(client=crm_client)
