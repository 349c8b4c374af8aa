import json

import pytest
import requests
from unittest.mock import patch

from django.urls import reverse

from core.cache_store import ModelCacheStore
from core.reconciler import StoredEntity
from core.validators import CollegeValidationError
from integrations.services.crm_api import RemoteWriteError


def post_json(client, url, data, method='post'):
    return getattr(client, method)(url, data=json.dumps(data), content_type='application/json')


@pytest.fixture
def mock_api():
    with patch('core.reconciler.CrmApiClient') as mock_class:
        yield mock_class.return_value


@pytest.mark.django_db
def test_college_api_requires_login(client):
    response = client.get(reverse('core:college_collection'))

    assert response.status_code == 302


def test_list_colleges_from_api(authenticated_client, mock_api, make_envelope):
    mock_api.list_colleges.return_value = make_envelope([{'id': 'c-1'}], total=1)

    response = authenticated_client.get(reverse('core:college_collection'), {'status': 'ACTIVE'})

    assert response.status_code == 200
    body = response.json()
    assert body['data'] == [{'id': 'c-1'}]
    assert body['pagination']['total'] == 1
    assert mock_api.list_colleges.call_args.kwargs['status'] == 'ACTIVE'


def test_list_colleges_falls_back_to_cache(authenticated_client, mock_api):
    ModelCacheStore().put({'id': 'local-1', 'name': 'Cached', 'createdAt': '2025-01-01T00:00:00Z'})
    mock_api.list_colleges.side_effect = requests.exceptions.ConnectionError('refused')

    response = authenticated_client.get(reverse('core:college_collection'))

    body = response.json()
    assert response.status_code == 200
    assert body['fallback'] is True
    assert [c['id'] for c in body['data']] == ['local-1']


def test_create_college_validation_error(authenticated_client, mock_api):
    response = post_json(authenticated_client, reverse('core:college_collection'), {'status': 'ACTIVE'})

    assert response.status_code == 400
    assert response.json()['errors'] == ['College name is required']
    mock_api.create_college.assert_not_called()


def test_create_college_invalid_json(authenticated_client, mock_api):
    response = authenticated_client.post(
        reverse('core:college_collection'), data='{nope', content_type='application/json'
    )

    assert response.status_code == 400


def test_create_college(authenticated_client, mock_api, make_envelope):
    mock_api.create_college.return_value = make_envelope({'id': 'c-1', 'name': 'X'})

    response = post_json(
        authenticated_client, reverse('core:college_collection'), {'name': 'X', 'status': 'ACTIVE'}
    )

    assert response.status_code == 201
    assert response.json()['data'] == {'id': 'c-1', 'name': 'X'}
    assert response.json()['fallback'] is False


def test_create_college_offline_is_still_created(authenticated_client, mock_api):
    mock_api.create_college.side_effect = requests.exceptions.ConnectionError('refused')

    response = post_json(
        authenticated_client, reverse('core:college_collection'), {'name': 'X', 'status': 'ACTIVE'}
    )

    assert response.status_code == 201
    assert response.json()['fallback'] is True


@patch('core.views.CollegeCacheReconciler.update')
def test_update_college_total_failure(mock_update, authenticated_client, mock_api):
    mock_update.side_effect = RemoteWriteError('down', status_code=503)

    response = post_json(
        authenticated_client, reverse('core:college_detail', args=['c-1']), {'name': 'Y'}, method='put'
    )

    assert response.status_code == 502


@patch('core.views.CollegeCacheReconciler.update')
def test_update_college_skipped(mock_update, authenticated_client, mock_api):
    mock_update.return_value = StoredEntity(data={'id': 'c-1'}, skipped=True, message='skipped')

    response = post_json(
        authenticated_client, reverse('core:college_detail', args=['c-1']), {'name': 'Y'}, method='put'
    )

    assert response.status_code == 200
    assert response.json()['skipped'] is True
    mock_update.assert_called_once_with('c-1', {'name': 'Y'})


def test_get_college_falls_back_to_cache(authenticated_client, mock_api):
    ModelCacheStore().put({'id': 42, 'name': 'Cached'})
    mock_api.get_college.side_effect = requests.exceptions.Timeout('slow')

    response = authenticated_client.get(reverse('core:college_detail', args=['42']))

    assert response.status_code == 200
    assert response.json()['data']['name'] == 'Cached'


def test_get_college_not_found(authenticated_client, mock_api, make_envelope):
    mock_api.get_college.return_value = make_envelope(success=False, message='Not found')

    response = authenticated_client.get(reverse('core:college_detail', args=['missing']))

    assert response.status_code == 404


def test_delete_college(authenticated_client, mock_api, make_envelope):
    mock_api.delete_college.return_value = make_envelope(message='College deleted')

    response = authenticated_client.delete(reverse('core:college_detail', args=['c-1']))

    assert response.status_code == 200
    assert response.json()['message'] == 'College deleted'


@patch('core.views.convert_lead_to_college')
@patch('core.views.CrmApiClient')
def test_convert_lead(mock_client_class, mock_convert, authenticated_client, lead, make_envelope):
    mock_client_class.return_value.get_lead.return_value = make_envelope(lead)
    mock_convert.return_value = {'success': True, 'converted': True}

    response = post_json(
        authenticated_client, reverse('core:lead_convert', args=['lead-17']), {'type': 'ENGINEERING'}
    )

    assert response.status_code == 200
    assert response.json()['converted'] is True
    mock_convert.assert_called_once_with(
        lead, client=mock_client_class.return_value, additional={'type': 'ENGINEERING'}
    )


@patch('core.views.convert_lead_to_college')
@patch('core.views.CrmApiClient')
def test_convert_lead_validation_error(mock_client_class, mock_convert, authenticated_client, lead, make_envelope):
    mock_client_class.return_value.get_lead.return_value = make_envelope(lead)
    mock_convert.side_effect = CollegeValidationError(['Type must be one of: OTHER'])

    response = post_json(authenticated_client, reverse('core:lead_convert', args=['lead-17']), {})

    assert response.status_code == 400
    assert response.json()['errors'] == ['Type must be one of: OTHER']


@patch('core.views.CrmApiClient')
def test_convert_unknown_lead(mock_client_class, authenticated_client, make_envelope):
    mock_client_class.return_value.get_lead.return_value = make_envelope(success=False, message='Lead not found')

    response = post_json(authenticated_client, reverse('core:lead_convert', args=['nope']), {})

    assert response.status_code == 404


@patch('core.views.process_lead_status_change')
def test_lead_status_change_queues_conversion(mock_task, authenticated_client):
    response = post_json(
        authenticated_client,
        reverse('core:lead_status_changed', args=['lead-17']),
        {'status': 'CONVERTED', 'previousStatus': 'QUALIFIED'},
    )

    assert response.status_code == 202
    mock_task.delay.assert_called_once_with('lead-17', 'CONVERTED', 'QUALIFIED')


@patch('core.views.process_lead_status_change')
def test_lead_status_change_requires_status(mock_task, authenticated_client):
    response = post_json(authenticated_client, reverse('core:lead_status_changed', args=['lead-17']), {})

    assert response.status_code == 400
    mock_task.delay.assert_not_called()
