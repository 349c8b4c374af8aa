"""
Pytest configuration and fixtures.
"""

from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from django.contrib.auth import get_user_model

from integrations.services.crm_api import ApiEnvelope, CrmApiClient, Pagination

User = get_user_model()

FIXED_NOW = datetime(2025, 3, 14, 9, 30, tzinfo=timezone.utc)


def envelope(data=None, total=None, success=True, message=''):
    """Build an ApiEnvelope the way the CRM API would return it."""
    pagination = Pagination(total=total) if total is not None else None
    return ApiEnvelope(success=success, data=data, pagination=pagination, message=message)


@pytest.fixture
def make_envelope():
    return envelope


@pytest.fixture
def user(db):
    """Create a test user."""
    return User.objects.create_user(
        username='testuser',
        email='test@example.com',
        password='testpass123'
    )


@pytest.fixture
def authenticated_client(client, user):
    """Return a client with an authenticated user."""
    client.force_login(user)
    return client


@pytest.fixture
def crm_client():
    """CrmApiClient double; configure return values per test."""
    return MagicMock(spec=CrmApiClient)


@pytest.fixture
def memory_store():
    from core.cache_store import InMemoryCacheStore
    return InMemoryCacheStore()


@pytest.fixture
def reconciler(crm_client, memory_store):
    """Reconciler over an in-memory cache with a fixed clock."""
    from core.reconciler import CollegeCacheReconciler
    return CollegeCacheReconciler(client=crm_client, store=memory_store, clock=lambda: FIXED_NOW)


@pytest.fixture
def lead():
    return {
        'id': 'lead-17',
        'name': 'Priya Sharma',
        'email': 'priya@sunrise.edu',
        'phone': '+91 98765 43210',
        'organization': 'Sunrise Engineering College',
        'source': 'Website',
        'status': 'CONVERTED',
    }
