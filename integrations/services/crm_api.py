"""
CRM REST API client.

The CRM backend (Express/Prisma) exposes every resource under /api/v1 and
wraps every response in the same envelope:

    {"success": true, "data": [...], "pagination": {"total": 42, ...}, "message": "..."}

List endpoints return one page of records in `data`; `pagination.total` is the
server-side row count and is the only number that can be trusted as a total.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import Any, List, Optional

import requests
from django.conf import settings

logger = logging.getLogger(__name__)

API_PREFIX = 'api/v1'

RESOURCES = ('leads', 'users', 'colleges', 'trainers')


class CrmApiError(Exception):
    """Base error for CRM API failures."""

    def __init__(self, message: str, status_code: Optional[int] = None, payload: Any = None):
        super().__init__(message)
        self.status_code = status_code
        self.payload = payload


class EnvelopeDecodeError(CrmApiError):
    """The response body is not a CRM envelope."""


class RemoteWriteError(CrmApiError):
    """A create/update/delete was rejected or could not reach the API."""


def _to_int(value) -> Optional[int]:
    if value is None:
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError, OverflowError):
        return None


@dataclass(frozen=True)
class Pagination:
    total: Optional[int] = None
    page: Optional[int] = None
    limit: Optional[int] = None
    total_pages: Optional[int] = None
    has_next: bool = False
    has_prev: bool = False

    @classmethod
    def from_dict(cls, raw: dict) -> 'Pagination':
        return cls(
            total=_to_int(raw.get('total')),
            page=_to_int(raw.get('page')),
            limit=_to_int(raw.get('limit')),
            total_pages=_to_int(raw.get('totalPages')),
            has_next=bool(raw.get('hasNext', False)),
            has_prev=bool(raw.get('hasPrev', False)),
        )

    def to_dict(self) -> dict:
        return {
            'total': self.total,
            'page': self.page,
            'limit': self.limit,
            'totalPages': self.total_pages,
            'hasNext': self.has_next,
            'hasPrev': self.has_prev,
        }


@dataclass(frozen=True)
class ApiEnvelope:
    """
    Decoded CRM response.

    `data` is a list for list endpoints and a dict for single-record
    endpoints. `items` always gives the list form.
    """
    success: bool
    data: Any = None
    pagination: Optional[Pagination] = None
    message: str = ''
    errors: List[str] = field(default_factory=list)

    @property
    def items(self) -> list:
        if isinstance(self.data, list):
            return self.data
        return []

    @property
    def record(self) -> Optional[dict]:
        if isinstance(self.data, dict):
            return self.data
        return None

    @classmethod
    def failure(cls, message: str) -> 'ApiEnvelope':
        return cls(success=False, data=[], message=message)


# List responses use the same envelope
ListResponse = ApiEnvelope


def decode_envelope(payload) -> ApiEnvelope:
    """
    Decode a CRM response body.

    Raises EnvelopeDecodeError instead of guessing at nested shapes.
    """
    if not isinstance(payload, dict):
        raise EnvelopeDecodeError(
            f"Expected a JSON object, got {type(payload).__name__}", payload=payload
        )
    if 'success' not in payload:
        raise EnvelopeDecodeError("Response has no 'success' field", payload=payload)

    raw_pagination = payload.get('pagination')
    if raw_pagination is not None and not isinstance(raw_pagination, dict):
        raise EnvelopeDecodeError("'pagination' must be an object", payload=payload)

    errors = payload.get('errors') or []
    if not isinstance(errors, list):
        errors = [str(errors)]

    return ApiEnvelope(
        success=bool(payload['success']),
        data=payload.get('data'),
        pagination=Pagination.from_dict(raw_pagination) if raw_pagination is not None else None,
        message=payload.get('message') or '',
        errors=[str(e) for e in errors],
    )


class CrmApiClient:
    """
    Client for the CRM REST API.

    Usage:
        client = CrmApiClient()
        leads = client.list_resource('leads', limit=1000)
        college = client.create_college({'name': 'X', 'status': 'ACTIVE', 'type': 'OTHER'})

    Base URL, token and timeout default to the CRM_API_* settings.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self.base_url = (base_url or settings.CRM_API_BASE_URL).rstrip('/')
        self.token = token if token is not None else settings.CRM_API_TOKEN
        self.timeout = timeout or settings.CRM_API_TIMEOUT
        self.session = requests.Session()
        self.session.headers.update({
            'Accept': 'application/json',
            'Content-Type': 'application/json',
        })
        if self.token:
            self.session.headers['Authorization'] = f'Bearer {self.token}'

    def _request(self, method: str, endpoint: str, **kwargs) -> ApiEnvelope:
        """Make an API request and decode the envelope."""
        url = f"{self.base_url}/{API_PREFIX}/{endpoint}"
        kwargs.setdefault('timeout', self.timeout)

        try:
            response = self.session.request(method, url, **kwargs)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            logger.error(f"CRM API error on {method} {endpoint}: {e}")
            raise

        try:
            payload = response.json()
        except ValueError as e:
            raise EnvelopeDecodeError(
                f"Response from {endpoint} is not JSON", status_code=response.status_code
            ) from e

        return decode_envelope(payload)

    def _write(self, method: str, endpoint: str, **kwargs) -> ApiEnvelope:
        """Make a write request; an unsuccessful envelope is an error."""
        envelope = self._request(method, endpoint, **kwargs)
        if not envelope.success:
            raise RemoteWriteError(
                envelope.message or f"{method} {endpoint} was rejected",
                payload=envelope,
            )
        return envelope

    # Lists

    def list_resource(
        self,
        resource: str,
        page: Optional[int] = None,
        limit: Optional[int] = None,
        **filters,
    ) -> ApiEnvelope:
        """
        Get one page of a list endpoint.

        Args:
            resource: One of leads, users, colleges, trainers
            page: Page number (1-based)
            limit: Page size
            **filters: search, status, type, city, state, sort, order...

        Returns:
            ApiEnvelope whose `items` is the page and `pagination.total`
            the server-side total (when the API reports it)
        """
        params = {k: v for k, v in filters.items() if v not in (None, '')}
        if page:
            params['page'] = page
        if limit:
            params['limit'] = limit
        params['_t'] = int(time.time() * 1000)  # Cache buster

        return self._request('GET', resource, params=params)

    def list_leads(self, **kwargs) -> ApiEnvelope:
        return self.list_resource('leads', **kwargs)

    def list_users(self, **kwargs) -> ApiEnvelope:
        return self.list_resource('users', **kwargs)

    def list_colleges(self, **kwargs) -> ApiEnvelope:
        return self.list_resource('colleges', **kwargs)

    def list_trainers(self, **kwargs) -> ApiEnvelope:
        return self.list_resource('trainers', **kwargs)

    def search_colleges(self, name: str, status: str = 'ACTIVE', limit: int = 50) -> ApiEnvelope:
        """Search colleges by name, active ones by default."""
        return self.list_resource('colleges', search=name.strip(), status=status, limit=limit, page=1)

    # Colleges

    def get_college(self, college_id) -> ApiEnvelope:
        return self._request('GET', f'colleges/{college_id}')

    def create_college(self, college_data: dict) -> ApiEnvelope:
        return self._write('POST', 'colleges', json=college_data)

    def update_college(self, college_id, college_data: dict) -> ApiEnvelope:
        return self._write('PUT', f'colleges/{college_id}', json=college_data)

    def delete_college(self, college_id) -> ApiEnvelope:
        return self._write('DELETE', f'colleges/{college_id}')

    # Leads

    def get_lead(self, lead_id) -> ApiEnvelope:
        return self._request('GET', f'leads/{lead_id}')

    def update_lead(self, lead_id, lead_data: dict) -> ApiEnvelope:
        return self._write('PUT', f'leads/{lead_id}', json=lead_data)
