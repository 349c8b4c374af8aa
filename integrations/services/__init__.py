# Integration service clients
from .crm_api import (
    ApiEnvelope,
    CrmApiClient,
    CrmApiError,
    EnvelopeDecodeError,
    ListResponse,
    Pagination,
    RemoteWriteError,
    decode_envelope,
)

__all__ = [
    'ApiEnvelope',
    'CrmApiClient',
    'CrmApiError',
    'EnvelopeDecodeError',
    'ListResponse',
    'Pagination',
    'RemoteWriteError',
    'decode_envelope',
]
