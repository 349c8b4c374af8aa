"""
College payload validation.

Mirrors the backend's college schema so bad data is rejected before it
reaches the API (or, worse, only the local cache).
"""

import re
from typing import List

from django.core.exceptions import ValidationError
from django.core.validators import EmailValidator, URLValidator
from django.utils import timezone

COLLEGE_STATUSES = ('ACTIVE', 'INACTIVE')

COLLEGE_TYPES = (
    'ENGINEERING',
    'MEDICAL',
    'MANAGEMENT',
    'ARTS_SCIENCE',
    'LAW',
    'PHARMACY',
    'ARCHITECTURE',
    'OTHER',
)

MAX_NAME_LENGTH = 255
MIN_ESTABLISHED_YEAR = 1800

UUID_RE = re.compile(
    r'^[0-9a-f]{8}-[0-9a-f]{4}-[1-5][0-9a-f]{3}-[89ab][0-9a-f]{3}-[0-9a-f]{12}$',
    re.IGNORECASE,
)
PHONE_RE = re.compile(r'^\+?[1-9]\d{0,15}$')
PHONE_SEPARATORS_RE = re.compile(r'[\s\-()]')


class CollegeValidationError(Exception):
    """College data failed validation; `errors` holds readable messages."""

    def __init__(self, errors: List[str]):
        super().__init__('; '.join(errors))
        self.errors = list(errors)


def is_uuid(value) -> bool:
    return isinstance(value, str) and bool(UUID_RE.match(value))


def _is_blank(value) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def validate_college_data(data: dict, partial: bool = False) -> List[str]:
    """
    Validate a college payload.

    Args:
        data: College fields in API shape (camelCase)
        partial: Only check the fields present, for updates

    Returns:
        List of error messages, empty when valid
    """
    errors = []

    if not partial or 'name' in data:
        name = data.get('name')
        if _is_blank(name):
            errors.append('College name is required')
        elif len(str(name)) >= MAX_NAME_LENGTH:
            errors.append(f'College name must be less than {MAX_NAME_LENGTH} characters')

    if not partial or 'status' in data:
        status = data.get('status')
        if _is_blank(status):
            errors.append('Status is required')
        elif status not in COLLEGE_STATUSES:
            errors.append(f"Status must be one of: {', '.join(COLLEGE_STATUSES)}")

    if 'type' in data and data['type'] is not None and data['type'] not in COLLEGE_TYPES:
        errors.append(f"Type must be one of: {', '.join(COLLEGE_TYPES)}")

    for field in ('city', 'state'):
        if field in data and data[field] is None:
            errors.append(f'{field.capitalize()} cannot be null')

    website = data.get('website')
    if not _is_blank(website):
        try:
            URLValidator()(str(website))
        except ValidationError:
            errors.append('Website must be a valid URL')

    year = data.get('establishedYear')
    if year not in (None, ''):
        current_year = timezone.now().year
        if isinstance(year, bool) or not isinstance(year, int):
            errors.append('Established year must be a whole number')
        elif not MIN_ESTABLISHED_YEAR <= year <= current_year:
            errors.append(
                f'Established year must be between {MIN_ESTABLISHED_YEAR} and {current_year}'
            )

    email = data.get('contactEmail')
    if not _is_blank(email):
        try:
            EmailValidator()(str(email))
        except ValidationError:
            errors.append('Contact email must be a valid email address')

    phone = data.get('contactPhone')
    if not _is_blank(phone):
        if not PHONE_RE.match(PHONE_SEPARATORS_RE.sub('', str(phone))):
            errors.append('Contact phone must be a valid phone number')

    if 'sourceLeadId' in data and data['sourceLeadId'] is not None:
        lead_id = data['sourceLeadId']
        if isinstance(lead_id, str):
            if not lead_id.strip():
                errors.append('Source lead ID cannot be empty')
        elif isinstance(lead_id, bool) or not isinstance(lead_id, int) or lead_id <= 0:
            errors.append('Source lead ID must be a non-empty string or a positive number')

    assigned_to = data.get('assignedToId')
    if assigned_to not in (None, '') and not is_uuid(assigned_to):
        errors.append('Assigned user ID must be a valid UUID')

    return errors


def ensure_valid_college(data: dict, partial: bool = False) -> dict:
    """Return data unchanged, or raise CollegeValidationError."""
    errors = validate_college_data(data, partial=partial)
    if errors:
        raise CollegeValidationError(errors)
    return data
