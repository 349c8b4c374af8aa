"""
College cache reconciliation.

Writes go to the CRM API first. Successful creates are also written to the
local cache so a later update can fall back to it; failed creates are stored
locally under a generated UUID and pushed to the API later by
reconcile_pending(). Remote data always wins when both sides have a record.

A successful create() does not imply the API has the college: check
StoredEntity.fallback.
"""

import logging
import re
import uuid
from dataclasses import dataclass, field
from typing import Callable, List, Optional

import requests
from django.db import DatabaseError
from django.utils import timezone

from integrations.services.crm_api import (
    ApiEnvelope,
    CrmApiClient,
    CrmApiError,
    RemoteWriteError,
)

from .cache_store import (
    ORIGIN_LOCAL,
    ORIGIN_REMOTE,
    CacheEntry,
    CacheStore,
    CacheStoreError,
    ModelCacheStore,
    StaleCacheWrite,
)

logger = logging.getLogger(__name__)

REMOTE_ERRORS = (CrmApiError, requests.exceptions.RequestException)
CACHE_ERRORS = (CacheStoreError, DatabaseError, ValueError, TypeError)

IDENTIFIER_ERROR_MARKERS = ('invalid length', 'uuid')

# Fields the API assigns itself; never sent back when pushing a local record
LOCAL_ONLY_FIELDS = ('id', 'createdAt', 'updatedAt')

MAX_MERGE_ATTEMPTS = 3

_INTEGER_RE = re.compile(r'^\s*[+-]?\d+\s*$')


def generate_college_id() -> str:
    """UUID v4 in canonical text form, accepted by the API's id column."""
    return str(uuid.uuid4())


def _as_integer(value) -> Optional[int]:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value) if value.is_integer() else None
    if isinstance(value, str) and _INTEGER_RE.match(value):
        return int(value)
    return None


def ids_match(stored_id, wanted_id) -> bool:
    """
    Compare ids as strings, then as whole numbers.

    "42" matches 42 and "042"; a UUID never matches a number.
    """
    if stored_id is None or wanted_id is None:
        return False
    if str(stored_id) == str(wanted_id):
        return True
    stored_number = _as_integer(stored_id)
    wanted_number = _as_integer(wanted_id)
    return stored_number is not None and stored_number == wanted_number


def _status_code(error) -> Optional[int]:
    status = getattr(error, 'status_code', None)
    if status is None:
        response = getattr(error, 'response', None)
        status = getattr(response, 'status_code', None)
    return status if isinstance(status, int) else None


def _error_text(error) -> str:
    parts = [str(error)]

    response = getattr(error, 'response', None)
    body = getattr(response, 'text', None)
    if isinstance(body, str):
        parts.append(body)

    payload = getattr(error, 'payload', None)
    if isinstance(payload, ApiEnvelope):
        parts.append(payload.message)
        parts.extend(payload.errors)

    return ' '.join(parts)


def is_identifier_rejection(error) -> bool:
    """
    Guess whether the API refused a write because of the id format.

    The API answers 404 for unknown ids and a validation message mentioning
    "invalid length" or "UUID" for ids it cannot parse.
    """
    if _status_code(error) == 404:
        return True
    text = _error_text(error).lower()
    return any(marker in text for marker in IDENTIFIER_ERROR_MARKERS)


@dataclass
class StoredEntity:
    """Result of a reconciled write."""
    data: dict = field(default_factory=dict)
    fallback: bool = False
    skipped: bool = False
    message: str = ''

    def to_dict(self) -> dict:
        return {
            'success': True,
            'data': self.data,
            'fallback': self.fallback,
            'skipped': self.skipped,
            'message': self.message,
        }


class CollegeCacheReconciler:
    """
    Remote-first college writes with a local fallback cache.

    Usage:
        reconciler = CollegeCacheReconciler()
        result = reconciler.create({'name': 'X', 'status': 'ACTIVE', 'type': 'OTHER'})
        if result.fallback:
            ...  # only stored locally for now
    """

    def __init__(
        self,
        client: Optional[CrmApiClient] = None,
        store: Optional[CacheStore] = None,
        clock: Optional[Callable] = None,
    ):
        self.client = client or CrmApiClient()
        self.store = store if store is not None else ModelCacheStore()
        self.clock = clock or timezone.now

    def _now(self) -> str:
        return self.clock().isoformat()

    # Cache helpers

    def _find_entry(self, entity_id) -> Optional[CacheEntry]:
        try:
            entry = self.store.get(str(entity_id))
            if entry is not None:
                return entry
            for candidate in self.store.list():
                if ids_match(candidate.data.get('id'), entity_id):
                    return candidate
        except CACHE_ERRORS as e:
            logger.warning(f"College cache lookup for {entity_id} failed, treating as miss: {e}")
        return None

    def _merge_into_cache(
        self,
        entity_id,
        fields: dict,
        origin: Optional[str] = None,
        pending_sync: Optional[bool] = None,
    ) -> Optional[CacheEntry]:
        """Read-merge-write an existing entry; None if it is not cached."""
        for _ in range(MAX_MERGE_ATTEMPTS):
            entry = self._find_entry(entity_id)
            if entry is None:
                return None

            merged = {**entry.data, **fields, 'id': entry.data['id']}
            try:
                return self.store.put(
                    merged,
                    origin=origin or entry.origin,
                    pending_sync=entry.pending_sync if pending_sync is None else pending_sync,
                    expected_version=entry.version,
                )
            except StaleCacheWrite:
                logger.debug(f"College {entity_id} changed while merging, retrying")
            except CACHE_ERRORS as e:
                logger.warning(f"College cache write for {entity_id} failed: {e}")
                return None

        logger.warning(f"Gave up merging college {entity_id} after {MAX_MERGE_ATTEMPTS} conflicts")
        return None

    def _write_through(self, record: dict) -> None:
        """Mirror a record the API returned; existing entries are merged."""
        if self._merge_into_cache(record['id'], record, origin=ORIGIN_REMOTE, pending_sync=False):
            logger.debug(f"Updated cached college {record['id']}")
            return
        try:
            self.store.put(record, origin=ORIGIN_REMOTE, pending_sync=False)
            logger.debug(f"Cached college {record['id']} for fallback updates")
        except StaleCacheWrite:
            # Someone cached it first; merge on top of theirs
            self._merge_into_cache(record['id'], record, origin=ORIGIN_REMOTE, pending_sync=False)
        except CACHE_ERRORS as e:
            logger.warning(f"Could not cache college {record['id']} (non-critical): {e}")

    # Operations

    def create(self, college_data: dict) -> StoredEntity:
        """
        Create a college remotely, falling back to the local cache.

        Raises:
            RemoteWriteError: neither the API nor the cache accepted the write
        """
        try:
            envelope = self.client.create_college(college_data)
        except REMOTE_ERRORS as e:
            logger.warning(f"Remote college create failed, storing locally: {e}")
            return self._create_locally(college_data, e)

        record = envelope.record or {}
        if record.get('id') not in (None, ''):
            self._write_through(record)
        else:
            logger.warning("Remote create returned no college id; not cached")

        return StoredEntity(data=record, message=envelope.message or 'College created successfully')

    def _create_locally(self, college_data: dict, error) -> StoredEntity:
        now = self._now()
        record = {
            **college_data,
            'id': generate_college_id(),
            'createdAt': now,
            'updatedAt': now,
        }
        try:
            entry = self.store.put(record, origin=ORIGIN_LOCAL, pending_sync=True)
        except CACHE_ERRORS as e:
            logger.error(f"Local college create failed too: {e}")
            raise RemoteWriteError(
                f"College could not be created remotely ({error}) or locally ({e})"
            ) from e

        logger.info(f"College {record['id']} created in local cache, pending sync")
        return StoredEntity(data=entry.data, fallback=True, message='College created successfully')

    def update(self, college_id, fields: dict) -> StoredEntity:
        """
        Update a college remotely, falling back to the local cache.

        When the API rejects the id but still returns the college, the
        update is retried once before the cache is used. An id-format
        rejection for a college that is not cached is reported as skipped
        rather than failed.

        Raises:
            RemoteWriteError: the API failed for another reason and the
                college is not cached
        """
        try:
            envelope = self.client.update_college(college_id, fields)
        except REMOTE_ERRORS as e:
            envelope = self._retry_if_exists(college_id, fields, e)
            if envelope is None:
                return self._update_locally(college_id, fields, e)

        record = envelope.record or {}
        if record.get('id') not in (None, ''):
            self._merge_into_cache(record['id'], record, origin=ORIGIN_REMOTE, pending_sync=False)

        return StoredEntity(data=record, message=envelope.message or 'College updated successfully')

    def _retry_if_exists(self, college_id, fields: dict, error) -> Optional[ApiEnvelope]:
        """Retry an id-rejected update once if the API can still read the college."""
        if not is_identifier_rejection(error):
            return None

        try:
            existing = self.client.get_college(college_id)
            if not existing.success or existing.record is None:
                return None
            logger.info(f"College {college_id} exists remotely, retrying update")
            return self.client.update_college(college_id, fields)
        except REMOTE_ERRORS as e:
            logger.debug(f"Retry of college {college_id} update failed: {e}")
            return None

    def _update_locally(self, college_id, fields: dict, error) -> StoredEntity:
        identifier_rejected = is_identifier_rejection(error)
        logger.warning(
            f"Remote update of college {college_id} failed "
            f"({'id rejected' if identifier_rejected else 'remote error'}): {error}"
        )

        entry = self._merge_into_cache(
            college_id,
            {**fields, 'updatedAt': self._now()},
            pending_sync=True,
        )
        if entry is not None:
            logger.info(f"College {college_id} updated in local cache")
            return StoredEntity(data=entry.data, fallback=True, message='College updated successfully')

        if identifier_rejected:
            logger.info(
                f"College {college_id} is not cached; skipping update, it will sync on next fetch"
            )
            return StoredEntity(
                data={'id': college_id},
                skipped=True,
                message='College update skipped - will be synced on next API call',
            )

        raise RemoteWriteError(
            f"College {college_id} could not be updated: {error}",
            status_code=_status_code(error),
        ) from error

    def find_by_id(self, college_id) -> Optional[dict]:
        """Cached college by id, or None."""
        entry = self._find_entry(college_id)
        return entry.data if entry else None

    def delete(self, college_id) -> StoredEntity:
        """
        Delete a college remotely and drop the cached copy.

        A college that only exists locally is deleted from the cache alone.
        """
        try:
            envelope = self.client.delete_college(college_id)
            message = envelope.message
        except REMOTE_ERRORS as e:
            entry = self._find_entry(college_id)
            if entry is None or entry.origin != ORIGIN_LOCAL or not is_identifier_rejection(e):
                raise
            message = 'College deleted from local cache'

        entry = self._find_entry(college_id)
        if entry is not None:
            try:
                self.store.delete(entry.entity_id)
            except CACHE_ERRORS as e:
                logger.warning(f"Could not drop cached college {college_id}: {e}")

        return StoredEntity(data={'id': college_id}, message=message or 'College deleted successfully')

    def list_cached(
        self,
        search: Optional[str] = None,
        status: Optional[str] = None,
        college_type: Optional[str] = None,
        page: int = 1,
        limit: int = 10,
    ) -> dict:
        """
        Filter and paginate the cache in the API's list envelope shape.

        Used when the remote list call fails. Newest first.
        """
        page = max(int(page or 1), 1)
        limit = max(int(limit or 10), 1)

        try:
            colleges = [entry.data for entry in self.store.list()]
        except CACHE_ERRORS as e:
            logger.warning(f"Reading college cache failed, returning empty list: {e}")
            colleges = []

        if search:
            term = search.lower()
            colleges = [
                c for c in colleges
                if term in str(c.get('name', '')).lower()
                or term in str(c.get('contactEmail') or '').lower()
            ]
        if status and status != 'all':
            colleges = [c for c in colleges if c.get('status') == status]
        if college_type and college_type != 'all':
            colleges = [c for c in colleges if c.get('type') == college_type]

        colleges.sort(key=lambda c: str(c.get('createdAt') or ''), reverse=True)

        total = len(colleges)
        start = (page - 1) * limit
        end = start + limit
        return {
            'success': True,
            'data': colleges[start:end],
            'pagination': {
                'page': page,
                'limit': limit,
                'total': total,
                'totalPages': -(-total // limit),
                'hasNext': end < total,
                'hasPrev': page > 1,
            },
        }

    def pending(self) -> List[CacheEntry]:
        """Entries whose latest state the API has not seen."""
        try:
            return [entry for entry in self.store.list() if entry.pending_sync]
        except CACHE_ERRORS as e:
            logger.warning(f"Reading college cache failed: {e}")
            return []

    def _rekey(self, entry: CacheEntry, record: dict) -> bool:
        """
        Move a pushed local entry under its remote id.

        The remote copy is stored before the local one is removed. Changes
        made to the local entry meanwhile are carried over as a pending
        update; False is returned in that case.
        """
        self.store.put(record, origin=ORIGIN_REMOTE, pending_sync=False)

        expected_version = entry.version
        for _ in range(MAX_MERGE_ATTEMPTS):
            try:
                self.store.delete(entry.entity_id, expected_version=expected_version)
                return expected_version == entry.version
            except StaleCacheWrite:
                latest = self.store.get(entry.entity_id)
                if latest is None:
                    return expected_version == entry.version
                changes = {k: v for k, v in latest.data.items() if k not in LOCAL_ONLY_FIELDS}
                self._merge_into_cache(record['id'], changes, origin=ORIGIN_REMOTE, pending_sync=True)
                expected_version = latest.version

        raise StaleCacheWrite(f"College {entry.entity_id} kept changing while being re-keyed")

    def reconcile_pending(self) -> dict:
        """
        Push pending entries to the API.

        Locally created colleges are created remotely and re-keyed under the
        id the API assigns; other pending entries are sent as updates.
        Failures stay pending for the next run, as do entries written
        locally while their push was in flight.
        """
        pushed = 0
        failed = 0

        for entry in self.pending():
            payload = {k: v for k, v in entry.data.items() if k not in LOCAL_ONLY_FIELDS}
            try:
                if entry.origin == ORIGIN_LOCAL:
                    envelope = self.client.create_college(payload)
                else:
                    envelope = self.client.update_college(entry.entity_id, payload)
            except REMOTE_ERRORS as e:
                logger.warning(f"Reconciling college {entry.entity_id} failed, will retry: {e}")
                failed += 1
                continue

            record = envelope.record or {}
            if record.get('id') in (None, ''):
                logger.warning(f"API returned no id while reconciling college {entry.entity_id}")
                failed += 1
                continue

            try:
                if str(record['id']) == entry.entity_id:
                    self.store.put(
                        record,
                        origin=ORIGIN_REMOTE,
                        pending_sync=False,
                        expected_version=entry.version,
                    )
                elif not self._rekey(entry, record):
                    raise StaleCacheWrite(f"College {entry.entity_id} changed while being created")
            except StaleCacheWrite as e:
                logger.info(f"{e}; newer local state left pending")
                failed += 1
                continue
            except CACHE_ERRORS as e:
                logger.warning(f"College {entry.entity_id} pushed but cache not updated: {e}")
                failed += 1
                continue

            logger.info(f"Reconciled college {entry.entity_id} -> {record['id']}")
            pushed += 1

        return {'pushed': pushed, 'failed': failed}
