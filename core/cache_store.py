"""
Storage backends for the local college cache.

The reconciler only needs get/put/delete/list, so the store is injected:
ModelCacheStore persists to the database, InMemoryCacheStore is for tests
and one-off scripts.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional, Protocol, runtime_checkable

from django.db import IntegrityError, transaction
from django.db.models import F
from django.utils import timezone

from .models import CachedCollege

logger = logging.getLogger(__name__)

ORIGIN_REMOTE = CachedCollege.ORIGIN_REMOTE
ORIGIN_LOCAL = CachedCollege.ORIGIN_LOCAL


class CacheStoreError(Exception):
    """The local cache could not complete an operation."""


class StaleCacheWrite(CacheStoreError):
    """The entry changed (or vanished) since it was read."""


@dataclass
class CacheEntry:
    data: dict
    origin: str = ORIGIN_REMOTE
    pending_sync: bool = False
    version: int = 1

    @property
    def entity_id(self) -> str:
        return str(self.data['id'])


@runtime_checkable
class CacheStore(Protocol):
    def get(self, entity_id: str) -> Optional[CacheEntry]:
        ...

    def put(
        self,
        record: dict,
        *,
        origin: str = ORIGIN_REMOTE,
        pending_sync: bool = False,
        expected_version: Optional[int] = None,
    ) -> CacheEntry:
        """
        Insert or replace a record keyed by str(record['id']).

        With expected_version the write only happens if the stored version
        still matches, otherwise StaleCacheWrite is raised.
        """
        ...

    def delete(self, entity_id: str, expected_version: Optional[int] = None) -> bool:
        """
        Remove an entry. With expected_version a changed entry is kept and
        StaleCacheWrite is raised.
        """
        ...

    def list(self) -> List[CacheEntry]:
        ...


def _record_key(record: dict) -> str:
    if not isinstance(record, dict) or record.get('id') in (None, ''):
        raise ValueError("Cached records need an 'id'")
    return str(record['id'])


class ModelCacheStore:
    """Cache store backed by the CachedCollege table."""

    @staticmethod
    def _to_entry(row: CachedCollege) -> CacheEntry:
        if not isinstance(row.data, dict):
            raise ValueError(f"Cached college {row.entity_id} holds non-object data")
        return CacheEntry(
            data=dict(row.data),
            origin=row.origin,
            pending_sync=row.pending_sync,
            version=row.version,
        )

    def get(self, entity_id: str) -> Optional[CacheEntry]:
        row = CachedCollege.objects.filter(entity_id=str(entity_id)).first()
        return self._to_entry(row) if row else None

    def put(self, record, *, origin=ORIGIN_REMOTE, pending_sync=False, expected_version=None):
        entity_id = _record_key(record)

        try:
            with transaction.atomic():
                rows = CachedCollege.objects.filter(entity_id=entity_id)
                if expected_version is not None:
                    rows = rows.filter(version=expected_version)

                updated = rows.update(
                    data=record,
                    origin=origin,
                    pending_sync=pending_sync,
                    version=F('version') + 1,
                    updated_at=timezone.now(),
                )
                if not updated:
                    if expected_version is not None:
                        raise StaleCacheWrite(
                            f"College {entity_id} changed since version {expected_version}"
                        )
                    CachedCollege.objects.create(
                        entity_id=entity_id,
                        data=record,
                        origin=origin,
                        pending_sync=pending_sync,
                    )
        except IntegrityError as e:
            # Another worker inserted the same id between our update and create
            raise StaleCacheWrite(f"College {entity_id} was created concurrently") from e

        return self._to_entry(CachedCollege.objects.get(entity_id=entity_id))

    def delete(self, entity_id: str, expected_version: Optional[int] = None) -> bool:
        entity_id = str(entity_id)
        with transaction.atomic():
            rows = CachedCollege.objects.filter(entity_id=entity_id)
            if expected_version is not None:
                rows = rows.filter(version=expected_version)

            deleted, _ = rows.delete()
            if not deleted and expected_version is not None and \
                    CachedCollege.objects.filter(entity_id=entity_id).exists():
                raise StaleCacheWrite(f"College {entity_id} changed since version {expected_version}")
        return deleted > 0

    def list(self) -> List[CacheEntry]:
        return [self._to_entry(row) for row in CachedCollege.objects.all()]


class InMemoryCacheStore:
    """Dict-backed cache store with the same versioning rules."""

    def __init__(self):
        self._entries: Dict[str, CacheEntry] = {}
        self._lock = threading.Lock()

    def get(self, entity_id: str) -> Optional[CacheEntry]:
        with self._lock:
            entry = self._entries.get(str(entity_id))
            return self._copy(entry) if entry else None

    def put(self, record, *, origin=ORIGIN_REMOTE, pending_sync=False, expected_version=None):
        entity_id = _record_key(record)
        with self._lock:
            current = self._entries.get(entity_id)
            if expected_version is not None and (current is None or current.version != expected_version):
                raise StaleCacheWrite(f"College {entity_id} changed since version {expected_version}")

            entry = CacheEntry(
                data=dict(record),
                origin=origin,
                pending_sync=pending_sync,
                version=current.version + 1 if current else 1,
            )
            self._entries[entity_id] = entry
            return self._copy(entry)

    def delete(self, entity_id: str, expected_version: Optional[int] = None) -> bool:
        entity_id = str(entity_id)
        with self._lock:
            current = self._entries.get(entity_id)
            if current is None:
                return False
            if expected_version is not None and current.version != expected_version:
                raise StaleCacheWrite(f"College {entity_id} changed since version {expected_version}")
            del self._entries[entity_id]
            return True

    def list(self) -> List[CacheEntry]:
        with self._lock:
            return [self._copy(entry) for entry in self._entries.values()]

    @staticmethod
    def _copy(entry: CacheEntry) -> CacheEntry:
        return CacheEntry(
            data=dict(entry.data),
            origin=entry.origin,
            pending_sync=entry.pending_sync,
            version=entry.version,
        )
