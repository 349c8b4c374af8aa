import pytest

from core.cache_store import (
    ORIGIN_LOCAL,
    CacheStore,
    InMemoryCacheStore,
    ModelCacheStore,
    StaleCacheWrite,
)
from core.models import CachedCollege


@pytest.fixture(params=['model', 'memory'])
def store(request):
    if request.param == 'model':
        request.getfixturevalue('db')
        return ModelCacheStore()
    return InMemoryCacheStore()


def test_stores_satisfy_protocol(store):
    assert isinstance(store, CacheStore)


def test_put_then_get(store):
    entry = store.put({'id': 42, 'name': 'Sunrise'}, origin=ORIGIN_LOCAL, pending_sync=True)

    assert entry.entity_id == '42'
    assert entry.version == 1
    fetched = store.get('42')
    assert fetched.data == {'id': 42, 'name': 'Sunrise'}
    assert fetched.origin == ORIGIN_LOCAL
    assert fetched.pending_sync is True


def test_put_same_id_replaces_entry(store):
    store.put({'id': 'c1', 'name': 'Old'})
    entry = store.put({'id': 'c1', 'name': 'New'})

    assert entry.version == 2
    assert [e.data['name'] for e in store.list()] == ['New']


def test_put_with_stale_version_is_rejected(store):
    first = store.put({'id': 'c1', 'name': 'A'})
    store.put({'id': 'c1', 'name': 'B'}, expected_version=first.version)

    with pytest.raises(StaleCacheWrite):
        store.put({'id': 'c1', 'name': 'C'}, expected_version=first.version)

    assert store.get('c1').data['name'] == 'B'


def test_put_expected_version_for_missing_entry(store):
    with pytest.raises(StaleCacheWrite):
        store.put({'id': 'ghost'}, expected_version=1)


def test_put_requires_id(store):
    with pytest.raises(ValueError):
        store.put({'name': 'No id'})


def test_delete(store):
    store.put({'id': 'c1'})

    assert store.delete('c1') is True
    assert store.delete('c1') is False
    assert store.get('c1') is None


def test_delete_with_stale_version_keeps_entry(store):
    first = store.put({'id': 'c1', 'name': 'A'})
    store.put({'id': 'c1', 'name': 'B'})

    with pytest.raises(StaleCacheWrite):
        store.delete('c1', expected_version=first.version)

    assert store.get('c1').data['name'] == 'B'
    assert store.delete('c1', expected_version=first.version + 1) is True
    assert store.delete('c1', expected_version=1) is False


def test_memory_store_returns_copies():
    store = InMemoryCacheStore()
    entry = store.put({'id': 'c1', 'name': 'A'})
    entry.data['name'] = 'mutated'

    assert store.get('c1').data['name'] == 'A'


@pytest.mark.django_db
def test_model_store_rejects_corrupt_rows():
    CachedCollege.objects.create(entity_id='bad', data=['not', 'a', 'dict'])

    with pytest.raises(ValueError):
        ModelCacheStore().get('bad')
