"""Optimistic client cache tests."""

from __future__ import annotations

import pytest

from cloud_portal.client import OptimisticCache


def _env(env_id: str, status: str = 'READY') -> dict:
    return {'id': env_id, 'status': status}


@pytest.fixture
def cache(clock):
    return OptimisticCache([_env('env_1'), _env('env_2')], clock=clock)


# ── Test: apply ──────────────────────────────────────────────────


def test_apply_create_shows_item_and_records_entry(cache, clock):
    update_id = cache.apply_create(_env('tmp-1', 'REQUESTED'))

    assert update_id == 'create-1'
    assert [i['id'] for i in cache.items] == ['env_1', 'env_2', 'tmp-1']
    entry = cache.pending[0]
    assert entry.kind == 'create'
    assert entry.item_id == 'tmp-1'
    assert entry.created_at == clock.now
    assert entry.confidence == 0.95


def test_apply_update_replaces_in_place(cache):
    cache.apply_update('env_1', _env('env_1', 'PAUSING'), _env('env_1'))
    assert cache.get('env_1')['status'] == 'PAUSING'
    assert [i['id'] for i in cache.items] == ['env_1', 'env_2']


def test_apply_delete_hides_item(cache):
    cache.apply_delete('env_2', _env('env_2'))
    assert cache.get('env_2') is None


# ── Test: commit / rollback ──────────────────────────────────────


def test_commit_adopts_authoritative_payload(cache):
    update_id = cache.apply_create(_env('tmp-1', 'REQUESTED'))
    server = {'id': 'tmp-1', 'status': 'VALIDATING'}

    assert cache.commit(update_id, authoritative=server) is True

    assert cache.get('tmp-1') == server
    assert cache.pending == []
    assert cache.success_rate == 0.96


def test_commit_unknown_returns_false(cache):
    assert cache.commit('create-99') is False
    assert cache.success_rate == 0.95


def test_rollback_create_removes_item(cache):
    update_id = cache.apply_create(_env('tmp-1'))
    assert cache.rollback(update_id) is True
    assert cache.get('tmp-1') is None
    assert cache.success_rate == 0.90


def test_rollback_update_restores_snapshot(cache):
    update_id = cache.apply_update('env_1', _env('env_1', 'PAUSING'), _env('env_1'))
    cache.rollback(update_id)
    assert cache.get('env_1')['status'] == 'READY'


def test_rollback_delete_restores_item(cache):
    update_id = cache.apply_delete('env_2', _env('env_2'))
    cache.rollback(update_id)
    assert cache.get('env_2') == _env('env_2')
    assert cache.rollback(update_id) is False


def test_rollback_delete_restores_original_position(cache):
    update_id = cache.apply_delete('env_1', _env('env_1'))
    assert [i['id'] for i in cache.items] == ['env_2']

    cache.rollback(update_id)

    assert [i['id'] for i in cache.items] == ['env_1', 'env_2']


def test_rollback_of_older_update_keeps_newer_committed_value(cache):
    first = cache.apply_update('env_1', _env('env_1', 'PAUSING'), _env('env_1'))
    second = cache.apply_update(
        'env_1', _env('env_1', 'RESUMING'), _env('env_1', 'PAUSING'),
    )

    cache.rollback(first)
    assert cache.get('env_1')['status'] == 'RESUMING'

    cache.commit(second)
    assert cache.get('env_1')['status'] == 'RESUMING'
    assert cache.pending == []


def test_rollback_of_older_update_keeps_newer_delete(cache):
    first = cache.apply_update('env_2', _env('env_2', 'PAUSING'), _env('env_2'))
    cache.apply_delete('env_2', _env('env_2', 'PAUSING'))

    cache.rollback(first)

    assert cache.get('env_2') is None


# ── Test: success rate ───────────────────────────────────────────


def test_success_rate_is_capped_and_floored(cache):
    for _ in range(10):
        cache.commit(cache.apply_create(_env('x')))
    assert cache.success_rate == 0.99

    for _ in range(10):
        cache.rollback(cache.apply_create(_env('y')))
    assert cache.success_rate == 0.70
    assert cache.error_probability == 0.3
    assert cache.should_show_optimistic() is False


def test_one_rollback_keeps_optimistic_rendering(cache):
    cache.rollback(cache.apply_create(_env('tmp-1')))
    assert cache.should_show_optimistic() is True
    assert cache.error_probability == 0.1


# ── Test: expiry and resync ──────────────────────────────────────


def test_expire_rolls_back_old_entries(cache, clock):
    old = cache.apply_create(_env('tmp-old'))
    clock.advance(20)
    fresh = cache.apply_create(_env('tmp-new'))
    clock.advance(10)

    expired = cache.expire()

    assert expired == [old]
    assert cache.get('tmp-old') is None
    assert cache.get('tmp-new') is not None
    assert [e.update_id for e in cache.pending] == [fresh]


def test_expire_with_custom_timeout(cache, clock):
    cache.apply_create(_env('tmp-1'))
    assert cache.expire(now=clock.advance(5), timeout_seconds=10) == []
    assert len(cache.expire(now=clock.advance(5), timeout_seconds=10)) == 1


def test_replace_all_keeps_pending_entries_visible(cache):
    cache.apply_create(_env('tmp-1', 'REQUESTED'))
    cache.apply_update('env_1', _env('env_1', 'PAUSING'), _env('env_1'))
    cache.apply_delete('env_2', _env('env_2'))

    cache.replace_all([_env('env_1'), _env('env_2'), _env('env_3')])

    assert [i['id'] for i in cache.items] == ['env_1', 'env_3', 'tmp-1']
    assert cache.get('env_1')['status'] == 'PAUSING'


def test_custom_key_for_objects(clock):
    class Item:
        def __init__(self, ref: str) -> None:
            self.ref = ref

    cache = OptimisticCache([Item('a')], key=lambda item: item.ref, clock=clock)
    cache.apply_delete('a', Item('a'))
    assert cache.items == []
