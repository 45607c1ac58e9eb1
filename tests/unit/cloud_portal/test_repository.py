"""In-memory resource repository tests."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest

from cloud_portal.app.db import (
    InMemoryAccountRequestRepository,
    InMemoryAwsAccountRepository,
    InMemoryEnvironmentRepository,
)
from cloud_portal.app.models import AccountRequest, AwsAccountRef, TeamEnvironment, changed_fields
from cloud_portal.app.protocols import ResourceRepository
from cloud_portal.app.provisioning.state_machine import start_validation


def _t(seconds: int) -> datetime:
    return datetime(2026, 3, 2, 9, 0, 0, tzinfo=UTC) + timedelta(seconds=seconds)


def _request(owner: str = 'user-1', created: int = 0, **overrides) -> AccountRequest:
    defaults = dict(
        id='',
        requester_id=owner,
        account_name='payments-dev',
        owner_email='owner@example.com',
        purpose='development',
        primary_region='us-east-1',
        created_at=_t(created),
        updated_at=_t(created),
    )
    defaults.update(overrides)
    return AccountRequest(**defaults)


@pytest.fixture
def repo() -> InMemoryAccountRequestRepository:
    return InMemoryAccountRequestRepository()


def test_satisfies_protocols(repo):
    assert isinstance(repo, ResourceRepository)
    assert isinstance(InMemoryAwsAccountRepository(), ResourceRepository)
    assert isinstance(InMemoryEnvironmentRepository(), ResourceRepository)


@pytest.mark.asyncio
async def test_create_generates_prefixed_id(repo):
    created = await repo.create(_request())
    assert created.id.startswith('req_')
    assert await repo.find_by_id(created.id) == created


@pytest.mark.asyncio
async def test_create_stamps_missing_timestamps(repo):
    created = await repo.create(_request(created_at=None, updated_at=None))
    assert created.created_at is not None
    assert created.updated_at is not None


@pytest.mark.asyncio
async def test_create_rejects_duplicate_explicit_id(repo):
    await repo.create(_request(id='req_fixed'))
    with pytest.raises(ValueError, match='already exists'):
        await repo.create(_request(id='req_fixed'))


@pytest.mark.asyncio
async def test_find_by_owner_newest_first(repo):
    older = await repo.create(_request(created=0))
    newer = await repo.create(_request(created=10))
    await repo.create(_request(owner='user-2'))
    assert [r.id for r in await repo.find_by_owner('user-1')] == [newer.id, older.id]


@pytest.mark.asyncio
async def test_find_by_status(repo):
    a = await repo.create(_request())
    b = await repo.create(_request(status='CREATING'))
    await repo.create(_request(status='READY'))
    found = await repo.find_by_status('REQUESTED', 'CREATING')
    assert {r.id for r in found} == {a.id, b.id}


@pytest.mark.asyncio
async def test_update_applies_partial_and_returns_snapshot(repo):
    created = await repo.create(_request())
    after = start_validation(created, now=_t(5))
    updated = await repo.update(created.id, changed_fields(created, after))
    assert updated.status == 'VALIDATING'
    assert updated.updated_at == _t(5)
    assert (await repo.find_by_id(created.id)).status == 'VALIDATING'


@pytest.mark.asyncio
async def test_update_missing_returns_none(repo):
    assert await repo.update('req_missing', {'status': 'VALIDATING'}) is None


@pytest.mark.asyncio
async def test_update_rejects_immutable_and_unknown_fields(repo):
    created = await repo.create(_request())
    with pytest.raises(ValueError, match='immutable'):
        await repo.update(created.id, {'id': 'other'})
    with pytest.raises(ValueError, match='unknown'):
        await repo.update(created.id, {'colour': 'blue'})


@pytest.mark.asyncio
async def test_delete(repo):
    created = await repo.create(_request())
    assert await repo.delete(created.id) is True
    assert await repo.delete(created.id) is False
    assert await repo.find_by_id(created.id) is None


@pytest.mark.asyncio
async def test_list_filters_and_paginates(repo):
    for i in range(5):
        await repo.create(_request(created=i))
    await repo.create(_request(status='READY', created=9))
    await repo.create(_request(owner='user-2'))

    items, total = await repo.list(owner_id='user-1', status='REQUESTED', limit=2, offset=1)
    assert total == 5
    assert len(items) == 2
    assert [i.created_at for i in items] == [_t(3), _t(2)]


@pytest.mark.asyncio
async def test_environment_repo_find_by_team():
    repo = InMemoryEnvironmentRepository()
    env = await repo.create(TeamEnvironment(
        id='',
        name='feature-x',
        team_id='team-1',
        template_id='dev-standard',
        template_version='1.2.0',
        aws_account_id='123456789012',
        creator_id='user-1',
    ))
    assert env.id.startswith('env_')
    assert [e.id for e in await repo.find_by_team('team-1')] == [env.id]
    assert await repo.find_by_team('team-2') == []


@pytest.mark.asyncio
async def test_aws_account_repo_find_by_account_id():
    repo = InMemoryAwsAccountRepository()
    acct = await repo.create(AwsAccountRef(
        id='',
        owner_id='user-1',
        account_id='123456789012',
        account_name='legacy-prod',
        role_arn='arn:aws:iam::123456789012:role/PortalAccess',
        owner_email='owner@example.com',
    ))
    assert (await repo.find_by_account_id('123456789012')).id == acct.id
    assert await repo.find_by_account_id('000000000000') is None


def test_changed_fields_rejects_mixed_types():
    with pytest.raises(TypeError):
        changed_fields(_request(), TeamEnvironment(
            id='e', name='n', team_id='t', template_id='x', template_version='1.0.0',
            aws_account_id='123456789012', creator_id='u',
        ))
