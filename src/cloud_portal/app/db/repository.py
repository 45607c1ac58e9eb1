"""In-memory resource repositories.

Keyed CRUD with secondary lookups by owner and status. Updates are
last-writer-wins per resource; there is no optimistic-locking token, the
state machine's transition guards reject stale or impossible jumps instead.
"""

from __future__ import annotations

import uuid
from dataclasses import fields, replace
from datetime import datetime, timezone
from typing import Any, Generic, Mapping, TypeVar

from ..models import AccountRequest, AwsAccountRef, TeamEnvironment

T = TypeVar('T')

# Fields a partial update may never touch.
_IMMUTABLE_FIELDS = frozenset({'id', 'created_at'})


class InMemoryResourceRepository(Generic[T]):
    """Dict-backed repository for frozen resource snapshots.

    Satisfies the ``ResourceRepository`` protocol from ``protocols.py``.
    Owners are resolved through the snapshot's ``owner_id`` attribute.
    """

    def __init__(self, *, id_prefix: str) -> None:
        self._id_prefix = id_prefix
        self._items: dict[str, T] = {}

    async def create(self, record: T) -> T:
        """Persist a new snapshot and assign an ID (unless one is set)."""
        record_id = getattr(record, 'id', '') or (
            f'{self._id_prefix}_{uuid.uuid4().hex[:12]}'
        )
        if record_id in self._items:
            raise ValueError(f'{self._id_prefix} {record_id!r} already exists')
        now = datetime.now(timezone.utc)
        created = replace(
            record,
            id=record_id,
            created_at=getattr(record, 'created_at', None) or now,
            updated_at=getattr(record, 'updated_at', None) or now,
        )
        self._items[record_id] = created
        return created

    async def find_by_id(self, record_id: str) -> T | None:
        return self._items.get(record_id)

    async def find_by_owner(self, owner_id: str) -> list[T]:
        """All snapshots owned by ``owner_id``, newest first."""
        return _newest_first(
            item for item in self._items.values()
            if getattr(item, 'owner_id') == owner_id
        )

    async def find_by_status(self, *statuses: str) -> list[T]:
        wanted = frozenset(statuses)
        return [
            item for item in self._items.values()
            if getattr(item, 'status') in wanted
        ]

    async def update(
        self,
        record_id: str,
        partial: Mapping[str, Any],
    ) -> T | None:
        existing = self._items.get(record_id)
        if existing is None:
            return None
        illegal = _IMMUTABLE_FIELDS.intersection(partial)
        if illegal:
            raise ValueError(f'cannot update immutable fields: {sorted(illegal)}')
        known = {f.name for f in fields(existing)}
        unknown = set(partial) - known
        if unknown:
            raise ValueError(f'unknown fields: {sorted(unknown)}')
        changes = dict(partial)
        changes.setdefault('updated_at', datetime.now(timezone.utc))
        updated = replace(existing, **changes)
        self._items[record_id] = updated
        return updated

    async def delete(self, record_id: str) -> bool:
        return self._items.pop(record_id, None) is not None

    async def list(
        self,
        *,
        owner_id: str | None = None,
        status: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[T], int]:
        """Filtered, paginated listing (newest first) plus the total count."""
        items = _newest_first(
            item for item in self._items.values()
            if (owner_id is None or getattr(item, 'owner_id') == owner_id)
            and (status is None or getattr(item, 'status') == status)
        )
        return items[offset:offset + limit], len(items)

    def clear(self) -> None:
        self._items.clear()


class InMemoryAccountRequestRepository(InMemoryResourceRepository[AccountRequest]):
    def __init__(self) -> None:
        super().__init__(id_prefix='req')


class InMemoryEnvironmentRepository(InMemoryResourceRepository[TeamEnvironment]):
    def __init__(self) -> None:
        super().__init__(id_prefix='env')

    async def find_by_team(self, team_id: str) -> list[TeamEnvironment]:
        return _newest_first(
            env for env in self._items.values() if env.team_id == team_id
        )


class InMemoryAwsAccountRepository(InMemoryResourceRepository[AwsAccountRef]):
    def __init__(self) -> None:
        super().__init__(id_prefix='acct')

    async def find_by_account_id(self, account_id: str) -> AwsAccountRef | None:
        for account in self._items.values():
            if account.account_id == account_id:
                return account
        return None


def _newest_first(items: Any) -> list[Any]:
    epoch = datetime.min.replace(tzinfo=timezone.utc)
    return sorted(
        items,
        key=lambda item: getattr(item, 'created_at', None) or epoch,
        reverse=True,
    )
