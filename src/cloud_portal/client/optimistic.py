"""Optimistic client cache with adaptive success-rate tracking.

A client shows a mutation immediately and later commits it (server
acknowledged) or rolls it back (server rejected or the entry expired).
The cache keeps a running success rate: each commit nudges it up, each
rollback pulls it down, and callers use it to decide whether optimistic
rendering is worth it.

    cache = OptimisticCache(items, key=lambda env: env['id'])
    update_id = cache.apply_create({'id': 'tmp-1', 'name': 'dev'})
    ...
    cache.commit(update_id, authoritative=server_payload)
"""

from __future__ import annotations

import itertools
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Generic, Iterable, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar('T')

INITIAL_SUCCESS_RATE = 0.95
SUCCESS_STEP = 0.01
FAILURE_STEP = 0.05
SUCCESS_RATE_CEILING = 0.99
SUCCESS_RATE_FLOOR = 0.70
SHOW_OPTIMISTIC_THRESHOLD = 0.7
DEFAULT_TIMEOUT_SECONDS = 30.0

CREATE = 'create'
UPDATE = 'update'
DELETE = 'delete'


@dataclass(frozen=True, slots=True)
class OptimisticEntry(Generic[T]):
    """One pending optimistic mutation."""

    update_id: str
    kind: str
    item_id: str
    payload: T
    rollback_snapshot: T | None
    created_at: datetime
    confidence: float
    position: int | None = None  # index held when a delete was applied


def _default_key(item: Any) -> str:
    if isinstance(item, dict):
        return item['id']
    return item.id


class OptimisticCache(Generic[T]):
    """Ordered item collection plus the optimistic entries applied to it.

    Args:
        items: Initial authoritative items.
        key: Extracts the identity of an item. Defaults to ``item['id']``
            for mappings and ``item.id`` otherwise.
        clock: Time source for entry timestamps and expiry.
    """

    def __init__(
        self,
        items: Iterable[T] = (),
        *,
        key: Callable[[T], str] = _default_key,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._key = key
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._items: list[T] = list(items)
        self._pending: dict[str, OptimisticEntry[T]] = {}
        self._seq = itertools.count(1)
        self.success_rate = INITIAL_SUCCESS_RATE

    # ── Views ────────────────────────────────────────────────────────

    @property
    def items(self) -> list[T]:
        return list(self._items)

    @property
    def pending(self) -> list[OptimisticEntry[T]]:
        return list(self._pending.values())

    @property
    def error_probability(self) -> float:
        return round(1.0 - self.success_rate, 2)

    def should_show_optimistic(self) -> bool:
        return self.success_rate > SHOW_OPTIMISTIC_THRESHOLD

    def get(self, item_id: str) -> T | None:
        index = self._index_of(item_id)
        return None if index is None else self._items[index]

    # ── Mutations ────────────────────────────────────────────────────

    def apply_create(self, payload: T) -> str:
        item_id = self._key(payload)
        self._items.append(payload)
        return self._record(CREATE, item_id, payload, None)

    def apply_update(self, item_id: str, new_payload: T, rollback_snapshot: T) -> str:
        self._replace(item_id, new_payload)
        return self._record(UPDATE, item_id, new_payload, rollback_snapshot)

    def apply_delete(self, item_id: str, rollback_snapshot: T) -> str:
        position = self._index_of(item_id)
        self._remove(item_id)
        return self._record(
            DELETE, item_id, rollback_snapshot, rollback_snapshot, position=position,
        )

    def commit(self, update_id: str, authoritative: T | None = None) -> bool:
        """Settle an entry as acknowledged. Returns False if unknown."""
        entry = self._pending.pop(update_id, None)
        if entry is None:
            return False
        if authoritative is not None and entry.kind != DELETE:
            self._replace(entry.item_id, authoritative)
        self.success_rate = round(
            min(SUCCESS_RATE_CEILING, self.success_rate + SUCCESS_STEP), 2,
        )
        return True

    def rollback(self, update_id: str) -> bool:
        """Undo an entry. Returns False if unknown.

        Callbacks may settle out of order: newer entries still pending for
        the same item are replayed on top of the restored snapshot.
        """
        entry = self._pending.get(update_id)
        if entry is None:
            return False
        newer = self._newer_entries(entry)
        del self._pending[update_id]

        self._undo(entry)
        for pending in newer:
            self._reapply(pending)

        self.success_rate = round(
            max(SUCCESS_RATE_FLOOR, self.success_rate - FAILURE_STEP), 2,
        )
        logger.info(
            'Optimistic %s rolled back for %s',
            entry.kind,
            entry.item_id,
            extra={'update_id': update_id, 'success_rate': self.success_rate},
        )
        return True

    def expire(
        self,
        now: datetime | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
    ) -> list[str]:
        """Roll back entries older than the timeout; return their ids."""
        cutoff = (now or self._clock()) - timedelta(seconds=timeout_seconds)
        expired = [
            entry.update_id
            for entry in self._pending.values()
            if entry.created_at <= cutoff
        ]
        for update_id in expired:
            self.rollback(update_id)
        return expired

    def replace_all(self, items: Iterable[T]) -> None:
        """Resync with the server collection, keeping pending entries visible."""
        self._items = list(items)
        for entry in self._pending.values():
            self._reapply(entry)

    # ── Private helpers ──────────────────────────────────────────────

    def _record(
        self,
        kind: str,
        item_id: str,
        payload: T,
        snapshot: T | None,
        *,
        position: int | None = None,
    ) -> str:
        update_id = f'{kind}-{next(self._seq)}'
        self._pending[update_id] = OptimisticEntry(
            update_id=update_id,
            kind=kind,
            item_id=item_id,
            payload=payload,
            rollback_snapshot=snapshot,
            created_at=self._clock(),
            confidence=self.success_rate,
            position=position,
        )
        return update_id

    def _newer_entries(self, entry: OptimisticEntry[T]) -> list[OptimisticEntry[T]]:
        """Pending entries for the same item applied after ``entry``."""
        ids = list(self._pending)
        later = ids[ids.index(entry.update_id) + 1:]
        return [
            self._pending[update_id]
            for update_id in later
            if self._pending[update_id].item_id == entry.item_id
        ]

    def _undo(self, entry: OptimisticEntry[T]) -> None:
        if entry.kind == CREATE:
            self._remove(entry.item_id)
        elif entry.kind == UPDATE:
            self._replace(entry.item_id, entry.rollback_snapshot)
        elif self._index_of(entry.item_id) is None:
            if entry.position is None:
                self._items.append(entry.rollback_snapshot)
            else:
                self._items.insert(entry.position, entry.rollback_snapshot)

    def _reapply(self, entry: OptimisticEntry[T]) -> None:
        if entry.kind == CREATE:
            if self._index_of(entry.item_id) is None:
                self._items.append(entry.payload)
        elif entry.kind == UPDATE:
            self._replace(entry.item_id, entry.payload)
        else:
            self._remove(entry.item_id)

    def _index_of(self, item_id: str) -> int | None:
        for index, item in enumerate(self._items):
            if self._key(item) == item_id:
                return index
        return None

    def _replace(self, item_id: str, item: T) -> None:
        index = self._index_of(item_id)
        if index is not None:
            self._items[index] = item

    def _remove(self, item_id: str) -> None:
        self._items = [i for i in self._items if self._key(i) != item_id]
