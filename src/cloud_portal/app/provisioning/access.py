"""Owner-scoped loading shared by the use-case services."""

from __future__ import annotations

from typing import Any

from ..errors import AccessDenied, NotFound


async def load_owned(repo: Any, kind: str, resource_id: str, requester_id: str) -> Any:
    """Return the snapshot if ``requester_id`` owns it.

    Existence is checked before ownership: a missing resource is NotFound
    for everyone, an existing one owned by someone else is AccessDenied.
    """
    snapshot = await repo.find_by_id(resource_id)
    if snapshot is None:
        raise NotFound(kind, resource_id)
    if snapshot.owner_id != requester_id:
        raise AccessDenied(kind, resource_id)
    return snapshot
