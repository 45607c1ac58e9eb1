"""Account request use cases: submit, get, list, cancel.

Submission validates the request and stores it in REQUESTED; everything
after that is driven by the reconciliation loop.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable

from ..errors import IllegalState
from ..models import AccountRequest, AccountRequestInput
from ..protocols import AccountRequestRepository
from .access import load_owned
from .state_machine import ACCOUNT_REQUEST_DELETABLE
from .validation import validate_account_request

logger = logging.getLogger(__name__)

KIND = 'account_request'


class AccountRequestService:
    def __init__(
        self,
        repo: AccountRequestRepository,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repo = repo
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def submit(
        self,
        requester_id: str,
        data: AccountRequestInput,
    ) -> AccountRequest:
        now = self._clock()
        validate_account_request(data, now=now)
        request = await self._repo.create(AccountRequest(
            id='',
            requester_id=requester_id,
            account_name=data.account_name.strip(),
            owner_email=data.owner_email,
            purpose=data.purpose,
            primary_region=data.primary_region,
            guardrails=data.guardrails,
            ttl=data.ttl,
            created_at=now,
            updated_at=now,
        ))
        logger.info(
            'Account request submitted: %s',
            request.id,
            extra={'resource_id': request.id, 'requester_id': requester_id},
        )
        return request

    async def get(self, request_id: str, requester_id: str) -> AccountRequest:
        return await load_owned(self._repo, KIND, request_id, requester_id)

    async def list(
        self,
        requester_id: str,
        *,
        status: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[AccountRequest], int]:
        return await self._repo.list(
            owner_id=requester_id, status=status, limit=limit, offset=offset,
        )

    async def cancel(self, request_id: str, requester_id: str) -> None:
        """Delete a request that has not reached a point of no return."""
        request = await self.get(request_id, requester_id)
        if request.status not in ACCOUNT_REQUEST_DELETABLE:
            raise IllegalState(
                f'Cannot delete account request in status {request.status}'
            )
        await self._repo.delete(request_id)
        logger.info(
            'Account request cancelled: %s',
            request_id,
            extra={'resource_id': request_id, 'status': request.status},
        )
