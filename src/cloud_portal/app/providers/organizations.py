"""Account-factory adapters: AWS Organizations and a deterministic fake.

Both implement the ``AccountFactory`` protocol: ``create`` submits an
account-creation request and returns its id, ``describe_status`` reports
IN_PROGRESS, SUCCEEDED or FAILED for that id. Unknown ids are reported as
FAILED with reason ``not_found``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..errors import AdapterError
from ..protocols import AccountCreationStatus, CreateAccountResult

logger = logging.getLogger(__name__)

ADAPTER_NAME = 'organizations'
NOT_FOUND = 'not_found'


class InMemoryAccountFactory:
    """Deterministic stand-in for the account factory.

    A request reports SUCCEEDED on the ``ready_after_polls``-th status check
    (or FAILED with ``fail_with`` when set). Account ids are 12 digits,
    derived from a sequence so tests can predict them.
    """

    def __init__(
        self,
        *,
        ready_after_polls: int = 1,
        fail_with: str | None = None,
        first_account_id: int = 100000000000,
    ) -> None:
        self._ready_after_polls = max(ready_after_polls, 0)
        self._fail_with = fail_with
        self._next_account_id = first_account_id
        self._seq = 0
        self._records: dict[str, dict[str, Any]] = {}
        self.create_calls: list[tuple[str, str]] = []
        self.describe_calls: list[str] = []

    async def create(self, name: str, email: str) -> CreateAccountResult:
        self._seq += 1
        request_id = f'car-{self._seq:06d}'
        self._records[request_id] = {
            'polls': 0,
            'account_id': str(self._next_account_id + self._seq),
        }
        self.create_calls.append((name, email))
        return CreateAccountResult(request_id=request_id)

    async def describe_status(self, request_id: str) -> AccountCreationStatus:
        self.describe_calls.append(request_id)
        record = self._records.get(request_id)
        if record is None:
            return AccountCreationStatus(
                request_id=request_id, state='FAILED', failure_reason=NOT_FOUND,
            )
        record['polls'] += 1
        if record['polls'] < self._ready_after_polls:
            return AccountCreationStatus(request_id=request_id, state='IN_PROGRESS')
        if self._fail_with:
            return AccountCreationStatus(
                request_id=request_id,
                state='FAILED',
                failure_reason=self._fail_with,
            )
        return AccountCreationStatus(
            request_id=request_id,
            state='SUCCEEDED',
            account_id=record['account_id'],
        )


class OrganizationsAccountFactory:
    """Account factory backed by a boto3 ``organizations`` client.

    boto3 is synchronous; each call runs in a worker thread so the
    reconciliation loop is never blocked.
    """

    def __init__(self, client: Any) -> None:
        self._client = client

    @classmethod
    def from_session(
        cls,
        *,
        region: str = 'us-east-1',
        profile: str | None = None,
    ) -> OrganizationsAccountFactory:
        session = boto3.Session(profile_name=profile, region_name=region)
        return cls(session.client('organizations'))

    async def create(self, name: str, email: str) -> CreateAccountResult:
        response = await self._call(
            'create_account', AccountName=name, Email=email,
        )
        request_id = (response.get('CreateAccountStatus') or {}).get('Id')
        if not request_id:
            raise AdapterError(
                ADAPTER_NAME,
                'create_account response is missing CreateAccountStatus.Id',
                retryable=False,
            )
        logger.info(
            'Account creation requested: %s',
            request_id,
            extra={'adapter': ADAPTER_NAME, 'account_name': name},
        )
        return CreateAccountResult(request_id=request_id)

    async def describe_status(self, request_id: str) -> AccountCreationStatus:
        response = await self._call(
            'describe_create_account_status',
            CreateAccountRequestId=request_id,
        )
        status = response.get('CreateAccountStatus')
        if not status:
            return AccountCreationStatus(
                request_id=request_id, state='FAILED', failure_reason=NOT_FOUND,
            )
        return AccountCreationStatus(
            request_id=request_id,
            state=map_aws_state(status.get('State')),
            account_id=status.get('AccountId'),
            failure_reason=status.get('FailureReason'),
        )

    async def _call(self, method: str, **kwargs: Any) -> dict[str, Any]:
        fn = getattr(self._client, method)
        try:
            return await asyncio.to_thread(fn, **kwargs)
        except ClientError as e:
            code = e.response.get('Error', {}).get('Code', 'ClientError')
            logger.warning(
                'Organizations %s failed: %s',
                method,
                code,
                extra={'adapter': ADAPTER_NAME},
            )
            raise AdapterError(ADAPTER_NAME, f'{method} failed: {code}') from e
        except BotoCoreError as e:
            logger.warning(
                'Organizations %s failed: %s',
                method,
                e,
                extra={'adapter': ADAPTER_NAME},
            )
            raise AdapterError(ADAPTER_NAME, f'{method} failed: {e}') from e


def map_aws_state(raw: str | None) -> str:
    """Map an Organizations ``State`` string onto the adapter vocabulary."""
    state = (raw or '').upper()
    if 'FAILED' in state:
        return 'FAILED'
    if 'SUCCEEDED' in state:
        return 'SUCCEEDED'
    return 'IN_PROGRESS'
