"""Linked AWS account use cases: link, secure with guardrails, unlink."""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Callable

from ..errors import AdapterError, Conflict, IllegalState
from ..models import AwsAccountRef, GuardrailParams, LinkAccountInput, changed_fields
from ..protocols import AwsAccountRepository, GuardrailController
from .access import load_owned
from .state_machine import transition_aws_account
from .validation import validate_link_account

logger = logging.getLogger(__name__)

KIND = 'aws_account'

# Statuses from which guardrails may be (re)applied.
_SECURABLE = frozenset({'linked', 'error'})


class AwsAccountService:
    def __init__(
        self,
        repo: AwsAccountRepository,
        guardrails: GuardrailController,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repo = repo
        self._guardrails = guardrails
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    async def link(self, owner_id: str, data: LinkAccountInput) -> AwsAccountRef:
        validate_link_account(data)
        if await self._repo.find_by_account_id(data.account_id) is not None:
            raise Conflict(f'AWS account {data.account_id} is already linked')
        now = self._clock()
        account = await self._repo.create(AwsAccountRef(
            id='',
            owner_id=owner_id,
            account_id=data.account_id,
            account_name=data.account_name.strip(),
            role_arn=data.role_arn,
            owner_email=data.owner_email,
            created_at=now,
            updated_at=now,
        ))
        logger.info(
            'AWS account linked: %s',
            data.account_id,
            extra={'resource_id': account.id, 'owner_id': owner_id},
        )
        return account

    async def get(self, account_ref_id: str, requester_id: str) -> AwsAccountRef:
        return await load_owned(self._repo, KIND, account_ref_id, requester_id)

    async def list(
        self,
        requester_id: str,
        *,
        status: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[AwsAccountRef], int]:
        return await self._repo.list(
            owner_id=requester_id, status=status, limit=limit, offset=offset,
        )

    async def secure(
        self,
        account_ref_id: str,
        requester_id: str,
        params: GuardrailParams,
        *,
        primary_region: str | None = None,
    ) -> AwsAccountRef:
        """Submit a guardrail claim and move the account to guardrailing.

        A claim failure marks the account ``error`` and re-raises.
        """
        account = await self.get(account_ref_id, requester_id)
        if account.status not in _SECURABLE:
            raise IllegalState(
                f'Cannot apply guardrails to AWS account in status {account.status}'
            )

        try:
            claim = await self._guardrails.create_claim(
                account.account_id,
                account.account_name,
                account.role_arn,
                account.owner_email,
                params,
                primary_region=primary_region,
            )
        except AdapterError as e:
            message = f'Failed to create guardrail claim: {e.message}'
            if account.status == 'linked':
                failed = transition_aws_account(
                    account, 'error', now=self._clock(), error_message=message,
                )
            else:
                failed = replace(account, error_message=message, updated_at=self._clock())
            await self._repo.update(account.id, changed_fields(account, failed))
            raise

        after = transition_aws_account(
            account, 'guardrailing', now=self._clock(), claim_name=claim.name,
        )
        updated = await self._repo.update(account.id, changed_fields(account, after))
        logger.info(
            'Guardrail claim submitted for AWS account %s',
            account.account_id,
            extra={'resource_id': account.id, 'claim_name': claim.name},
        )
        return updated or after

    async def unlink(self, account_ref_id: str, requester_id: str) -> None:
        account = await self.get(account_ref_id, requester_id)
        if account.guardrail_claim_name:
            await self._guardrails.delete_claim(account.guardrail_claim_name)
        await self._repo.delete(account.id)
        logger.info(
            'AWS account unlinked: %s',
            account.account_id,
            extra={'resource_id': account.id},
        )
