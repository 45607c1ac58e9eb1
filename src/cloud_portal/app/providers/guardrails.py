"""Guardrail controller adapters (Crossplane ``GuardrailedAccountClaim``).

The controller is driven by declarative claims: ``create_claim`` submits the
desired guardrail bundle for an account, ``get_claim`` returns the claim as
last observed (or None when absent) and ``delete_claim`` removes it. The
claim's native status is mapped onto pending/applied/failed by the pure
``to_guardrail_status`` function.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Mapping

from ..errors import AdapterError
from ..models import GuardrailParams
from ..protocols import ClaimHandle
from .kubernetes import (
    KubernetesAPIError,
    KubernetesCustomObjectsClient,
    KubernetesNotFoundError,
)

logger = logging.getLogger(__name__)

ADAPTER_NAME = 'guardrails'
CLAIM_KIND = 'GuardrailedAccountClaim'
CLAIM_NAME_PREFIX = 'guardrailed-aws-'
ACCOUNT_ID_LABEL = 'guardrail.platform.example.com/account-id'
MANAGED_BY_LABEL = 'app.kubernetes.io/managed-by'
MANAGED_BY = 'cloud-portal'

GUARDRAIL_STATUSES = ('pending', 'applied', 'failed')


def claim_name_for(account_id: str) -> str:
    return f'{CLAIM_NAME_PREFIX}{account_id}'


# ── Status mapping ───────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class GuardrailStatus:
    status: str
    error_message: str | None = None

    @property
    def is_applied(self) -> bool:
        return self.status == 'applied'

    @property
    def is_failed(self) -> bool:
        return self.status == 'failed'


def to_guardrail_status(claim: Mapping[str, Any]) -> GuardrailStatus:
    """Map a claim snapshot onto pending / applied / failed.

    Precedence: explicit ``guardrailsApplied``, then an explicit status
    ``errorMessage``, then Synced=True, then Synced=False with
    ReconcileError, then Ready=True, then any other False condition with a
    failure reason. Everything else is still pending.
    """
    status = claim.get('status')
    if not status:
        return GuardrailStatus('pending')

    if status.get('guardrailsApplied') is True:
        return GuardrailStatus('applied')

    if status.get('errorMessage'):
        return GuardrailStatus('failed', status['errorMessage'])

    conditions = _conditions_by_type(status)
    synced = conditions.get('Synced')
    ready = conditions.get('Ready')

    if synced and synced.get('status') == 'True':
        return GuardrailStatus('applied')

    if (
        synced
        and synced.get('status') == 'False'
        and synced.get('reason') == 'ReconcileError'
    ):
        message = synced.get('message') or 'Failed to reconcile guardrails'
        return GuardrailStatus('failed', f'Crossplane reconcile error: {message}')

    if ready and ready.get('status') == 'True':
        return GuardrailStatus('applied')

    for condition in conditions.values():
        if condition.get('status') == 'False' and _is_failure_reason(
            condition.get('reason'),
        ):
            message = condition.get('message') or condition['reason']
            return GuardrailStatus(
                'failed', f'{condition.get("type", "Condition")} failed: {message}',
            )

    return GuardrailStatus('pending')


def _conditions_by_type(status: Mapping[str, Any]) -> dict[str, Mapping[str, Any]]:
    return {
        c['type']: c
        for c in status.get('conditions') or ()
        if isinstance(c, Mapping) and c.get('type')
    }


def _is_failure_reason(reason: str | None) -> bool:
    if not reason:
        return False
    return reason.endswith('Error') or reason.endswith('Failed')


def build_claim(
    *,
    name: str,
    api_version: str,
    namespace: str,
    account_id: str,
    account_name: str,
    role_arn: str,
    owner_email: str,
    params: GuardrailParams,
    primary_region: str | None = None,
) -> dict[str, Any]:
    """Render the claim body submitted to the controller."""
    return {
        'apiVersion': api_version,
        'kind': CLAIM_KIND,
        'metadata': {
            'name': name,
            'namespace': namespace,
            'labels': {
                MANAGED_BY_LABEL: MANAGED_BY,
                ACCOUNT_ID_LABEL: account_id,
            },
        },
        'spec': {
            'accountId': account_id,
            'accountName': account_name,
            'roleArn': role_arn,
            'ownerEmail': owner_email,
            **params.claim_spec(primary_region),
        },
    }


# ── In-memory controller ─────────────────────────────────────────────


class InMemoryGuardrailController:
    """Deterministic guardrail controller for local development and tests.

    A claim reports Synced=True/Ready=True once it has been read
    ``apply_after_polls`` times; with ``fail_with`` it reports a
    ReconcileError carrying that message instead.
    """

    def __init__(
        self,
        *,
        apply_after_polls: int = 1,
        fail_with: str | None = None,
        namespace: str = 'default',
    ) -> None:
        self._apply_after_polls = max(apply_after_polls, 0)
        self._fail_with = fail_with
        self._namespace = namespace
        self._claims: dict[str, dict[str, Any]] = {}
        self._polls: dict[str, int] = {}
        self.deleted: list[str] = []

    async def create_claim(
        self,
        account_id: str,
        account_name: str,
        role_arn: str,
        owner_email: str,
        params: GuardrailParams,
        *,
        primary_region: str | None = None,
    ) -> ClaimHandle:
        name = claim_name_for(account_id)
        if name not in self._claims:
            self._claims[name] = build_claim(
                name=name,
                api_version='platform.example.com/v1alpha1',
                namespace=self._namespace,
                account_id=account_id,
                account_name=account_name,
                role_arn=role_arn,
                owner_email=owner_email,
                params=params,
                primary_region=primary_region,
            )
            self._polls[name] = 0
        return ClaimHandle(name=name)

    async def get_claim(self, claim_name: str) -> dict[str, Any] | None:
        claim = self._claims.get(claim_name)
        if claim is None:
            return None
        self._polls[claim_name] += 1
        if self._polls[claim_name] >= self._apply_after_polls:
            claim['status'] = self._settled_status()
        return claim

    async def delete_claim(self, claim_name: str) -> None:
        self._claims.pop(claim_name, None)
        self._polls.pop(claim_name, None)
        self.deleted.append(claim_name)

    def forget(self, claim_name: str) -> None:
        """Drop a claim without recording a delete, as if removed externally."""
        self._claims.pop(claim_name, None)
        self._polls.pop(claim_name, None)

    def _settled_status(self) -> dict[str, Any]:
        if self._fail_with:
            return {
                'conditions': [
                    {
                        'type': 'Synced',
                        'status': 'False',
                        'reason': 'ReconcileError',
                        'message': self._fail_with,
                    },
                ],
            }
        return {
            'conditions': [
                {'type': 'Synced', 'status': 'True', 'reason': 'ReconcileSuccess'},
                {'type': 'Ready', 'status': 'True', 'reason': 'Available'},
            ],
        }


# ── Kubernetes controller ────────────────────────────────────────────


class KubernetesGuardrailController:
    """Guardrail controller backed by the Kubernetes custom-objects API."""

    def __init__(self, client: KubernetesCustomObjectsClient) -> None:
        self._client = client

    async def create_claim(
        self,
        account_id: str,
        account_name: str,
        role_arn: str,
        owner_email: str,
        params: GuardrailParams,
        *,
        primary_region: str | None = None,
    ) -> ClaimHandle:
        name = claim_name_for(account_id)
        body = build_claim(
            name=name,
            api_version=self._client.api_version,
            namespace=self._client.namespace,
            account_id=account_id,
            account_name=account_name,
            role_arn=role_arn,
            owner_email=owner_email,
            params=params,
            primary_region=primary_region,
        )
        try:
            await self._client.create(body)
        except KubernetesAPIError as e:
            # Re-submission after an earlier attempt already created it.
            if e.status_code == 409:
                logger.info(
                    'Guardrail claim already exists: %s',
                    name,
                    extra={'adapter': ADAPTER_NAME, 'account_id': account_id},
                )
                return ClaimHandle(name=name)
            raise _adapter_error('create_claim', e) from e
        return ClaimHandle(name=name)

    async def get_claim(self, claim_name: str) -> dict[str, Any] | None:
        try:
            return await self._client.get(claim_name)
        except KubernetesNotFoundError:
            return None
        except KubernetesAPIError as e:
            raise _adapter_error('get_claim', e) from e

    async def delete_claim(self, claim_name: str) -> None:
        try:
            await self._client.delete(claim_name)
        except KubernetesNotFoundError:
            return
        except KubernetesAPIError as e:
            raise _adapter_error('delete_claim', e) from e


def _adapter_error(operation: str, error: KubernetesAPIError) -> AdapterError:
    logger.warning(
        'Guardrail %s failed: %s',
        operation,
        error,
        extra={'adapter': ADAPTER_NAME, 'status_code': error.status_code},
    )
    return AdapterError(
        ADAPTER_NAME,
        f'{operation} failed: {error.message or error.status_code}',
        retryable=error.transient,
    )
