"""Provisioning state machines for account requests, accounts and environments.

Account requests:
  REQUESTED -> VALIDATING -> CREATING -> GUARDRAILING -> READY
  any non-terminal state -> FAILED

Team environments:
  REQUESTED -> VALIDATING -> CREATING -> READY
  READY -> UPDATING -> READY
  READY -> PAUSING -> PAUSED -> RESUMING -> READY
  READY | PAUSED | ERROR -> DELETING -> DELETED
  ERROR -> UPDATING (retry)
  any non-terminal state -> ERROR

AWS account references:
  linked -> guardrailing -> guardrailed
  linked | guardrailing -> error -> guardrailing

Every function is pure: it never mutates the snapshot it is given and for the
same snapshot and target it either always succeeds or always raises
``InvalidStateTransition``.
"""

from __future__ import annotations

import re
from dataclasses import replace
from datetime import datetime
from types import MappingProxyType
from typing import Any, Mapping

from ..errors import InvalidStateTransition
from ..models import (
    AccountRequest,
    AwsAccountRef,
    EnvironmentParameters,
    TeamEnvironment,
)

AWS_ACCOUNT_ID_RE = re.compile(r'^\d{12}$')

# ── Account requests ─────────────────────────────────────────────────

ACCOUNT_REQUEST_TRANSITIONS: Mapping[str, frozenset[str]] = MappingProxyType(
    {
        'REQUESTED': frozenset({'VALIDATING', 'FAILED'}),
        'VALIDATING': frozenset({'CREATING', 'FAILED'}),
        'CREATING': frozenset({'GUARDRAILING', 'FAILED'}),
        'GUARDRAILING': frozenset({'READY', 'FAILED'}),
        'READY': frozenset(),
        'FAILED': frozenset(),
    }
)

ACCOUNT_REQUEST_TERMINAL = frozenset({'READY', 'FAILED'})
ACCOUNT_REQUEST_ACTIVE = frozenset(ACCOUNT_REQUEST_TRANSITIONS) - ACCOUNT_REQUEST_TERMINAL
ACCOUNT_REQUEST_DELETABLE = frozenset({'REQUESTED', 'CREATING'})

ACCOUNT_REQUEST_PROGRESS: Mapping[str, int] = MappingProxyType(
    {
        'REQUESTED': 0,
        'VALIDATING': 20,
        'CREATING': 40,
        'GUARDRAILING': 70,
        'READY': 100,
        'FAILED': 0,
    }
)

_ACCOUNT_REQUEST_MESSAGES: Mapping[str, str] = MappingProxyType(
    {
        'REQUESTED': 'Request submitted, waiting for validation...',
        'VALIDATING': 'Validating request parameters...',
        'CREATING': 'Creating AWS account via Organizations...',
        'GUARDRAILING': 'Applying security guardrails and configurations...',
        'READY': 'AWS account is ready to use!',
        'FAILED': 'Request failed',
    }
)

GUARDRAILING_WITHOUT_ACCOUNT = 'Cannot start guardrailing without AWS account ID'

# ── Team environments ────────────────────────────────────────────────

ENVIRONMENT_TRANSITIONS: Mapping[str, frozenset[str]] = MappingProxyType(
    {
        'REQUESTED': frozenset({'VALIDATING', 'ERROR'}),
        'VALIDATING': frozenset({'CREATING', 'ERROR'}),
        'CREATING': frozenset({'READY', 'ERROR'}),
        'READY': frozenset({'UPDATING', 'PAUSING', 'DELETING', 'ERROR'}),
        'UPDATING': frozenset({'READY', 'ERROR'}),
        'PAUSING': frozenset({'PAUSED', 'ERROR'}),
        'PAUSED': frozenset({'RESUMING', 'DELETING', 'ERROR'}),
        'RESUMING': frozenset({'READY', 'ERROR'}),
        'ERROR': frozenset({'UPDATING', 'DELETING'}),
        'DELETING': frozenset({'DELETED', 'ERROR'}),
        'DELETED': frozenset(),
    }
)

ENVIRONMENT_TERMINAL = frozenset({'DELETED'})

# Statuses the reconciliation loop has work to do in. READY is polled for
# health; PAUSED and ERROR wait for a user action.
ENVIRONMENT_IN_FLIGHT = frozenset(
    {
        'REQUESTED',
        'VALIDATING',
        'CREATING',
        'UPDATING',
        'PAUSING',
        'RESUMING',
        'DELETING',
    }
)

_HEALTHY_ON_READY_FROM = frozenset({'CREATING', 'RESUMING', 'UPDATING'})

ENVIRONMENT_PROGRESS: Mapping[str, int] = MappingProxyType(
    {
        'REQUESTED': 0,
        'VALIDATING': 10,
        'CREATING': 50,
        'READY': 100,
        'UPDATING': 75,
        'PAUSED': 100,
        'PAUSING': 90,
        'RESUMING': 50,
        'ERROR': 0,
        'DELETING': 50,
        'DELETED': 100,
    }
)

_ENVIRONMENT_MESSAGES: Mapping[str, str] = MappingProxyType(
    {
        'REQUESTED': 'Environment requested, waiting for validation...',
        'VALIDATING': 'Validating environment configuration...',
        'CREATING': 'Creating AWS resources...',
        'READY': 'Environment is ready and healthy',
        'UPDATING': 'Updating environment configuration...',
        'PAUSED': 'Environment is paused (scaled to zero)',
        'PAUSING': 'Pausing environment...',
        'RESUMING': 'Resuming environment...',
        'ERROR': 'Environment error',
        'DELETING': 'Deleting environment resources...',
        'DELETED': 'Environment has been deleted',
    }
)

# ── AWS account references ───────────────────────────────────────────

AWS_ACCOUNT_TRANSITIONS: Mapping[str, frozenset[str]] = MappingProxyType(
    {
        'linked': frozenset({'guardrailing', 'error'}),
        'guardrailing': frozenset({'guardrailed', 'error'}),
        'guardrailed': frozenset(),
        'error': frozenset({'guardrailing'}),
    }
)


# ── Queries ──────────────────────────────────────────────────────────


def allowed_targets(snapshot: Any) -> frozenset[str]:
    """Return the allowed-successor set for a snapshot's current status."""
    return _table_for(snapshot).get(snapshot.status, frozenset())


def can_transition(snapshot: Any, target: str) -> bool:
    return target in allowed_targets(snapshot)


def is_terminal(snapshot: Any) -> bool:
    return not allowed_targets(snapshot)


def progress(snapshot: AccountRequest | TeamEnvironment) -> int:
    """Progress percentage for UI and monitoring; not used for correctness."""
    if isinstance(snapshot, AccountRequest):
        return ACCOUNT_REQUEST_PROGRESS[snapshot.status]
    return ENVIRONMENT_PROGRESS[snapshot.status]


def status_message(snapshot: AccountRequest | TeamEnvironment) -> str:
    if snapshot.status in ('FAILED', 'ERROR') and snapshot.error_message:
        return snapshot.error_message
    if isinstance(snapshot, AccountRequest):
        return _ACCOUNT_REQUEST_MESSAGES[snapshot.status]
    return _ENVIRONMENT_MESSAGES[snapshot.status]


# ── Generic entry point ──────────────────────────────────────────────


def transition(snapshot: Any, target: str, *, now: datetime, **context: Any) -> Any:
    """Compute the snapshot after moving ``snapshot`` to ``target``.

    ``context`` carries target-specific data (``error_message``,
    ``endpoints``, ``parameters``, ``claim_name``).
    """
    if isinstance(snapshot, AccountRequest):
        return transition_account_request(snapshot, target, now=now, **context)
    if isinstance(snapshot, TeamEnvironment):
        return transition_environment(snapshot, target, now=now, **context)
    if isinstance(snapshot, AwsAccountRef):
        return transition_aws_account(snapshot, target, now=now, **context)
    raise TypeError(f'no state machine for {type(snapshot).__name__}')


# ── Account request transitions ──────────────────────────────────────


def transition_account_request(
    request: AccountRequest,
    target: str,
    *,
    now: datetime,
    error_message: str | None = None,
    claim_name: str | None = None,
) -> AccountRequest:
    _require_aware_datetime(now)
    _check_allowed(ACCOUNT_REQUEST_TRANSITIONS, request.status, target)

    if target == 'GUARDRAILING' and not request.aws_account_id:
        raise InvalidStateTransition(
            request.status, target, GUARDRAILING_WITHOUT_ACCOUNT,
        )
    if target == 'FAILED':
        error_message = _require_error_message(request.status, target, error_message)
    else:
        error_message = None

    return replace(
        request,
        status=target,
        error_message=error_message,
        guardrail_claim_name=claim_name or request.guardrail_claim_name,
        updated_at=now,
        completed_at=now if target in ACCOUNT_REQUEST_TERMINAL else None,
    )


def start_validation(request: AccountRequest, *, now: datetime) -> AccountRequest:
    return transition_account_request(request, 'VALIDATING', now=now)


def start_creation(
    request: AccountRequest,
    *,
    external_request_id: str,
    now: datetime,
) -> AccountRequest:
    """Enter CREATING once the account factory accepted the request."""
    if not external_request_id:
        raise ValueError('external_request_id is required')
    created = transition_account_request(request, 'CREATING', now=now)
    return replace(created, external_request_id=external_request_id)


def set_aws_account_id(
    request: AccountRequest,
    account_id: str,
    *,
    now: datetime,
) -> AccountRequest:
    """Record the external account id. Allowed once, while CREATING."""
    _require_aware_datetime(now)
    if not AWS_ACCOUNT_ID_RE.match(account_id or ''):
        raise ValueError('Invalid AWS account ID format')
    if request.aws_account_id is not None:
        if request.aws_account_id == account_id:
            return request
        raise InvalidStateTransition(
            request.status,
            request.status,
            f'AWS account ID already set to {request.aws_account_id}',
        )
    if request.status != 'CREATING':
        raise InvalidStateTransition(
            request.status,
            request.status,
            'AWS account ID can only be set while CREATING',
        )
    return replace(request, aws_account_id=account_id, updated_at=now)


def start_guardrailing(
    request: AccountRequest,
    *,
    now: datetime,
    claim_name: str | None = None,
) -> AccountRequest:
    return transition_account_request(
        request, 'GUARDRAILING', now=now, claim_name=claim_name,
    )


def mark_ready(request: AccountRequest, *, now: datetime) -> AccountRequest:
    return transition_account_request(request, 'READY', now=now)


def mark_failed(
    request: AccountRequest,
    error_message: str,
    *,
    now: datetime,
) -> AccountRequest:
    return transition_account_request(
        request, 'FAILED', now=now, error_message=error_message,
    )


# ── Environment transitions ──────────────────────────────────────────


def transition_environment(
    env: TeamEnvironment,
    target: str,
    *,
    now: datetime,
    error_message: str | None = None,
    endpoints: Mapping[str, str] | None = None,
    parameters: EnvironmentParameters | None = None,
) -> TeamEnvironment:
    _require_aware_datetime(now)
    _check_allowed(ENVIRONMENT_TRANSITIONS, env.status, target)

    changes: dict[str, Any] = {
        'status': target,
        'updated_at': now,
        'error_message': None,
    }

    if target == 'ERROR':
        changes['error_message'] = _require_error_message(
            env.status, target, error_message,
        )
        changes['health'] = 'unhealthy'
    elif target == 'READY':
        if env.status in _HEALTHY_ON_READY_FROM:
            changes['health'] = 'healthy'
            changes['last_reconciled'] = now
        if endpoints:
            changes['endpoints'] = {**env.endpoints, **endpoints}
    elif target == 'PAUSED':
        changes['health'] = None
    elif target == 'UPDATING' and parameters is not None:
        changes['parameters'] = parameters

    return replace(env, **changes)


def start_update(
    env: TeamEnvironment,
    parameters: EnvironmentParameters,
    *,
    now: datetime,
) -> TeamEnvironment:
    return transition_environment(env, 'UPDATING', now=now, parameters=parameters)


def mark_environment_ready(
    env: TeamEnvironment,
    *,
    now: datetime,
    endpoints: Mapping[str, str] | None = None,
) -> TeamEnvironment:
    return transition_environment(env, 'READY', now=now, endpoints=endpoints)


def mark_environment_error(
    env: TeamEnvironment,
    error_message: str,
    *,
    now: datetime,
) -> TeamEnvironment:
    return transition_environment(
        env, 'ERROR', now=now, error_message=error_message,
    )


def record_health(
    env: TeamEnvironment,
    health: str,
    *,
    now: datetime,
) -> TeamEnvironment:
    """Stamp an observed health value without changing status."""
    _require_aware_datetime(now)
    if env.status != 'READY':
        raise InvalidStateTransition(
            env.status, env.status, 'health is only tracked while READY',
        )
    if health not in ('healthy', 'degraded', 'unhealthy'):
        raise ValueError(f'invalid health {health!r}')
    return replace(env, health=health, last_reconciled=now)


# ── AWS account transitions ──────────────────────────────────────────


def transition_aws_account(
    account: AwsAccountRef,
    target: str,
    *,
    now: datetime,
    error_message: str | None = None,
    claim_name: str | None = None,
) -> AwsAccountRef:
    _require_aware_datetime(now)
    _check_allowed(AWS_ACCOUNT_TRANSITIONS, account.status, target)

    claim = claim_name or account.guardrail_claim_name
    if target == 'guardrailing' and not claim:
        raise InvalidStateTransition(
            account.status, target, 'guardrailing requires a claim name',
        )
    if target == 'error':
        error_message = _require_error_message(account.status, target, error_message)
        if account.status == 'linked':
            claim = None
    else:
        error_message = None

    return replace(
        account,
        status=target,
        guardrail_claim_name=claim,
        error_message=error_message,
        updated_at=now,
    )


# ── Private helpers ──────────────────────────────────────────────────


def _table_for(snapshot: Any) -> Mapping[str, frozenset[str]]:
    if isinstance(snapshot, AccountRequest):
        return ACCOUNT_REQUEST_TRANSITIONS
    if isinstance(snapshot, TeamEnvironment):
        return ENVIRONMENT_TRANSITIONS
    if isinstance(snapshot, AwsAccountRef):
        return AWS_ACCOUNT_TRANSITIONS
    raise TypeError(f'no state machine for {type(snapshot).__name__}')


def _check_allowed(
    table: Mapping[str, frozenset[str]],
    current: str,
    target: str,
) -> None:
    if target not in table.get(current, frozenset()):
        raise InvalidStateTransition(current, target)


def _require_error_message(
    current: str,
    target: str,
    error_message: str | None,
) -> str:
    if not error_message or not error_message.strip():
        raise InvalidStateTransition(
            current, target, 'an error message is required',
        )
    return error_message


def _require_aware_datetime(value: datetime) -> None:
    if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
        raise ValueError('now must be timezone-aware')
