"""Error taxonomy shared by the provisioning core and the HTTP boundary.

Validation and ownership errors are resolved at the boundary and never reach
the state machine. Adapter errors are resolved inside the reconciliation loop
and never propagate past it. Transition errors indicate a programming or
concurrency bug: they are logged and never retried.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable


class PortalError(Exception):
    """Base class for all portal errors surfaced to callers."""

    code = 'PORTAL_ERROR'


# ── Validation ───────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class FieldError:
    """A single field-level validation message."""

    field: str
    message: str


class ValidationError(PortalError):
    """One or more field-level violations, collected together."""

    code = 'VALIDATION_FAILED'

    def __init__(self, errors: Iterable[FieldError]) -> None:
        self.errors = tuple(errors)
        if not self.errors:
            raise ValueError('ValidationError requires at least one error')
        super().__init__('; '.join(e.message for e in self.errors))

    @property
    def messages(self) -> list[str]:
        return [e.message for e in self.errors]


# ── State machine ────────────────────────────────────────────────────


class InvalidStateTransition(PortalError, ValueError):
    """Raised for an illegal (current, target) status pair."""

    code = 'INVALID_TRANSITION'

    def __init__(
        self,
        from_state: str,
        to_state: str,
        reason: str | None = None,
    ) -> None:
        self.from_state = from_state
        self.to_state = to_state
        self.reason = reason
        message = f'invalid state transition: {from_state!r} -> {to_state!r}'
        if reason:
            message = f'{message}: {reason}'
        super().__init__(message)


TransitionError = InvalidStateTransition


# ── External systems ─────────────────────────────────────────────────


class AdapterError(PortalError):
    """Transient I/O failure talking to an external provisioning backend."""

    code = 'ADAPTER_ERROR'

    def __init__(
        self,
        adapter: str,
        message: str,
        *,
        retryable: bool = True,
    ) -> None:
        self.adapter = adapter
        self.message = message
        self.retryable = retryable
        super().__init__(f'{adapter}: {message}')


class ReconciliationExhausted(PortalError):
    """Synthetic terminal failure once the retry budget is spent."""

    code = 'RECONCILIATION_EXHAUSTED'

    def __init__(
        self,
        kind: str,
        resource_id: str,
        attempts: int,
        last_error: str,
    ) -> None:
        self.kind = kind
        self.resource_id = resource_id
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f'reconciliation exhausted after {attempts} attempts: {last_error}'
        )


# ── Use-case errors ──────────────────────────────────────────────────


class NotFound(PortalError):
    code = 'NOT_FOUND'

    def __init__(self, kind: str, resource_id: str) -> None:
        self.kind = kind
        self.resource_id = resource_id
        super().__init__(f'{kind} {resource_id!r} not found')


class AccessDenied(PortalError):
    code = 'ACCESS_DENIED'

    def __init__(self, kind: str, resource_id: str) -> None:
        self.kind = kind
        self.resource_id = resource_id
        super().__init__(f'access denied to {kind} {resource_id!r}')


class IllegalState(PortalError):
    """Operation is not allowed in the resource's current status."""

    code = 'ILLEGAL_STATE'


class Conflict(PortalError):
    """Uniqueness violation, e.g. an AWS account that is already linked."""

    code = 'CONFLICT'
