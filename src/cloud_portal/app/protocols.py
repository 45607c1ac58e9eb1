"""Repository and adapter protocol interfaces for dependency injection.

These protocols define the contracts that concrete implementations (InMemory
for local development and tests, boto3/Kubernetes for live backends) must
satisfy. The app factory and the reconciliation loop accept any
implementation that matches them; the backend is selected by configuration.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Protocol, TypeVar, runtime_checkable

from .models import (
    AccountRequest,
    AwsAccountRef,
    GuardrailParams,
    TeamEnvironment,
)

T = TypeVar('T')


# ── Repositories ─────────────────────────────────────────────────────


@runtime_checkable
class ResourceRepository(Protocol[T]):
    """Keyed CRUD with secondary lookup by owner and status."""

    async def create(self, record: T) -> T: ...
    async def find_by_id(self, record_id: str) -> T | None: ...
    async def find_by_owner(self, owner_id: str) -> list[T]: ...
    async def find_by_status(self, *statuses: str) -> list[T]: ...
    async def update(self, record_id: str, partial: Mapping[str, Any]) -> T | None: ...
    async def delete(self, record_id: str) -> bool: ...
    async def list(
        self,
        *,
        owner_id: str | None = None,
        status: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[T], int]: ...


class AccountRequestRepository(ResourceRepository[AccountRequest], Protocol):
    pass


class EnvironmentRepository(ResourceRepository[TeamEnvironment], Protocol):
    pass


class AwsAccountRepository(ResourceRepository[AwsAccountRef], Protocol):
    async def find_by_account_id(self, account_id: str) -> AwsAccountRef | None: ...


# ── Account factory ──────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class CreateAccountResult:
    request_id: str


@dataclass(frozen=True, slots=True)
class AccountCreationStatus:
    """Status of one external account-creation request.

    ``state`` is one of IN_PROGRESS, SUCCEEDED, FAILED.
    """

    request_id: str
    state: str
    account_id: str | None = None
    failure_reason: str | None = None


@runtime_checkable
class AccountFactory(Protocol):
    """Two-call contract wrapping an external account-creation backend.

    ``describe_status`` must be idempotent and must report unknown request
    ids as FAILED with reason ``not_found`` instead of raising.
    """

    async def create(self, name: str, email: str) -> CreateAccountResult: ...
    async def describe_status(self, request_id: str) -> AccountCreationStatus: ...


# ── Guardrail controller ─────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class ClaimHandle:
    name: str


@runtime_checkable
class GuardrailController(Protocol):
    """Policy/guardrail controller driven by declarative claims."""

    async def create_claim(
        self,
        account_id: str,
        account_name: str,
        role_arn: str,
        owner_email: str,
        params: GuardrailParams,
        *,
        primary_region: str | None = None,
    ) -> ClaimHandle: ...

    async def get_claim(self, claim_name: str) -> dict[str, Any] | None: ...
    async def delete_claim(self, claim_name: str) -> None: ...


# ── Environment release controller ───────────────────────────────────


@runtime_checkable
class ReleaseController(Protocol):
    """Controller that deploys team environments as declarative releases."""

    async def apply_release(self, environment: TeamEnvironment) -> str: ...
    async def get_release(self, release_name: str) -> dict[str, Any] | None: ...
    async def delete_release(self, release_name: str) -> None: ...
