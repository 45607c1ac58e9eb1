"""Reconciliation loop: polls external backends and advances resource state.

Each tick loads one resource snapshot, talks to the relevant adapter without
touching the repository, feeds the answer through the state machine, then
re-reads the snapshot and persists the computed transition only if the
resource did not move meanwhile.

Account requests:
  REQUESTED    -> VALIDATING                      (no I/O)
  VALIDATING   -> create account  -> CREATING
  CREATING     -> describe status -> record account id -> submit claim
                  -> GUARDRAILING | FAILED
  GUARDRAILING -> read claim      -> READY (managed account registered) | FAILED

AWS account references (``guardrailing`` only):
  guardrailing -> read claim -> guardrailed | error

Team environments:
  REQUESTED  -> VALIDATING                        (no I/O)
  VALIDATING -> apply release -> CREATING
               (a release left behind by a cancelled VALIDATING environment is
               deleted at the end of the sweep)
  CREATING | UPDATING | RESUMING | PAUSING -> apply + read release
  DELETING   -> delete + read release -> DELETED
  READY      -> read release -> health refresh

Adapter errors are retried with exponential backoff (full jitter) up to
``max_reconcile_attempts`` consecutive failures, after which the resource is
moved to its failure status with a ``ReconciliationExhausted`` message.
Any other exception raised by a step counts as a retryable adapter error
against the same budget.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass, replace
from datetime import datetime, timedelta, timezone
from typing import Any, Awaitable, Callable

from ..errors import AdapterError, InvalidStateTransition, ReconciliationExhausted
from ..models import AccountRequest, AwsAccountRef, TeamEnvironment, changed_fields
from ..protocols import (
    AccountFactory,
    AccountRequestRepository,
    AwsAccountRepository,
    EnvironmentRepository,
    GuardrailController,
    ReleaseController,
)
from ..providers.guardrails import claim_name_for, to_guardrail_status
from ..providers.releases import release_name_for, to_release_status
from ..settings import PortalSettings
from ...observability.logging import bind_resource
from ...observability.metrics import (
    ADAPTER_ERRORS_TOTAL,
    RECONCILE_TICKS_TOTAL,
    RESOURCE_TRANSITIONS_TOTAL,
)
from .state_machine import (
    ACCOUNT_REQUEST_ACTIVE,
    AWS_ACCOUNT_ID_RE,
    ENVIRONMENT_IN_FLIGHT,
    is_terminal,
    mark_environment_error,
    mark_environment_ready,
    mark_failed,
    mark_ready,
    record_health,
    set_aws_account_id,
    start_creation,
    start_guardrailing,
    start_validation,
    transition_aws_account,
    transition_environment,
)

logger = logging.getLogger(__name__)

ACCOUNT_REQUEST = 'account_request'
AWS_ACCOUNT = 'aws_account'
ENVIRONMENT = 'environment'

MANAGED_ROLE_NAME = 'OrganizationAccountAccessRole'

# Adapter label for exceptions that are not AdapterErrors.
UNEXPECTED_ADAPTER = 'unexpected'

# Outcomes after which the consecutive-failure counter is cleared.
_HEALTHY_OUTCOMES = frozenset({'progressed', 'waiting', 'refreshed'})


def managed_role_arn(account_id: str) -> str:
    return f'arn:aws:iam::{account_id}:role/{MANAGED_ROLE_NAME}'


# ── Reports ──────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class TickResult:
    """Outcome of one reconciliation tick for one resource.

    ``outcome`` is one of: progressed, waiting, refreshed, stale, retry,
    backoff, exhausted, busy, skipped, missing, invalid_transition, error.
    """

    kind: str
    resource_id: str
    outcome: str
    from_status: str | None = None
    to_status: str | None = None
    detail: str | None = None


@dataclass(frozen=True, slots=True)
class ReconcileReport:
    """Result of one sweep across all non-terminal resources."""

    results: tuple[TickResult, ...]
    sweep_ts: datetime

    @property
    def total_scanned(self) -> int:
        return len(self.results)

    @property
    def progressed(self) -> tuple[TickResult, ...]:
        return tuple(r for r in self.results if r.outcome == 'progressed')

    @property
    def failures(self) -> tuple[TickResult, ...]:
        return tuple(
            r for r in self.results
            if r.outcome in ('retry', 'exhausted', 'invalid_transition', 'error')
        )

    @property
    def by_outcome(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for result in self.results:
            counts[result.outcome] = counts.get(result.outcome, 0) + 1
        return counts

    def for_resource(self, resource_id: str) -> TickResult | None:
        for result in self.results:
            if result.resource_id == resource_id:
                return result
        return None


@dataclass(frozen=True, slots=True)
class _RetryState:
    attempts: int
    next_attempt_at: datetime
    last_error: str


# ── Reconciler ───────────────────────────────────────────────────────


class Reconciler:
    """Drives account requests, AWS accounts and environments to completion.

    Args:
        settings: Supplies poll interval, attempt bound and backoff window.
        rng: Jitter source; injectable for deterministic tests.
    """

    def __init__(
        self,
        *,
        account_requests: AccountRequestRepository,
        aws_accounts: AwsAccountRepository,
        environments: EnvironmentRepository,
        account_factory: AccountFactory,
        guardrails: GuardrailController,
        releases: ReleaseController,
        settings: PortalSettings | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self._account_requests = account_requests
        self._aws_accounts = aws_accounts
        self._environments = environments
        self._account_factory = account_factory
        self._guardrails = guardrails
        self._releases = releases
        self._settings = settings or PortalSettings()
        self._rng = rng or random.Random()

        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._retries: dict[tuple[str, str], _RetryState] = {}
        # Snapshot persisted mid-tick, before the step's last adapter call.
        self._checkpoints: dict[tuple[str, str], Any] = {}
        # Status at which an illegal transition was last reported.
        self._rejected: dict[tuple[str, str], str] = {}
        # Environment id -> release applied while VALIDATING, until CREATING is
        # recorded or the environment is gone.
        self._unsettled_releases: dict[str, str] = {}
        self._task: asyncio.Task[None] | None = None
        self._stopping: asyncio.Event | None = None

    # ── Sweep ────────────────────────────────────────────────────────

    async def run_once(self, *, now: datetime | None = None) -> ReconcileReport:
        """Tick every non-terminal resource once."""
        now = now or datetime.now(timezone.utc)

        requests = await self._account_requests.find_by_status(*ACCOUNT_REQUEST_ACTIVE)
        accounts = await self._aws_accounts.find_by_status('guardrailing')
        environments = await self._environments.find_by_status(
            *ENVIRONMENT_IN_FLIGHT, 'READY',
        )

        targets: list[tuple[str, str, Callable[..., Awaitable[TickResult]]]] = [
            *((ACCOUNT_REQUEST, r.id, self.reconcile_account_request) for r in requests),
            *((AWS_ACCOUNT, a.id, self.reconcile_aws_account) for a in accounts),
            *((ENVIRONMENT, e.id, self.reconcile_environment) for e in environments),
        ]
        outcomes = await asyncio.gather(
            *(tick(resource_id, now=now) for _, resource_id, tick in targets),
            return_exceptions=True,
        )

        results: list[TickResult] = []
        for (kind, resource_id, _), outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                if not isinstance(outcome, Exception):
                    raise outcome
                logger.error(
                    'Reconcile tick crashed for %s %s',
                    kind,
                    resource_id,
                    exc_info=outcome,
                    extra={'kind': kind, 'resource_id': resource_id},
                )
                outcome = self._count(TickResult(
                    kind, resource_id, 'error',
                    detail=f'{type(outcome).__name__}: {outcome}',
                ))
            results.append(outcome)

        await self.collect_orphaned_releases()

        report = ReconcileReport(results=tuple(results), sweep_ts=now)
        if report.results:
            logger.debug(
                'Reconciliation sweep finished: %s',
                report.by_outcome,
                extra={'scanned': report.total_scanned},
            )
        return report

    async def reconcile_account_request(
        self,
        request_id: str,
        *,
        now: datetime | None = None,
    ) -> TickResult:
        return await self._tick(
            ACCOUNT_REQUEST,
            request_id,
            self._account_requests,
            self._step_account_request,
            now,
        )

    async def reconcile_aws_account(
        self,
        account_ref_id: str,
        *,
        now: datetime | None = None,
    ) -> TickResult:
        return await self._tick(
            AWS_ACCOUNT,
            account_ref_id,
            self._aws_accounts,
            self._step_aws_account,
            now,
        )

    async def reconcile_environment(
        self,
        environment_id: str,
        *,
        now: datetime | None = None,
    ) -> TickResult:
        return await self._tick(
            ENVIRONMENT,
            environment_id,
            self._environments,
            self._step_environment,
            now,
        )

    async def collect_orphaned_releases(self) -> list[str]:
        """Delete releases applied for environments dropped while VALIDATING.

        An environment cancelled in VALIDATING is removed outright, possibly
        after its release was applied (or while an ambiguous apply is being
        retried). Returns the release names deleted; one whose deletion
        fails is tried again on the next sweep.
        """
        collected: list[str] = []
        for environment_id, name in list(self._unsettled_releases.items()):
            env = await self._environments.find_by_id(environment_id)
            if env is not None:
                if env.status != 'VALIDATING':
                    del self._unsettled_releases[environment_id]
                continue
            try:
                await self._releases.delete_release(name)
            except AdapterError as e:
                logger.warning(
                    'Could not delete orphaned release %s: %s',
                    name,
                    e,
                    extra={'resource_id': environment_id, 'adapter': e.adapter},
                )
                continue
            del self._unsettled_releases[environment_id]
            collected.append(name)
            logger.info(
                'Deleted release %s of cancelled environment %s',
                name,
                environment_id,
                extra={'resource_id': environment_id},
            )
        return collected

    def attempts(self, kind: str, resource_id: str) -> int:
        """Consecutive adapter failures recorded for a resource."""
        state = self._retries.get((kind, resource_id))
        return state.attempts if state else 0

    # ── Background task ──────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stopping = asyncio.Event()
        self._task = asyncio.create_task(self.run_forever(), name='reconciler')
        logger.info(
            'Reconciler started',
            extra={'poll_interval_seconds': self._settings.poll_interval_seconds},
        )

    async def stop(self) -> None:
        if self._task is None:
            return
        assert self._stopping is not None
        self._stopping.set()
        await self._task
        self._task = None
        logger.info('Reconciler stopped')

    async def run_forever(self) -> None:
        if self._stopping is None:
            self._stopping = asyncio.Event()
        stopping = self._stopping
        while not stopping.is_set():
            try:
                await self.run_once()
            except Exception:
                logger.exception('Reconciliation sweep failed')
            try:
                await asyncio.wait_for(
                    stopping.wait(),
                    timeout=self._settings.poll_interval_seconds,
                )
            except asyncio.TimeoutError:
                pass

    # ── Tick scaffolding ─────────────────────────────────────────────

    async def _tick(
        self,
        kind: str,
        resource_id: str,
        repo: Any,
        step: Callable[[Any, datetime], Awaitable[TickResult]],
        now: datetime | None,
    ) -> TickResult:
        key = (kind, resource_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        if lock.locked():
            return self._count(TickResult(kind, resource_id, 'busy'))

        async with lock:
            with bind_resource(kind, resource_id):
                result = await self._guarded_step(
                    kind, resource_id, repo, step,
                    now or datetime.now(timezone.utc),
                )

        if result.outcome in ('missing', 'skipped') or (
            result.to_status is not None and self._is_terminal_status(kind, result.to_status)
        ):
            self._retire(key)
        return self._count(result)

    async def _guarded_step(
        self,
        kind: str,
        resource_id: str,
        repo: Any,
        step: Callable[[Any, datetime], Awaitable[TickResult]],
        now: datetime,
    ) -> TickResult:
        snapshot = await repo.find_by_id(resource_id)
        if snapshot is None:
            return TickResult(kind, resource_id, 'missing')
        if is_terminal(snapshot):
            return TickResult(kind, resource_id, 'skipped', snapshot.status)

        key = (kind, resource_id)
        retry = self._retries.get(key)
        if retry is not None and retry.next_attempt_at > now:
            return TickResult(
                kind, resource_id, 'backoff', snapshot.status, detail=retry.last_error,
            )

        try:
            result = await step(snapshot, now)
        except AdapterError as e:
            error = e
        except InvalidStateTransition as e:
            return self._reject(kind, snapshot, e)
        except Exception as e:
            logger.exception(
                'Unexpected failure reconciling %s %s',
                kind,
                resource_id,
                extra={'kind': kind, 'resource_id': resource_id},
            )
            error = AdapterError(UNEXPECTED_ADAPTER, f'{type(e).__name__}: {e}')
        else:
            if result.outcome in _HEALTHY_OUTCOMES:
                self._retries.pop(key, None)
                self._rejected.pop(key, None)
            return result
        finally:
            checkpoint = self._checkpoints.pop(key, snapshot)

        ADAPTER_ERRORS_TOTAL.labels(adapter=error.adapter).inc()
        return await self._record_failure(kind, repo, checkpoint, error, now)

    def _reject(
        self,
        kind: str,
        snapshot: Any,
        error: InvalidStateTransition,
    ) -> TickResult:
        """Report an illegal transition once per status; repeats log at debug."""
        key = (kind, snapshot.id)
        first = self._rejected.get(key) != snapshot.status
        self._rejected[key] = snapshot.status
        logger.log(
            logging.ERROR if first else logging.DEBUG,
            'Illegal transition for %s %s: %s',
            kind,
            snapshot.id,
            error,
            extra={
                'kind': kind,
                'resource_id': snapshot.id,
                'from_status': error.from_state,
                'to_status': error.to_state,
            },
        )
        return TickResult(
            kind, snapshot.id, 'invalid_transition', snapshot.status, detail=str(error),
        )

    async def _record_failure(
        self,
        kind: str,
        repo: Any,
        snapshot: Any,
        error: AdapterError,
        now: datetime,
    ) -> TickResult:
        key = (kind, snapshot.id)
        previous = self._retries.get(key)
        attempts = (previous.attempts if previous else 0) + 1
        max_attempts = self._settings.max_reconcile_attempts

        if attempts < max_attempts and error.retryable:
            delay = self._backoff_seconds(attempts)
            self._retries[key] = _RetryState(
                attempts=attempts,
                next_attempt_at=now + timedelta(seconds=delay),
                last_error=str(error),
            )
            logger.warning(
                'Adapter error for %s %s (attempt %d/%d), retrying in %.1fs: %s',
                kind,
                snapshot.id,
                attempts,
                max_attempts,
                delay,
                error,
                extra={'kind': kind, 'resource_id': snapshot.id, 'adapter': error.adapter},
            )
            return TickResult(
                kind, snapshot.id, 'retry', snapshot.status, detail=str(error),
            )

        exhausted = ReconciliationExhausted(kind, snapshot.id, attempts, str(error))
        logger.error(
            'Giving up on %s %s: %s',
            kind,
            snapshot.id,
            exhausted,
            extra={'kind': kind, 'resource_id': snapshot.id, 'attempts': attempts},
        )
        self._retries.pop(key, None)
        failed = self._failure_snapshot(kind, snapshot, str(exhausted), now)
        result = await self._advance(kind, repo, snapshot, failed)
        if result.outcome != 'progressed':
            return result
        return replace(result, outcome='exhausted', detail=str(exhausted))

    def _backoff_seconds(self, attempts: int) -> float:
        """Exponential backoff with full jitter."""
        base = self._settings.backoff_base_seconds
        ceiling = min(base * (2 ** (attempts - 1)), self._settings.backoff_max_seconds)
        return self._rng.uniform(0, ceiling)

    @staticmethod
    def _failure_snapshot(kind: str, snapshot: Any, message: str, now: datetime) -> Any:
        if kind == ACCOUNT_REQUEST:
            return mark_failed(snapshot, message, now=now)
        if kind == ENVIRONMENT:
            return mark_environment_error(snapshot, message, now=now)
        return transition_aws_account(snapshot, 'error', now=now, error_message=message)

    @staticmethod
    def _is_terminal_status(kind: str, status: str) -> bool:
        if kind == ACCOUNT_REQUEST:
            return status in ('READY', 'FAILED')
        if kind == ENVIRONMENT:
            return status == 'DELETED'
        return status == 'guardrailed'

    def _retire(self, key: tuple[str, str]) -> None:
        self._retries.pop(key, None)
        self._rejected.pop(key, None)
        lock = self._locks.get(key)
        if lock is not None and not lock.locked():
            del self._locks[key]

    def _count(self, result: TickResult) -> TickResult:
        RECONCILE_TICKS_TOTAL.labels(kind=result.kind, outcome=result.outcome).inc()
        return result

    async def _advance(self, kind: str, repo: Any, before: Any, after: Any) -> TickResult:
        """Persist ``after`` unless the stored snapshot moved past ``before``."""
        result, _ = await self._persist(kind, repo, before, after)
        return result

    async def _checkpoint(
        self,
        kind: str,
        repo: Any,
        before: Any,
        after: Any,
    ) -> tuple[TickResult, Any]:
        """Persist an intermediate snapshot that must survive a later failure.

        A failure later in the same tick builds its failure status on top of
        the checkpoint instead of the snapshot the tick started from.
        """
        result, stored = await self._persist(kind, repo, before, after)
        if stored is not None:
            self._checkpoints[(kind, before.id)] = stored
        return result, stored

    async def _persist(
        self,
        kind: str,
        repo: Any,
        before: Any,
        after: Any,
    ) -> tuple[TickResult, Any]:
        current = await repo.find_by_id(before.id)
        if current is None or (
            current.status != before.status or current.updated_at != before.updated_at
        ):
            logger.info(
                'Dropping stale result for %s %s',
                kind,
                before.id,
                extra={
                    'kind': kind,
                    'resource_id': before.id,
                    'expected_status': before.status,
                    'current_status': current.status if current else None,
                },
            )
            stale = TickResult(
                kind, before.id, 'stale', before.status,
                current.status if current else None,
            )
            return stale, None

        stored = current
        changes = changed_fields(current, after)
        if changes:
            stored = await repo.update(before.id, changes)
            if stored is None:
                return TickResult(kind, before.id, 'stale', before.status), None
        if before.status != after.status:
            RESOURCE_TRANSITIONS_TOTAL.labels(
                kind=kind, from_status=before.status, to_status=after.status,
            ).inc()
            logger.info(
                '%s %s: %s -> %s',
                kind,
                before.id,
                before.status,
                after.status,
                extra={
                    'kind': kind,
                    'resource_id': before.id,
                    'from_status': before.status,
                    'to_status': after.status,
                },
            )
            result = TickResult(kind, before.id, 'progressed', before.status, after.status)
        else:
            result = TickResult(kind, before.id, 'refreshed', before.status, after.status)
        return result, stored

    # ── Account requests ─────────────────────────────────────────────

    async def _step_account_request(
        self,
        request: AccountRequest,
        now: datetime,
    ) -> TickResult:
        repo = self._account_requests
        status = request.status

        if status == 'REQUESTED':
            return await self._advance(
                ACCOUNT_REQUEST, repo, request, start_validation(request, now=now),
            )

        if status == 'VALIDATING':
            created = await self._account_factory.create(
                request.account_name, request.owner_email,
            )
            after = start_creation(
                request, external_request_id=created.request_id, now=now,
            )
            return await self._advance(ACCOUNT_REQUEST, repo, request, after)

        if status == 'CREATING':
            return await self._poll_account_creation(request, now)

        if status == 'GUARDRAILING':
            return await self._poll_request_guardrails(request, now)

        return TickResult(ACCOUNT_REQUEST, request.id, 'waiting', status)

    async def _poll_account_creation(
        self,
        request: AccountRequest,
        now: datetime,
    ) -> TickResult:
        repo = self._account_requests
        if request.aws_account_id:
            # Account exists; an earlier claim submission did not go through.
            return await self._submit_claim(request, now)

        if not request.external_request_id:
            after = mark_failed(
                request, 'AWS account creation failed: missing request id', now=now,
            )
            return await self._advance(ACCOUNT_REQUEST, repo, request, after)

        result = await self._account_factory.describe_status(request.external_request_id)

        if result.state == 'SUCCEEDED':
            account_id = result.account_id or ''
            if not AWS_ACCOUNT_ID_RE.match(account_id):
                raise AdapterError(
                    'organizations',
                    f'malformed account id in status response: {account_id!r}',
                )
            saved, with_id = await self._checkpoint(
                ACCOUNT_REQUEST, repo, request,
                set_aws_account_id(request, account_id, now=now),
            )
            if with_id is None:
                return saved
            return await self._submit_claim(with_id, now)

        if result.state == 'FAILED':
            reason = result.failure_reason or 'unknown'
            after = mark_failed(
                request, f'AWS account creation failed: {reason}', now=now,
            )
            return await self._advance(ACCOUNT_REQUEST, repo, request, after)

        return TickResult(ACCOUNT_REQUEST, request.id, 'waiting', request.status)

    async def _submit_claim(self, request: AccountRequest, now: datetime) -> TickResult:
        account_id = request.aws_account_id or ''
        claim = await self._guardrails.create_claim(
            account_id,
            request.account_name,
            managed_role_arn(account_id),
            request.owner_email,
            request.guardrails,
            primary_region=request.primary_region,
        )
        after = start_guardrailing(request, now=now, claim_name=claim.name)
        return await self._advance(ACCOUNT_REQUEST, self._account_requests, request, after)

    async def _poll_request_guardrails(
        self,
        request: AccountRequest,
        now: datetime,
    ) -> TickResult:
        repo = self._account_requests
        claim_name = request.guardrail_claim_name or claim_name_for(
            request.aws_account_id or '',
        )
        claim = await self._guardrails.get_claim(claim_name)

        if claim is None:
            after = mark_failed(
                request, f'Guardrail claim not_found: {claim_name}', now=now,
            )
            return await self._advance(ACCOUNT_REQUEST, repo, request, after)

        guardrail = to_guardrail_status(claim)
        if guardrail.is_failed:
            after = mark_failed(
                request,
                guardrail.error_message or 'Guardrail application failed',
                now=now,
            )
            return await self._advance(ACCOUNT_REQUEST, repo, request, after)

        if guardrail.is_applied:
            result = await self._advance(
                ACCOUNT_REQUEST, repo, request, mark_ready(request, now=now),
            )
            if result.outcome == 'progressed':
                await self._register_managed_account(request, claim_name)
            return result

        return TickResult(ACCOUNT_REQUEST, request.id, 'waiting', request.status)

    async def _register_managed_account(
        self,
        request: AccountRequest,
        claim_name: str,
    ) -> None:
        account_id = request.aws_account_id or ''
        if await self._aws_accounts.find_by_account_id(account_id) is not None:
            return
        account = await self._aws_accounts.create(AwsAccountRef(
            id='',
            owner_id=request.requester_id,
            account_id=account_id,
            account_name=request.account_name,
            role_arn=managed_role_arn(account_id),
            owner_email=request.owner_email,
            type='managed',
            status='guardrailed',
            guardrail_claim_name=claim_name,
        ))
        logger.info(
            'Registered managed AWS account %s',
            account_id,
            extra={'resource_id': account.id, 'account_request_id': request.id},
        )

    # ── AWS account references ───────────────────────────────────────

    async def _step_aws_account(self, account: AwsAccountRef, now: datetime) -> TickResult:
        if account.status != 'guardrailing':
            return TickResult(AWS_ACCOUNT, account.id, 'waiting', account.status)

        repo = self._aws_accounts
        claim_name = account.guardrail_claim_name or claim_name_for(account.account_id)
        claim = await self._guardrails.get_claim(claim_name)

        if claim is None:
            after = transition_aws_account(
                account, 'error', now=now,
                error_message=f'Guardrail claim not_found: {claim_name}',
            )
            return await self._advance(AWS_ACCOUNT, repo, account, after)

        guardrail = to_guardrail_status(claim)
        if guardrail.is_failed:
            after = transition_aws_account(
                account, 'error', now=now,
                error_message=guardrail.error_message or 'Guardrail application failed',
            )
            return await self._advance(AWS_ACCOUNT, repo, account, after)
        if guardrail.is_applied:
            after = transition_aws_account(account, 'guardrailed', now=now)
            return await self._advance(AWS_ACCOUNT, repo, account, after)

        return TickResult(AWS_ACCOUNT, account.id, 'waiting', account.status)

    # ── Team environments ────────────────────────────────────────────

    async def _step_environment(self, env: TeamEnvironment, now: datetime) -> TickResult:
        repo = self._environments
        status = env.status

        if status == 'REQUESTED':
            after = transition_environment(env, 'VALIDATING', now=now)
            return await self._advance(ENVIRONMENT, repo, env, after)

        if status == 'VALIDATING':
            self._unsettled_releases[env.id] = release_name_for(env)
            name = await self._releases.apply_release(env)
            after = replace(
                transition_environment(env, 'CREATING', now=now), release_name=name,
            )
            result = await self._advance(ENVIRONMENT, repo, env, after)
            if result.outcome == 'progressed':
                self._unsettled_releases.pop(env.id, None)
            return result

        if status in ('CREATING', 'UPDATING', 'RESUMING', 'PAUSING'):
            return await self._converge_release(env, now)

        if status == 'DELETING':
            name = release_name_for(env)
            await self._releases.delete_release(name)
            if await self._releases.get_release(name) is None:
                after = transition_environment(env, 'DELETED', now=now)
                return await self._advance(ENVIRONMENT, repo, env, after)
            return TickResult(ENVIRONMENT, env.id, 'waiting', status)

        if status == 'READY':
            return await self._refresh_health(env, now)

        return TickResult(ENVIRONMENT, env.id, 'waiting', status)

    async def _converge_release(self, env: TeamEnvironment, now: datetime) -> TickResult:
        repo = self._environments
        name = await self._releases.apply_release(env)
        release = await self._releases.get_release(name)

        if release is None:
            after = mark_environment_error(env, f'Release not_found: {name}', now=now)
            return await self._advance(ENVIRONMENT, repo, env, after)

        observed = to_release_status(release)
        expected = 'paused' if env.status == 'PAUSING' else 'ready'

        if observed.status == 'failed':
            after = mark_environment_error(
                env, observed.error_message or 'Release failed', now=now,
            )
        elif observed.status != expected:
            return TickResult(ENVIRONMENT, env.id, 'waiting', env.status)
        elif expected == 'paused':
            after = transition_environment(env, 'PAUSED', now=now)
        else:
            after = mark_environment_ready(env, now=now, endpoints=observed.endpoints)

        if env.release_name != name:
            after = replace(after, release_name=name)
        return await self._advance(ENVIRONMENT, repo, env, after)

    async def _refresh_health(self, env: TeamEnvironment, now: datetime) -> TickResult:
        repo = self._environments
        name = release_name_for(env)
        release = await self._releases.get_release(name)

        if release is None:
            after = mark_environment_error(env, f'Release not_found: {name}', now=now)
            return await self._advance(ENVIRONMENT, repo, env, after)

        observed = to_release_status(release)
        if observed.status == 'failed':
            after = mark_environment_error(
                env, observed.error_message or 'Release failed', now=now,
            )
            return await self._advance(ENVIRONMENT, repo, env, after)

        health = 'healthy' if observed.status == 'ready' else 'degraded'
        after = record_health(env, health, now=now)
        if observed.endpoints:
            after = replace(after, endpoints={**env.endpoints, **observed.endpoints})
        return await self._advance(ENVIRONMENT, repo, env, after)
