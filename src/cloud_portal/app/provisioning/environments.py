"""Team environment use cases.

Submission validates against the template catalog and stores the
environment in REQUESTED. User actions (update, pause, resume, retry,
cancel) only move the environment into an in-flight status; the
reconciliation loop converges the release and settles the final status.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, Mapping

from ..errors import IllegalState, InvalidStateTransition, ValidationError, FieldError
from ..models import (
    EnvironmentInput,
    EnvironmentParameters,
    EnvironmentTemplate,
    TeamEnvironment,
    changed_fields,
)
from ..protocols import EnvironmentRepository
from .access import load_owned
from .state_machine import start_update, transition_environment
from .templates import DEFAULT_TEMPLATES
from .validation import validate_environment, validate_environment_parameters

logger = logging.getLogger(__name__)

KIND = 'environment'

# Cancelling drops the record. A release already applied while VALIDATING is
# deleted by Reconciler.collect_orphaned_releases.
_DROP_ON_CANCEL = frozenset({'REQUESTED', 'VALIDATING'})
_DELETE_ON_CANCEL = frozenset({'READY', 'PAUSED', 'ERROR'})


class EnvironmentService:
    def __init__(
        self,
        repo: EnvironmentRepository,
        *,
        templates: Mapping[str, EnvironmentTemplate] = DEFAULT_TEMPLATES,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._repo = repo
        self._templates = templates
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    @property
    def templates(self) -> Mapping[str, EnvironmentTemplate]:
        return self._templates

    async def submit(
        self,
        requester_id: str,
        data: EnvironmentInput,
    ) -> TeamEnvironment:
        now = self._clock()
        validate_environment(data, templates=self._templates, now=now)
        template = self._templates[data.template_id]
        env = await self._repo.create(TeamEnvironment(
            id='',
            name=data.name.strip(),
            team_id=data.team_id,
            template_id=data.template_id,
            template_version=data.template_version,
            aws_account_id=data.aws_account_id,
            creator_id=requester_id,
            parameters=data.parameters,
            resources=template.resources,
            created_at=now,
            updated_at=now,
        ))
        logger.info(
            'Environment submitted: %s',
            env.id,
            extra={'resource_id': env.id, 'template_id': env.template_id},
        )
        return env

    async def get(self, environment_id: str, requester_id: str) -> TeamEnvironment:
        return await load_owned(self._repo, KIND, environment_id, requester_id)

    async def list(
        self,
        requester_id: str,
        *,
        status: str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> tuple[list[TeamEnvironment], int]:
        return await self._repo.list(
            owner_id=requester_id, status=status, limit=limit, offset=offset,
        )

    async def cancel(
        self,
        environment_id: str,
        requester_id: str,
    ) -> TeamEnvironment | None:
        """Cancel or tear down an environment.

        Returns None when the record was dropped outright, otherwise the
        snapshot now in DELETING.
        """
        env = await self.get(environment_id, requester_id)
        if env.status in _DROP_ON_CANCEL:
            await self._repo.delete(environment_id)
            logger.info(
                'Environment dropped before provisioning: %s',
                environment_id,
                extra={'resource_id': environment_id, 'status': env.status},
            )
            return None
        if env.status not in _DELETE_ON_CANCEL:
            raise IllegalState(f'Cannot delete environment in status {env.status}')
        return await self._move(env, transition_environment(
            env, 'DELETING', now=self._clock(),
        ))

    async def update_parameters(
        self,
        environment_id: str,
        requester_id: str,
        parameters: EnvironmentParameters,
    ) -> TeamEnvironment:
        env = await self.get(environment_id, requester_id)
        now = self._clock()
        validate_environment_parameters(parameters, now=now)
        self._check_template_support(env, parameters)
        return await self._move(env, self._guarded(
            env, 'update', lambda: start_update(env, parameters, now=now),
        ))

    async def pause(self, environment_id: str, requester_id: str) -> TeamEnvironment:
        env = await self.get(environment_id, requester_id)
        return await self._move(env, self._guarded(
            env, 'pause',
            lambda: transition_environment(env, 'PAUSING', now=self._clock()),
        ))

    async def resume(self, environment_id: str, requester_id: str) -> TeamEnvironment:
        env = await self.get(environment_id, requester_id)
        if env.status != 'PAUSED':
            raise IllegalState(f'Cannot resume environment in status {env.status}')
        return await self._move(
            env, transition_environment(env, 'RESUMING', now=self._clock()),
        )

    async def retry(self, environment_id: str, requester_id: str) -> TeamEnvironment:
        """Re-apply the current parameters of an environment in ERROR."""
        env = await self.get(environment_id, requester_id)
        if env.status != 'ERROR':
            raise IllegalState(f'Cannot retry environment in status {env.status}')
        return await self._move(
            env, start_update(env, env.parameters, now=self._clock()),
        )

    # ── Private helpers ──────────────────────────────────────────────

    @staticmethod
    def _guarded(env: TeamEnvironment, action: str, compute: Callable[[], TeamEnvironment]) -> TeamEnvironment:
        try:
            return compute()
        except InvalidStateTransition as e:
            raise IllegalState(
                f'Cannot {action} environment in status {env.status}'
            ) from e

    def _check_template_support(
        self,
        env: TeamEnvironment,
        parameters: EnvironmentParameters,
    ) -> None:
        template = self._templates.get(env.template_id)
        if template is None:
            return
        errors: list[FieldError] = []
        if not template.supports_region(parameters.region):
            errors.append(FieldError(
                'parameters.region',
                f'Template {template.id!r} does not support region {parameters.region!r}',
            ))
        if not template.supports_size(parameters.size):
            errors.append(FieldError(
                'parameters.size',
                f'Template {template.id!r} does not support size {parameters.size!r}',
            ))
        if errors:
            raise ValidationError(errors)

    async def _move(self, before: TeamEnvironment, after: TeamEnvironment) -> TeamEnvironment:
        updated = await self._repo.update(before.id, changed_fields(before, after))
        if updated is None:
            raise IllegalState(f'Environment {before.id!r} was removed concurrently')
        logger.info(
            'Environment %s: %s -> %s',
            before.id,
            before.status,
            updated.status,
            extra={
                'resource_id': before.id,
                'from_status': before.status,
                'to_status': updated.status,
            },
        )
        return updated
