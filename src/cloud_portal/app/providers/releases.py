"""Environment release adapters (Crossplane Helm ``Release``).

A team environment is deployed as one release. ``apply_release`` converges
the release onto the environment's desired spec (size, replicas, paused
flag), ``get_release`` returns the release as last observed and
``delete_release`` removes it. ``to_release_status`` maps the release's
native conditions onto pending/ready/paused/failed.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Mapping

from ..errors import AdapterError
from ..models import TeamEnvironment
from .kubernetes import (
    KubernetesAPIError,
    KubernetesCustomObjectsClient,
    KubernetesNotFoundError,
)

logger = logging.getLogger(__name__)

ADAPTER_NAME = 'releases'
RELEASE_KIND = 'Release'

LABEL_PREFIX = 'portal.example.com'
MANAGED_BY_LABEL = f'{LABEL_PREFIX}/managed-by'
TEAM_ID_LABEL = f'{LABEL_PREFIX}/team-id'
TEMPLATE_LABEL = f'{LABEL_PREFIX}/template-id'
SIZE_LABEL = f'{LABEL_PREFIX}/size'
ENVIRONMENT_NAME_ANNOTATION = f'{LABEL_PREFIX}/environment-name'
PAUSED_ANNOTATION = f'{LABEL_PREFIX}/paused'
MANAGED_BY = 'cloud-portal'

# Statuses whose desired release is scaled to zero.
PAUSED_STATUSES = frozenset({'PAUSING', 'PAUSED'})

RESOURCE_SIZES: Mapping[str, Mapping[str, Any]] = MappingProxyType(
    {
        'small': {
            'requests': {'memory': '256Mi', 'cpu': '100m'},
            'limits': {'memory': '512Mi', 'cpu': '500m'},
        },
        'medium': {
            'requests': {'memory': '512Mi', 'cpu': '200m'},
            'limits': {'memory': '1Gi', 'cpu': '1000m'},
        },
        'large': {
            'requests': {'memory': '1Gi', 'cpu': '500m'},
            'limits': {'memory': '2Gi', 'cpu': '2000m'},
        },
        'xlarge': {
            'requests': {'memory': '2Gi', 'cpu': '1000m'},
            'limits': {'memory': '4Gi', 'cpu': '4000m'},
        },
    }
)

DEFAULT_CHART = MappingProxyType(
    {
        'name': 'postgresql',
        'repository': 'https://charts.example.com',
        'version': '13.2.24',
    }
)


def release_name_for(environment: TeamEnvironment) -> str:
    return environment.release_name or environment.id


# ── Status mapping ───────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class ReleaseStatus:
    status: str
    error_message: str | None = None
    endpoints: Mapping[str, str] = field(default_factory=dict)


def to_release_status(release: Mapping[str, Any]) -> ReleaseStatus:
    """Map a release snapshot onto pending / ready / paused / failed."""
    status = release.get('status') or {}
    conditions = {
        c['type']: c
        for c in status.get('conditions') or ()
        if isinstance(c, Mapping) and c.get('type')
    }
    synced = conditions.get('Synced') or {}
    ready = conditions.get('Ready') or {}

    if synced.get('status') == 'False' and synced.get('reason') == 'ReconcileError':
        return ReleaseStatus(
            'failed', synced.get('message') or 'Failed to reconcile release',
        )

    deployed = (status.get('atProvider') or {}).get('state') == 'deployed'
    if ready.get('status') == 'True' and synced.get('status') == 'True' and deployed:
        metadata = release.get('metadata') or {}
        annotations = metadata.get('annotations') or {}
        if annotations.get(PAUSED_ANNOTATION) == 'true':
            return ReleaseStatus('paused')
        return ReleaseStatus('ready', endpoints=_endpoints(release))

    return ReleaseStatus('pending')


def _endpoints(release: Mapping[str, Any]) -> dict[str, str]:
    name = (release.get('metadata') or {}).get('name')
    namespace = (
        (release.get('spec') or {}).get('forProvider') or {}
    ).get('namespace')
    if not name or not namespace:
        return {}
    return {'database': f'{name}-postgresql.{namespace}.svc.cluster.local'}


def build_release(
    environment: TeamEnvironment,
    *,
    api_version: str,
    namespace: str,
    chart_repository: str | None = None,
) -> dict[str, Any]:
    """Render the desired release for an environment snapshot."""
    params = environment.parameters
    paused = environment.status in PAUSED_STATUSES
    if paused:
        replicas = 0
    elif params.enable_autoscaling and params.min_instances:
        replicas = params.min_instances
    else:
        replicas = 1

    return {
        'apiVersion': api_version,
        'kind': RELEASE_KIND,
        'metadata': {
            'name': release_name_for(environment),
            'labels': {
                MANAGED_BY_LABEL: MANAGED_BY,
                TEAM_ID_LABEL: environment.team_id,
                TEMPLATE_LABEL: environment.template_id,
                SIZE_LABEL: params.size,
            },
            'annotations': {
                ENVIRONMENT_NAME_ANNOTATION: environment.name,
                # null removes the annotation under merge-patch
                PAUSED_ANNOTATION: 'true' if paused else None,
            },
        },
        'spec': {
            'providerConfigRef': {'name': 'default'},
            'forProvider': {
                'chart': {
                    **DEFAULT_CHART,
                    'repository': chart_repository or DEFAULT_CHART['repository'],
                },
                'namespace': namespace,
                'skipCreateNamespace': True,
                'values': {
                    'primary': {
                        'replicaCount': replicas,
                        'resources': dict(RESOURCE_SIZES[params.size]),
                    },
                    'metrics': {'enabled': params.enable_monitoring},
                    'backup': {'enabled': params.enable_backup},
                },
            },
        },
    }


def _without_nulls(body: dict[str, Any]) -> dict[str, Any]:
    annotations = body['metadata']['annotations']
    body['metadata']['annotations'] = {
        k: v for k, v in annotations.items() if v is not None
    }
    return body


# ── In-memory controller ─────────────────────────────────────────────


class InMemoryReleaseController:
    """Deterministic release controller for local development and tests.

    A release reports deployed on its ``ready_after_polls``-th read after
    each apply; with ``fail_with`` it reports a ReconcileError instead.
    """

    def __init__(
        self,
        *,
        ready_after_polls: int = 1,
        fail_with: str | None = None,
        namespace: str = 'environments',
    ) -> None:
        self._ready_after_polls = max(ready_after_polls, 0)
        self._fail_with = fail_with
        self._namespace = namespace
        self._releases: dict[str, dict[str, Any]] = {}
        self._polls: dict[str, int] = {}
        self.applied: list[str] = []
        self.deleted: list[str] = []

    async def apply_release(self, environment: TeamEnvironment) -> str:
        body = _without_nulls(build_release(
            environment,
            api_version='helm.crossplane.io/v1beta1',
            namespace=self._namespace,
        ))
        name = body['metadata']['name']
        previous = self._releases.get(name)
        if previous is None or previous['spec'] != body['spec'] or (
            previous['metadata'] != body['metadata']
        ):
            self._polls[name] = 0
        self._releases[name] = body
        self.applied.append(name)
        return name

    async def get_release(self, release_name: str) -> dict[str, Any] | None:
        release = self._releases.get(release_name)
        if release is None:
            return None
        self._polls[release_name] = self._polls.get(release_name, 0) + 1
        if self._polls[release_name] >= self._ready_after_polls:
            release['status'] = self._settled_status()
        else:
            release['status'] = {}
        return release

    async def delete_release(self, release_name: str) -> None:
        self._releases.pop(release_name, None)
        self._polls.pop(release_name, None)
        self.deleted.append(release_name)

    def forget(self, release_name: str) -> None:
        """Drop a release without recording a delete, as if removed externally."""
        self._releases.pop(release_name, None)
        self._polls.pop(release_name, None)

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
            'atProvider': {'state': 'deployed'},
            'conditions': [
                {'type': 'Synced', 'status': 'True'},
                {'type': 'Ready', 'status': 'True'},
            ],
        }


# ── Kubernetes controller ────────────────────────────────────────────


class KubernetesReleaseController:
    """Release controller backed by the Kubernetes custom-objects API."""

    def __init__(
        self,
        client: KubernetesCustomObjectsClient,
        *,
        target_namespace: str = 'environments',
        chart_repository: str | None = None,
    ) -> None:
        self._client = client
        self._target_namespace = target_namespace
        self._chart_repository = chart_repository

    async def apply_release(self, environment: TeamEnvironment) -> str:
        """Create the release, or merge-patch it onto the desired spec."""
        body = build_release(
            environment,
            api_version=self._client.api_version,
            namespace=self._target_namespace,
            chart_repository=self._chart_repository,
        )
        name = body['metadata']['name']
        try:
            try:
                await self._client.get(name)
            except KubernetesNotFoundError:
                await self._client.create(_without_nulls(body))
                return name
            await self._client.patch(
                name,
                {'metadata': body['metadata'], 'spec': body['spec']},
            )
        except KubernetesAPIError as e:
            raise _adapter_error('apply_release', e) from e
        return name

    async def get_release(self, release_name: str) -> dict[str, Any] | None:
        try:
            return await self._client.get(release_name)
        except KubernetesNotFoundError:
            return None
        except KubernetesAPIError as e:
            raise _adapter_error('get_release', e) from e

    async def delete_release(self, release_name: str) -> None:
        try:
            await self._client.delete(release_name)
        except KubernetesNotFoundError:
            return
        except KubernetesAPIError as e:
            raise _adapter_error('delete_release', e) from e


def _adapter_error(operation: str, error: KubernetesAPIError) -> AdapterError:
    logger.warning(
        'Release %s failed: %s',
        operation,
        error,
        extra={'adapter': ADAPTER_NAME, 'status_code': error.status_code},
    )
    return AdapterError(
        ADAPTER_NAME,
        f'{operation} failed: {error.message}',
        retryable=error.transient,
    )
