"""Resource snapshots owned by the resource repository.

Every entity is an immutable snapshot. State-machine functions take a
snapshot and return a new one; callers persist the result.
"""

from __future__ import annotations

from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime
from typing import Any, Mapping

# ── Status vocabularies ──────────────────────────────────────────────

ACCOUNT_REQUEST_STATUSES = (
    'REQUESTED',
    'VALIDATING',
    'CREATING',
    'GUARDRAILING',
    'READY',
    'FAILED',
)

ENVIRONMENT_STATUSES = (
    'REQUESTED',
    'VALIDATING',
    'CREATING',
    'READY',
    'UPDATING',
    'PAUSING',
    'PAUSED',
    'RESUMING',
    'ERROR',
    'DELETING',
    'DELETED',
)

AWS_ACCOUNT_STATUSES = ('linked', 'guardrailing', 'guardrailed', 'error')
AWS_ACCOUNT_TYPES = ('linked', 'managed')

PURPOSES = ('development', 'staging', 'production')
ENVIRONMENT_SIZES = ('small', 'medium', 'large', 'xlarge')
ENVIRONMENT_TYPES = ('sandbox', 'development', 'staging', 'production')
HEALTH_VALUES = ('healthy', 'degraded', 'unhealthy')

# Claim spec defaults for parameters left unset on the request.
DEFAULT_BUDGET_AMOUNT_USD = 100.0
DEFAULT_BUDGET_THRESHOLD_PERCENT = 80.0
DEFAULT_ALLOWED_REGIONS = ('us-east-1', 'eu-west-1')


# ── Value objects ────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class GuardrailParams:
    """Guardrail bundle applied to an account once it exists.

    Always present on an account request; individual fields may be None,
    in which case the claim falls back to the platform defaults.
    """

    budget_amount_usd: float | None = None
    budget_threshold_percent: float | None = None
    allowed_regions: tuple[str, ...] | None = None
    enable_cloudtrail: bool = True
    enable_config: bool = True

    def claim_spec(self, primary_region: str | None = None) -> dict[str, Any]:
        """Render the guardrail portion of a claim spec with defaults filled."""
        return {
            'enableCloudTrail': self.enable_cloudtrail,
            'enableConfig': self.enable_config,
            'budgetAmountUSD': (
                self.budget_amount_usd
                if self.budget_amount_usd is not None
                else DEFAULT_BUDGET_AMOUNT_USD
            ),
            'budgetThresholdPercent': (
                self.budget_threshold_percent
                if self.budget_threshold_percent is not None
                else DEFAULT_BUDGET_THRESHOLD_PERCENT
            ),
            'primaryRegion': primary_region or 'us-east-1',
            'allowedRegions': list(
                self.allowed_regions
                if self.allowed_regions is not None
                else DEFAULT_ALLOWED_REGIONS
            ),
        }


@dataclass(frozen=True, slots=True)
class EnvironmentParameters:
    size: str = 'small'
    region: str = 'us-east-1'
    enable_autoscaling: bool = False
    min_instances: int | None = None
    max_instances: int | None = None
    ttl: datetime | None = None
    enable_monitoring: bool = True
    enable_backup: bool = False


# ── Resources ────────────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class AccountRequest:
    """A user's intent to obtain a new AWS account."""

    id: str
    requester_id: str
    account_name: str
    owner_email: str
    purpose: str
    primary_region: str
    guardrails: GuardrailParams = field(default_factory=GuardrailParams)
    ttl: datetime | None = None
    status: str = 'REQUESTED'
    external_request_id: str | None = None
    aws_account_id: str | None = None
    guardrail_claim_name: str | None = None
    error_message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    completed_at: datetime | None = None

    @property
    def owner_id(self) -> str:
        return self.requester_id


@dataclass(frozen=True, slots=True)
class AwsAccountRef:
    """A linked or portal-managed AWS account owned by one user."""

    id: str
    owner_id: str
    account_id: str
    account_name: str
    role_arn: str
    owner_email: str
    type: str = 'linked'
    status: str = 'linked'
    guardrail_claim_name: str | None = None
    error_message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class TeamEnvironment:
    """An ephemeral environment deployed into a team's AWS account."""

    id: str
    name: str
    team_id: str
    template_id: str
    template_version: str
    aws_account_id: str
    creator_id: str
    parameters: EnvironmentParameters = field(
        default_factory=EnvironmentParameters,
    )
    resources: tuple[str, ...] = ()
    status: str = 'REQUESTED'
    health: str | None = None
    endpoints: Mapping[str, str] = field(default_factory=dict)
    release_name: str | None = None
    last_reconciled: datetime | None = None
    error_message: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def owner_id(self) -> str:
        return self.creator_id


@dataclass(frozen=True, slots=True)
class EnvironmentTemplate:
    """Catalog entry describing what an environment deploys."""

    id: str
    name: str
    description: str
    type: str
    version: str
    allowed_regions: tuple[str, ...]
    allowed_sizes: tuple[str, ...]
    estimated_cost_hourly: float
    estimated_cost_monthly: float
    resources: tuple[str, ...]

    def supports_region(self, region: str) -> bool:
        return region in self.allowed_regions

    def supports_size(self, size: str) -> bool:
        return size in self.allowed_sizes


# ── Submission inputs ────────────────────────────────────────────────


@dataclass(frozen=True, slots=True)
class AccountRequestInput:
    account_name: str
    owner_email: str
    purpose: str
    primary_region: str
    guardrails: GuardrailParams = field(default_factory=GuardrailParams)
    ttl: datetime | None = None


@dataclass(frozen=True, slots=True)
class LinkAccountInput:
    account_id: str
    account_name: str
    role_arn: str
    owner_email: str


@dataclass(frozen=True, slots=True)
class EnvironmentInput:
    name: str
    team_id: str
    template_id: str
    template_version: str
    aws_account_id: str
    parameters: EnvironmentParameters = field(
        default_factory=EnvironmentParameters,
    )


# ── Snapshot helpers ─────────────────────────────────────────────────


def changed_fields(before: Any, after: Any) -> dict[str, Any]:
    """Return the fields of ``after`` that differ from ``before``.

    Used to persist a computed transition as a partial repository update.
    """
    if type(before) is not type(after):
        raise TypeError(
            f'cannot diff {type(before).__name__} against '
            f'{type(after).__name__}'
        )
    changes: dict[str, Any] = {}
    for f in fields(after):
        new_value = getattr(after, f.name)
        if getattr(before, f.name) != new_value:
            changes[f.name] = new_value
    return changes


def to_payload(value: Any) -> Any:
    """Convert a snapshot (or nested value) into a JSON-ready structure."""
    if is_dataclass(value) and not isinstance(value, type):
        return {f.name: to_payload(getattr(value, f.name)) for f in fields(value)}
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Mapping):
        return {str(k): to_payload(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [to_payload(v) for v in value]
    return value
