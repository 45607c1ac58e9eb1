"""Creation-time validation for submitted resources.

Validation is separate from transition legality: it runs once, before a
resource enters the state machine, and collects every violation instead of
stopping at the first one.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone
from typing import Mapping

from ..errors import FieldError, ValidationError
from ..models import (
    ENVIRONMENT_SIZES,
    ENVIRONMENT_TYPES,
    PURPOSES,
    AccountRequestInput,
    EnvironmentInput,
    EnvironmentParameters,
    EnvironmentTemplate,
    GuardrailParams,
    LinkAccountInput,
)

AWS_REGIONS = (
    'us-east-1',
    'us-east-2',
    'us-west-1',
    'us-west-2',
    'eu-west-1',
    'eu-west-2',
    'eu-central-1',
    'ap-southeast-1',
    'ap-southeast-2',
    'ap-northeast-1',
)

NAME_MIN_LENGTH = 3
NAME_MAX_LENGTH = 100
MAX_INSTANCES_LIMIT = 100
ACCOUNT_TTL_MAX_DAYS = 90

_EMAIL_RE = re.compile(r'^[^\s@]+@[^\s@]+\.[^\s@]+$')
_ACCOUNT_ID_RE = re.compile(r'^\d{12}$')
_ROLE_ARN_RE = re.compile(r'^arn:aws:iam::(\d{12}):role/[\w+=,.@-]+$')
_SEMVER_RE = re.compile(r'^\d+\.\d+\.\d+$')


# ── Public validators ────────────────────────────────────────────────


def validate_account_request(
    data: AccountRequestInput,
    *,
    now: datetime | None = None,
) -> None:
    """Raise ``ValidationError`` listing every problem with the request."""
    now = now or datetime.now(timezone.utc)
    errors: list[FieldError] = []

    _check_name(errors, 'account_name', data.account_name, 'Account name')
    _check_email(errors, 'owner_email', data.owner_email, 'Invalid account email address')
    if data.purpose not in PURPOSES:
        errors.append(FieldError(
            'purpose',
            f'Invalid purpose. Must be one of: {", ".join(PURPOSES)}',
        ))
    _check_region(errors, 'primary_region', data.primary_region)
    _check_guardrails(errors, data.guardrails)

    if data.ttl is not None:
        _check_future(errors, 'ttl', data.ttl, now)
        aware = data.ttl.tzinfo is not None
        if aware and data.ttl > now + timedelta(days=ACCOUNT_TTL_MAX_DAYS):
            errors.append(FieldError(
                'ttl',
                f'TTL cannot be more than {ACCOUNT_TTL_MAX_DAYS} days in the future',
            ))

    _raise_if_any(errors)


def validate_link_account(data: LinkAccountInput) -> None:
    errors: list[FieldError] = []

    account_id_ok = bool(_ACCOUNT_ID_RE.match(data.account_id or ''))
    if not account_id_ok:
        errors.append(FieldError('account_id', 'Account ID must be exactly 12 digits'))
    _check_name(errors, 'account_name', data.account_name, 'Account name')

    match = _ROLE_ARN_RE.match(data.role_arn or '')
    if match is None:
        errors.append(FieldError('role_arn', 'Invalid IAM role ARN format'))
    elif account_id_ok and match.group(1) != data.account_id:
        errors.append(FieldError(
            'role_arn',
            'Role ARN account ID does not match the target account ID',
        ))

    _check_email(errors, 'owner_email', data.owner_email, 'Invalid owner email address')
    _raise_if_any(errors)


def validate_environment(
    data: EnvironmentInput,
    *,
    templates: Mapping[str, EnvironmentTemplate] | None = None,
    now: datetime | None = None,
) -> None:
    now = now or datetime.now(timezone.utc)
    errors: list[FieldError] = []

    _check_name(errors, 'name', data.name, 'Environment name')
    if not data.team_id or not data.team_id.strip():
        errors.append(FieldError('team_id', 'Team ID is required'))
    if not _ACCOUNT_ID_RE.match(data.aws_account_id or ''):
        errors.append(FieldError(
            'aws_account_id', 'AWS account ID must be exactly 12 digits',
        ))
    if not _SEMVER_RE.match(data.template_version or ''):
        errors.append(FieldError(
            'template_version',
            'Version must follow semantic versioning (e.g., 1.0.0)',
        ))

    errors.extend(parameter_errors(data.parameters, now=now))

    if templates is not None:
        template = templates.get(data.template_id)
        if template is None:
            errors.append(FieldError(
                'template_id', f'Unknown template {data.template_id!r}',
            ))
        else:
            if not template.supports_region(data.parameters.region):
                errors.append(FieldError(
                    'parameters.region',
                    f'Template {template.id!r} does not support region '
                    f'{data.parameters.region!r}',
                ))
            if not template.supports_size(data.parameters.size):
                errors.append(FieldError(
                    'parameters.size',
                    f'Template {template.id!r} does not support size '
                    f'{data.parameters.size!r}',
                ))

    _raise_if_any(errors)


def validate_environment_parameters(
    params: EnvironmentParameters,
    *,
    now: datetime | None = None,
) -> None:
    """Validate a parameter bundle on its own, e.g. for an update."""
    _raise_if_any(
        parameter_errors(params, now=now or datetime.now(timezone.utc)),
    )


def parameter_errors(
    params: EnvironmentParameters,
    *,
    now: datetime,
) -> list[FieldError]:
    errors: list[FieldError] = []

    if params.size not in ENVIRONMENT_SIZES:
        errors.append(FieldError(
            'parameters.size',
            f'Invalid size. Must be one of: {", ".join(ENVIRONMENT_SIZES)}',
        ))
    _check_region(errors, 'parameters.region', params.region)
    if params.ttl is not None:
        _check_future(errors, 'parameters.ttl', params.ttl, now)

    if params.enable_autoscaling:
        lo, hi = params.min_instances, params.max_instances
        if lo is None or hi is None:
            errors.append(FieldError(
                'parameters',
                'Auto-scaling requires minInstances and maxInstances',
            ))
        if lo is not None and lo < 1:
            errors.append(FieldError(
                'parameters.min_instances', 'minInstances must be at least 1',
            ))
        if lo is not None and hi is not None and lo > hi:
            errors.append(FieldError(
                'parameters.min_instances',
                'minInstances cannot exceed maxInstances',
            ))
        if hi is not None and hi > MAX_INSTANCES_LIMIT:
            errors.append(FieldError(
                'parameters.max_instances',
                f'maxInstances cannot exceed {MAX_INSTANCES_LIMIT}',
            ))
    return errors


def validate_template(template: EnvironmentTemplate) -> None:
    errors: list[FieldError] = []

    _check_name(errors, 'name', template.name, 'Template name')
    description = (template.description or '').strip()
    if len(description) < 10:
        errors.append(FieldError(
            'description', 'Template description must be at least 10 characters',
        ))
    if len(template.description or '') > 500:
        errors.append(FieldError(
            'description', 'Template description must not exceed 500 characters',
        ))
    if template.type not in ENVIRONMENT_TYPES:
        errors.append(FieldError(
            'type',
            f'Invalid type. Must be one of: {", ".join(ENVIRONMENT_TYPES)}',
        ))
    if not _SEMVER_RE.match(template.version or ''):
        errors.append(FieldError(
            'version', 'Version must follow semantic versioning (e.g., 1.0.0)',
        ))
    if not template.allowed_regions:
        errors.append(FieldError(
            'allowed_regions', 'At least one allowed region must be specified',
        ))
    for region in template.allowed_regions:
        _check_region(errors, 'allowed_regions', region)
    if not template.allowed_sizes:
        errors.append(FieldError(
            'allowed_sizes', 'At least one allowed size must be specified',
        ))
    invalid_sizes = [s for s in template.allowed_sizes if s not in ENVIRONMENT_SIZES]
    if invalid_sizes:
        errors.append(FieldError(
            'allowed_sizes', f'Invalid sizes: {", ".join(invalid_sizes)}',
        ))
    if template.estimated_cost_hourly < 0 or template.estimated_cost_monthly < 0:
        errors.append(FieldError(
            'estimated_cost', 'Estimated costs cannot be negative',
        ))
    if not template.resources:
        errors.append(FieldError(
            'resources', 'At least one resource must be specified',
        ))

    _raise_if_any(errors)


# ── Private helpers ──────────────────────────────────────────────────


def _check_name(
    errors: list[FieldError],
    field: str,
    value: str | None,
    label: str,
) -> None:
    if not value or len(value.strip()) < NAME_MIN_LENGTH:
        errors.append(FieldError(
            field, f'{label} must be at least {NAME_MIN_LENGTH} characters',
        ))
    elif len(value) > NAME_MAX_LENGTH:
        errors.append(FieldError(
            field, f'{label} must not exceed {NAME_MAX_LENGTH} characters',
        ))


def _check_email(
    errors: list[FieldError],
    field: str,
    value: str | None,
    message: str,
) -> None:
    if not _EMAIL_RE.match(value or ''):
        errors.append(FieldError(field, message))


def _check_region(errors: list[FieldError], field: str, region: str | None) -> None:
    if region not in AWS_REGIONS:
        errors.append(FieldError(
            field,
            f'Invalid AWS region {region!r}. Must be one of: {", ".join(AWS_REGIONS)}',
        ))


def _check_future(
    errors: list[FieldError],
    field: str,
    value: datetime,
    now: datetime,
) -> None:
    if value.tzinfo is None:
        errors.append(FieldError(field, 'TTL must be timezone-aware'))
    elif value <= now:
        errors.append(FieldError(field, 'TTL must be a future date'))


def _check_guardrails(errors: list[FieldError], params: GuardrailParams) -> None:
    if params.budget_amount_usd is not None and params.budget_amount_usd < 0:
        errors.append(FieldError(
            'guardrails.budget_amount_usd', 'Budget amount cannot be negative',
        ))
    threshold = params.budget_threshold_percent
    if threshold is not None and not 0 < threshold <= 100:
        errors.append(FieldError(
            'guardrails.budget_threshold_percent',
            'Budget threshold must be between 0 and 100 percent',
        ))
    for region in params.allowed_regions or ():
        _check_region(errors, 'guardrails.allowed_regions', region)


def _raise_if_any(errors: list[FieldError]) -> None:
    if errors:
        raise ValidationError(errors)
