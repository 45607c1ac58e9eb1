"""Request bodies and response payload helpers for the portal API.

Bodies accept camelCase (the web client's wire format) or snake_case field
names. They only check shapes; value rules live in the domain validators so
that every violation is reported together.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ..models import (
    AccountRequest,
    AccountRequestInput,
    EnvironmentInput,
    EnvironmentParameters,
    GuardrailParams,
    LinkAccountInput,
    TeamEnvironment,
    to_payload,
)
from ..provisioning.state_machine import progress, status_message


class _Body(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ── Requests ─────────────────────────────────────────────────────────


class GuardrailParamsBody(_Body):
    budget_amount_usd: float | None = Field(default=None, alias='budgetAmountUSD')
    budget_threshold_percent: float | None = None
    allowed_regions: list[str] | None = None
    enable_cloudtrail: bool = Field(default=True, alias='enableCloudTrail')
    enable_config: bool = True

    def to_params(self) -> GuardrailParams:
        return GuardrailParams(
            budget_amount_usd=self.budget_amount_usd,
            budget_threshold_percent=self.budget_threshold_percent,
            allowed_regions=(
                tuple(self.allowed_regions)
                if self.allowed_regions is not None else None
            ),
            enable_cloudtrail=self.enable_cloudtrail,
            enable_config=self.enable_config,
        )


class AccountRequestBody(_Body):
    account_name: str
    owner_email: str
    purpose: str
    primary_region: str
    guardrails: GuardrailParamsBody = Field(default_factory=GuardrailParamsBody)
    ttl: datetime | None = None

    def to_input(self) -> AccountRequestInput:
        return AccountRequestInput(
            account_name=self.account_name,
            owner_email=self.owner_email,
            purpose=self.purpose,
            primary_region=self.primary_region,
            guardrails=self.guardrails.to_params(),
            ttl=self.ttl,
        )


class LinkAccountBody(_Body):
    account_id: str
    account_name: str
    role_arn: str
    owner_email: str

    def to_input(self) -> LinkAccountInput:
        return LinkAccountInput(
            account_id=self.account_id,
            account_name=self.account_name,
            role_arn=self.role_arn,
            owner_email=self.owner_email,
        )


class SecureAccountBody(_Body):
    guardrails: GuardrailParamsBody = Field(default_factory=GuardrailParamsBody)
    primary_region: str | None = None


class EnvironmentParametersBody(_Body):
    size: str = 'small'
    region: str = 'us-east-1'
    enable_autoscaling: bool = False
    min_instances: int | None = None
    max_instances: int | None = None
    ttl: datetime | None = None
    enable_monitoring: bool = True
    enable_backup: bool = False

    def to_parameters(self) -> EnvironmentParameters:
        return EnvironmentParameters(**self.model_dump())


class EnvironmentBody(_Body):
    name: str
    team_id: str
    template_id: str
    template_version: str
    aws_account_id: str
    parameters: EnvironmentParametersBody = Field(
        default_factory=EnvironmentParametersBody,
    )

    def to_input(self) -> EnvironmentInput:
        return EnvironmentInput(
            name=self.name,
            team_id=self.team_id,
            template_id=self.template_id,
            template_version=self.template_version,
            aws_account_id=self.aws_account_id,
            parameters=self.parameters.to_parameters(),
        )


# ── Responses ────────────────────────────────────────────────────────


def resource_payload(snapshot: Any) -> dict[str, Any]:
    """Serialize a snapshot, adding progress for stateful resources."""
    payload = to_payload(snapshot)
    if isinstance(snapshot, (AccountRequest, TeamEnvironment)):
        payload['progress'] = progress(snapshot)
        payload['status_message'] = status_message(snapshot)
    return payload


def page_payload(items: list[Any], total: int, *, limit: int, offset: int) -> dict[str, Any]:
    return {
        'items': [resource_payload(item) for item in items],
        'total': total,
        'limit': limit,
        'offset': offset,
    }
