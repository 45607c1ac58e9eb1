"""Submission validation tests."""

from __future__ import annotations

from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest

from cloud_portal.app.errors import ValidationError
from cloud_portal.app.models import (
    AccountRequestInput,
    EnvironmentInput,
    EnvironmentParameters,
    GuardrailParams,
    LinkAccountInput,
)
from cloud_portal.app.provisioning.templates import DEFAULT_TEMPLATES, build_catalog
from cloud_portal.app.provisioning.validation import (
    validate_account_request,
    validate_environment,
    validate_environment_parameters,
    validate_link_account,
)

NOW = datetime(2026, 3, 2, 9, 0, 0, tzinfo=UTC)


def _account_input(**overrides) -> AccountRequestInput:
    defaults = dict(
        account_name='payments-dev',
        owner_email='owner@example.com',
        purpose='development',
        primary_region='us-east-1',
    )
    defaults.update(overrides)
    return AccountRequestInput(**defaults)


def _env_input(**overrides) -> EnvironmentInput:
    defaults = dict(
        name='feature-x',
        team_id='team-1',
        template_id='dev-standard',
        template_version='1.2.0',
        aws_account_id='123456789012',
    )
    defaults.update(overrides)
    return EnvironmentInput(**defaults)


# ── Account requests ─────────────────────────────────────────────────


class TestAccountRequestValidation:
    def test_valid_request_passes(self):
        validate_account_request(_account_input(), now=NOW)

    def test_collects_every_violation(self):
        data = _account_input(
            account_name='ab',
            owner_email='not-an-email',
            purpose='fun',
            primary_region='mars-1',
        )
        with pytest.raises(ValidationError) as exc_info:
            validate_account_request(data, now=NOW)
        fields = {e.field for e in exc_info.value.errors}
        assert fields == {'account_name', 'owner_email', 'purpose', 'primary_region'}
        assert len(exc_info.value.messages) == 4

    def test_name_too_long(self):
        with pytest.raises(ValidationError, match='must not exceed 100'):
            validate_account_request(_account_input(account_name='x' * 101), now=NOW)

    def test_ttl_must_be_future(self):
        with pytest.raises(ValidationError, match='future date'):
            validate_account_request(
                _account_input(ttl=NOW - timedelta(days=1)), now=NOW,
            )

    def test_ttl_capped_at_ninety_days(self):
        with pytest.raises(ValidationError, match='90 days'):
            validate_account_request(
                _account_input(ttl=NOW + timedelta(days=91)), now=NOW,
            )

    def test_guardrail_budget_rules(self):
        guardrails = GuardrailParams(
            budget_amount_usd=-1,
            budget_threshold_percent=150,
            allowed_regions=('us-east-1', 'moon-1'),
        )
        with pytest.raises(ValidationError) as exc_info:
            validate_account_request(_account_input(guardrails=guardrails), now=NOW)
        fields = [e.field for e in exc_info.value.errors]
        assert 'guardrails.budget_amount_usd' in fields
        assert 'guardrails.budget_threshold_percent' in fields
        assert 'guardrails.allowed_regions' in fields


# ── Linked accounts ──────────────────────────────────────────────────


class TestLinkAccountValidation:
    def _input(self, **overrides) -> LinkAccountInput:
        defaults = dict(
            account_id='123456789012',
            account_name='legacy-prod',
            role_arn='arn:aws:iam::123456789012:role/PortalAccess',
            owner_email='owner@example.com',
        )
        defaults.update(overrides)
        return LinkAccountInput(**defaults)

    def test_valid_link_passes(self):
        validate_link_account(self._input())

    def test_account_id_must_be_twelve_digits(self):
        with pytest.raises(ValidationError, match='exactly 12 digits'):
            validate_link_account(self._input(
                account_id='1234',
                role_arn='arn:aws:iam::123456789012:role/PortalAccess',
            ))

    def test_role_arn_must_match_account(self):
        with pytest.raises(ValidationError, match='does not match'):
            validate_link_account(self._input(
                role_arn='arn:aws:iam::999999999999:role/PortalAccess',
            ))

    def test_role_arn_format(self):
        with pytest.raises(ValidationError, match='Invalid IAM role ARN'):
            validate_link_account(self._input(role_arn='PortalAccess'))


# ── Environments ─────────────────────────────────────────────────────


class TestEnvironmentValidation:
    def test_valid_environment_passes(self):
        validate_environment(_env_input(), templates=DEFAULT_TEMPLATES, now=NOW)

    def test_unknown_template(self):
        with pytest.raises(ValidationError, match='Unknown template'):
            validate_environment(
                _env_input(template_id='nope'), templates=DEFAULT_TEMPLATES, now=NOW,
            )

    def test_template_region_and_size_support(self):
        params = EnvironmentParameters(size='xlarge', region='ap-northeast-1')
        with pytest.raises(ValidationError) as exc_info:
            validate_environment(
                _env_input(template_id='sandbox-basic', template_version='1.0.0', parameters=params),
                templates=DEFAULT_TEMPLATES,
                now=NOW,
            )
        fields = {e.field for e in exc_info.value.errors}
        assert fields == {'parameters.region', 'parameters.size'}

    def test_semver_required(self):
        with pytest.raises(ValidationError, match='semantic versioning'):
            validate_environment(_env_input(template_version='v1'), now=NOW)

    def test_autoscaling_requires_bounds(self):
        params = EnvironmentParameters(enable_autoscaling=True)
        with pytest.raises(ValidationError, match='requires minInstances and maxInstances'):
            validate_environment_parameters(params, now=NOW)

    def test_autoscaling_bounds_ordering(self):
        params = EnvironmentParameters(
            enable_autoscaling=True, min_instances=5, max_instances=2,
        )
        with pytest.raises(ValidationError, match='cannot exceed maxInstances'):
            validate_environment_parameters(params, now=NOW)

    def test_autoscaling_upper_limit(self):
        params = EnvironmentParameters(
            enable_autoscaling=True, min_instances=1, max_instances=101,
        )
        with pytest.raises(ValidationError, match='cannot exceed 100'):
            validate_environment_parameters(params, now=NOW)

    def test_parameter_ttl_in_past(self):
        params = EnvironmentParameters(ttl=NOW - timedelta(minutes=1))
        with pytest.raises(ValidationError, match='future date'):
            validate_environment_parameters(params, now=NOW)


# ── Template catalog ─────────────────────────────────────────────────


class TestTemplateCatalog:
    def test_builtin_catalog(self):
        assert set(DEFAULT_TEMPLATES) == {'sandbox-basic', 'dev-standard', 'staging-ha'}
        assert DEFAULT_TEMPLATES['dev-standard'].supports_size('medium')

    def test_duplicate_ids_rejected(self):
        template = DEFAULT_TEMPLATES['sandbox-basic']
        with pytest.raises(ValueError, match='duplicate'):
            build_catalog([template, template])

    def test_invalid_template_rejected(self):
        template = replace(DEFAULT_TEMPLATES['sandbox-basic'], allowed_sizes=('huge',))
        with pytest.raises(ValidationError, match='Invalid sizes'):
            build_catalog([template])

    def test_catalog_is_read_only(self):
        with pytest.raises(TypeError):
            DEFAULT_TEMPLATES['x'] = DEFAULT_TEMPLATES['sandbox-basic']  # type: ignore[index]
