"""Provisioning state-machine tests for account requests, environments and accounts."""

from __future__ import annotations

import itertools
from dataclasses import replace
from datetime import UTC, datetime, timedelta

import pytest

from cloud_portal.app.errors import InvalidStateTransition, TransitionError
from cloud_portal.app.models import (
    AccountRequest,
    AwsAccountRef,
    EnvironmentParameters,
    TeamEnvironment,
)
from cloud_portal.app.provisioning.state_machine import (
    ACCOUNT_REQUEST_TRANSITIONS,
    ENVIRONMENT_TRANSITIONS,
    allowed_targets,
    can_transition,
    is_terminal,
    mark_environment_error,
    mark_environment_ready,
    mark_failed,
    mark_ready,
    progress,
    record_health,
    set_aws_account_id,
    start_creation,
    start_guardrailing,
    start_update,
    start_validation,
    status_message,
    transition,
    transition_account_request,
    transition_aws_account,
    transition_environment,
)


def _t(seconds: int) -> datetime:
    return datetime(2026, 3, 2, 9, 0, 0, tzinfo=UTC) + timedelta(seconds=seconds)


def _request(**overrides) -> AccountRequest:
    defaults = dict(
        id='req_1',
        requester_id='user-1',
        account_name='payments-dev',
        owner_email='owner@example.com',
        purpose='development',
        primary_region='us-east-1',
        created_at=_t(0),
        updated_at=_t(0),
    )
    defaults.update(overrides)
    return AccountRequest(**defaults)


def _env(**overrides) -> TeamEnvironment:
    defaults = dict(
        id='env_1',
        name='feature-x',
        team_id='team-1',
        template_id='dev-standard',
        template_version='1.2.0',
        aws_account_id='123456789012',
        creator_id='user-1',
        created_at=_t(0),
        updated_at=_t(0),
    )
    defaults.update(overrides)
    return TeamEnvironment(**defaults)


def _account(**overrides) -> AwsAccountRef:
    defaults = dict(
        id='acct_1',
        owner_id='user-1',
        account_id='123456789012',
        account_name='legacy-prod',
        role_arn='arn:aws:iam::123456789012:role/PortalAccess',
        owner_email='owner@example.com',
    )
    defaults.update(overrides)
    return AwsAccountRef(**defaults)


# ── Account requests ─────────────────────────────────────────────────


class TestAccountRequestHappyPath:
    def test_full_lifecycle(self):
        req = _request()
        req = start_validation(req, now=_t(1))
        assert req.status == 'VALIDATING'
        req = start_creation(req, external_request_id='car-1', now=_t(2))
        assert req.status == 'CREATING'
        assert req.external_request_id == 'car-1'
        req = set_aws_account_id(req, '123456789012', now=_t(3))
        req = start_guardrailing(req, now=_t(4), claim_name='guardrailed-aws-123456789012')
        assert req.status == 'GUARDRAILING'
        assert req.guardrail_claim_name == 'guardrailed-aws-123456789012'
        req = mark_ready(req, now=_t(5))
        assert req.status == 'READY'
        assert req.completed_at == _t(5)
        assert req.updated_at == _t(5)
        assert req.error_message is None

    def test_input_snapshot_is_not_mutated(self):
        req = _request()
        after = start_validation(req, now=_t(1))
        assert req.status == 'REQUESTED'
        assert req.updated_at == _t(0)
        assert after is not req

    def test_same_input_same_output(self):
        req = _request()
        assert start_validation(req, now=_t(1)) == start_validation(req, now=_t(1))


class TestAccountRequestGuards:
    def test_skipping_states_is_rejected(self):
        with pytest.raises(InvalidStateTransition) as exc_info:
            transition_account_request(_request(), 'CREATING', now=_t(1))
        assert exc_info.value.from_state == 'REQUESTED'
        assert exc_info.value.to_state == 'CREATING'

    def test_guardrailing_requires_account_id(self):
        req = _request(status='CREATING')
        with pytest.raises(
            InvalidStateTransition,
            match='Cannot start guardrailing without AWS account ID',
        ):
            start_guardrailing(req, now=_t(1))

    @pytest.mark.parametrize('status', ['REQUESTED', 'VALIDATING', 'CREATING', 'GUARDRAILING'])
    def test_failed_reachable_from_every_active_state(self, status):
        req = _request(status=status)
        failed = mark_failed(req, 'boom', now=_t(1))
        assert failed.status == 'FAILED'
        assert failed.error_message == 'boom'
        assert failed.completed_at == _t(1)

    def test_failed_requires_message(self):
        with pytest.raises(InvalidStateTransition, match='error message'):
            transition_account_request(_request(), 'FAILED', now=_t(1))

    @pytest.mark.parametrize('status', ['READY', 'FAILED'])
    def test_terminal_states_have_no_successors(self, status):
        req = _request(status=status)
        assert is_terminal(req)
        assert allowed_targets(req) == frozenset()
        with pytest.raises(InvalidStateTransition):
            transition_account_request(req, 'VALIDATING', now=_t(1))

    def test_naive_now_is_rejected(self):
        with pytest.raises(ValueError, match='timezone-aware'):
            start_validation(_request(), now=datetime(2026, 3, 2, 9, 0, 0))

    def test_start_creation_requires_external_id(self):
        with pytest.raises(ValueError, match='external_request_id'):
            start_creation(_request(status='VALIDATING'), external_request_id='', now=_t(1))

    def test_transition_error_alias(self):
        assert TransitionError is InvalidStateTransition
        assert issubclass(InvalidStateTransition, ValueError)


class TestSetAwsAccountId:
    def test_rejects_malformed_id(self):
        with pytest.raises(ValueError, match='Invalid AWS account ID format'):
            set_aws_account_id(_request(status='CREATING'), '12345', now=_t(1))

    def test_only_while_creating(self):
        with pytest.raises(InvalidStateTransition, match='only be set while CREATING'):
            set_aws_account_id(_request(status='VALIDATING'), '123456789012', now=_t(1))

    def test_idempotent_for_same_id(self):
        req = _request(status='CREATING', aws_account_id='123456789012')
        assert set_aws_account_id(req, '123456789012', now=_t(1)) is req

    def test_different_id_is_rejected(self):
        req = _request(status='CREATING', aws_account_id='123456789012')
        with pytest.raises(InvalidStateTransition, match='already set'):
            set_aws_account_id(req, '999999999999', now=_t(1))


class TestAccountRequestPresentation:
    @pytest.mark.parametrize(
        'status, expected',
        [
            ('REQUESTED', 0),
            ('VALIDATING', 20),
            ('CREATING', 40),
            ('GUARDRAILING', 70),
            ('READY', 100),
            ('FAILED', 0),
        ],
    )
    def test_progress(self, status, expected):
        assert progress(_request(status=status)) == expected

    def test_status_message_uses_error_on_failure(self):
        req = _request(status='FAILED', error_message='quota exceeded')
        assert status_message(req) == 'quota exceeded'

    def test_status_message_for_active_state(self):
        assert 'Organizations' in status_message(_request(status='CREATING'))

    def test_table_covers_every_status(self):
        assert set(ACCOUNT_REQUEST_TRANSITIONS) == {
            'REQUESTED', 'VALIDATING', 'CREATING', 'GUARDRAILING', 'READY', 'FAILED',
        }


# ── Team environments ────────────────────────────────────────────────


class TestEnvironmentTransitions:
    def test_create_to_ready_marks_healthy(self):
        env = _env(status='CREATING')
        ready = mark_environment_ready(env, now=_t(1), endpoints={'database': 'db.local'})
        assert ready.status == 'READY'
        assert ready.health == 'healthy'
        assert ready.last_reconciled == _t(1)
        assert ready.endpoints == {'database': 'db.local'}

    def test_update_replaces_parameters(self):
        env = _env(status='READY')
        params = EnvironmentParameters(size='medium')
        updated = start_update(env, params, now=_t(1))
        assert updated.status == 'UPDATING'
        assert updated.parameters.size == 'medium'

    def test_pause_and_resume(self):
        env = _env(status='READY', health='healthy')
        env = transition_environment(env, 'PAUSING', now=_t(1))
        env = transition_environment(env, 'PAUSED', now=_t(2))
        assert env.health is None
        env = transition_environment(env, 'RESUMING', now=_t(3))
        env = transition_environment(env, 'READY', now=_t(4))
        assert env.health == 'healthy'

    def test_error_sets_unhealthy_and_message(self):
        env = mark_environment_error(_env(status='CREATING'), 'chart failed', now=_t(1))
        assert env.status == 'ERROR'
        assert env.health == 'unhealthy'
        assert env.error_message == 'chart failed'
        assert status_message(env) == 'chart failed'

    def test_error_is_cleared_on_retry(self):
        env = _env(status='ERROR', error_message='chart failed')
        retried = start_update(env, env.parameters, now=_t(1))
        assert retried.status == 'UPDATING'
        assert retried.error_message is None

    def test_paused_cannot_be_updated(self):
        with pytest.raises(InvalidStateTransition):
            start_update(_env(status='PAUSED'), EnvironmentParameters(), now=_t(1))

    def test_deleted_is_terminal(self):
        env = _env(status='DELETED')
        assert is_terminal(env)
        with pytest.raises(InvalidStateTransition):
            transition_environment(env, 'DELETING', now=_t(1))

    @pytest.mark.parametrize(
        'status',
        [s for s, targets in ENVIRONMENT_TRANSITIONS.items() if 'ERROR' in targets],
    )
    def test_error_reachable(self, status):
        assert can_transition(_env(status=status), 'ERROR')

    def test_record_health_only_when_ready(self):
        env = record_health(_env(status='READY'), 'degraded', now=_t(1))
        assert env.health == 'degraded'
        assert env.last_reconciled == _t(1)
        with pytest.raises(InvalidStateTransition):
            record_health(_env(status='UPDATING'), 'healthy', now=_t(1))

    def test_record_health_rejects_unknown_value(self):
        with pytest.raises(ValueError):
            record_health(_env(status='READY'), 'great', now=_t(1))

    def test_progress_values(self):
        assert progress(_env(status='CREATING')) == 50
        assert progress(_env(status='PAUSED')) == 100
        assert progress(_env(status='UPDATING')) == 75


# ── AWS account references ───────────────────────────────────────────


class TestAwsAccountTransitions:
    def test_guardrailing_requires_claim(self):
        with pytest.raises(InvalidStateTransition, match='claim name'):
            transition_aws_account(_account(), 'guardrailing', now=_t(1))

    def test_linked_to_guardrailed(self):
        acct = transition_aws_account(
            _account(), 'guardrailing', now=_t(1), claim_name='guardrailed-aws-123456789012',
        )
        acct = transition_aws_account(acct, 'guardrailed', now=_t(2))
        assert acct.status == 'guardrailed'
        assert acct.guardrail_claim_name == 'guardrailed-aws-123456789012'
        assert is_terminal(acct)

    def test_error_can_be_retried(self):
        acct = _account(status='error', error_message='boom', guardrail_claim_name='c1')
        retried = transition_aws_account(acct, 'guardrailing', now=_t(1))
        assert retried.status == 'guardrailing'
        assert retried.error_message is None


# ── Every (current, target) pair ─────────────────────────────────────

REQUEST_SUCCESSORS = {
    'REQUESTED': {'VALIDATING', 'FAILED'},
    'VALIDATING': {'CREATING', 'FAILED'},
    'CREATING': {'GUARDRAILING', 'FAILED'},
    'GUARDRAILING': {'READY', 'FAILED'},
    'READY': set(),
    'FAILED': set(),
}

ENVIRONMENT_SUCCESSORS = {
    'REQUESTED': {'VALIDATING', 'ERROR'},
    'VALIDATING': {'CREATING', 'ERROR'},
    'CREATING': {'READY', 'ERROR'},
    'READY': {'UPDATING', 'PAUSING', 'DELETING', 'ERROR'},
    'UPDATING': {'READY', 'ERROR'},
    'PAUSING': {'PAUSED', 'ERROR'},
    'PAUSED': {'RESUMING', 'DELETING', 'ERROR'},
    'RESUMING': {'READY', 'ERROR'},
    'ERROR': {'UPDATING', 'DELETING'},
    'DELETING': {'DELETED', 'ERROR'},
    'DELETED': set(),
}

ACCOUNT_SUCCESSORS = {
    'linked': {'guardrailing', 'error'},
    'guardrailing': {'guardrailed', 'error'},
    'guardrailed': set(),
    'error': {'guardrailing'},
}


@pytest.mark.parametrize(
    'current,target', list(itertools.product(REQUEST_SUCCESSORS, REQUEST_SUCCESSORS)),
)
def test_account_request_pair(current, target):
    # Guards satisfied so only the table decides.
    request = _request(status=current, aws_account_id='123456789012')
    if target in REQUEST_SUCCESSORS[current]:
        moved = transition_account_request(request, target, now=_t(1), error_message='boom')
        assert moved.status == target
    else:
        with pytest.raises(InvalidStateTransition):
            transition_account_request(request, target, now=_t(1), error_message='boom')


@pytest.mark.parametrize(
    'current,target',
    list(itertools.product(ENVIRONMENT_SUCCESSORS, ENVIRONMENT_SUCCESSORS)),
)
def test_environment_pair(current, target):
    env = _env(status=current)
    if target in ENVIRONMENT_SUCCESSORS[current]:
        moved = transition_environment(env, target, now=_t(1), error_message='boom')
        assert moved.status == target
    else:
        with pytest.raises(InvalidStateTransition):
            transition_environment(env, target, now=_t(1), error_message='boom')


@pytest.mark.parametrize(
    'current,target', list(itertools.product(ACCOUNT_SUCCESSORS, ACCOUNT_SUCCESSORS)),
)
def test_aws_account_pair(current, target):
    acct = _account(status=current, guardrail_claim_name='c1')
    if target in ACCOUNT_SUCCESSORS[current]:
        moved = transition_aws_account(acct, target, now=_t(1), error_message='boom')
        assert moved.status == target
    else:
        with pytest.raises(InvalidStateTransition):
            transition_aws_account(acct, target, now=_t(1), error_message='boom')


def test_tables_name_the_same_statuses():
    assert set(ACCOUNT_REQUEST_TRANSITIONS) == set(REQUEST_SUCCESSORS)
    assert set(ENVIRONMENT_TRANSITIONS) == set(ENVIRONMENT_SUCCESSORS)


# ── Generic entry point ──────────────────────────────────────────────


def test_transition_dispatches_by_type():
    assert transition(_request(), 'VALIDATING', now=_t(1)).status == 'VALIDATING'
    assert transition(_env(), 'VALIDATING', now=_t(1)).status == 'VALIDATING'
    linked = transition(_account(), 'error', now=_t(1), error_message='x')
    assert linked.status == 'error'


def test_transition_rejects_unknown_type():
    with pytest.raises(TypeError):
        transition(object(), 'READY', now=_t(1))


def test_replace_keeps_snapshot_immutable():
    env = _env()
    with pytest.raises(Exception):
        env.status = 'READY'  # type: ignore[misc]
    assert replace(env, status='READY').status == 'READY'
