"""Tests for PortalSettings."""

from dataclasses import FrozenInstanceError

import pytest

from cloud_portal.app.settings import PortalSettings


class TestDefaults:
    def test_defaults_are_valid(self):
        settings = PortalSettings()
        assert settings.validate() == []
        assert settings.is_local
        assert not settings.is_live
        assert settings.max_reconcile_attempts == 5
        assert settings.poll_interval_seconds == 2.0

    def test_frozen(self):
        settings = PortalSettings()
        with pytest.raises(FrozenInstanceError):
            settings.environment = "production"


class TestValidate:
    def test_unknown_backend(self):
        errors = PortalSettings(adapter_backend="cloud").validate()
        assert errors == ["adapter_backend must be one of memory, live"]

    def test_live_backend_needs_kube_url(self):
        errors = PortalSettings(environment="staging", adapter_backend="live").validate()
        assert errors == ["staging: kube_api_url is required for the live backend"]

    def test_live_backend_with_kube_url(self):
        settings = PortalSettings(
            adapter_backend="live", kube_api_url="https://kubernetes.default.svc",
        )
        assert settings.validate() == []

    def test_reconciliation_bounds(self):
        errors = PortalSettings(
            poll_interval_seconds=0,
            max_reconcile_attempts=0,
            backoff_base_seconds=-1,
        ).validate()
        assert "poll_interval_seconds must be positive" in errors
        assert "max_reconcile_attempts must be >= 1" in errors
        assert "backoff_base_seconds cannot be negative" in errors

    def test_backoff_window_order(self):
        errors = PortalSettings(
            backoff_base_seconds=10.0, backoff_max_seconds=5.0,
        ).validate()
        assert errors == ["backoff_max_seconds must be >= backoff_base_seconds"]


class TestFromEnv:
    def test_empty_env_uses_defaults(self):
        assert PortalSettings.from_env({}) == PortalSettings()

    def test_reads_variables(self):
        settings = PortalSettings.from_env({
            "ENVIRONMENT": "production",
            "ADAPTER_BACKEND": "live",
            "AWS_REGION": "eu-west-1",
            "AWS_PROFILE": "portal",
            "KUBE_API_URL": "https://kubernetes.default.svc",
            "KUBE_VERIFY_TLS": "false",
            "POLL_INTERVAL_SECONDS": "5",
            "MAX_RECONCILE_ATTEMPTS": "8",
            "RECONCILER_ENABLED": "0",
            "CORS_ORIGINS": "https://portal.example.com, https://admin.example.com",
            "LOG_FORMAT": "console",
        })
        assert settings.environment == "production"
        assert settings.is_live
        assert settings.aws_region == "eu-west-1"
        assert settings.aws_profile == "portal"
        assert settings.kube_verify_tls is False
        assert settings.poll_interval_seconds == 5.0
        assert settings.max_reconcile_attempts == 8
        assert settings.reconciler_enabled is False
        assert settings.cors_origins == (
            "https://portal.example.com",
            "https://admin.example.com",
        )
        assert settings.log_format == "console"
        assert settings.validate() == []

    def test_blank_profile_is_none(self):
        assert PortalSettings.from_env({"AWS_PROFILE": ""}).aws_profile is None
