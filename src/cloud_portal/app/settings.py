"""Cloud portal configuration settings.

PortalSettings is the single configuration object accepted by create_app().
It is a plain dataclass (not env-coupled) so tests can inject config
without touching os.environ.
"""

from __future__ import annotations

import os
from dataclasses import dataclass

ADAPTER_BACKENDS = ("memory", "live")

_DEFAULT_CORS_ORIGINS = (
    "http://localhost:5173",
    "http://localhost:3000",
)
_DEFAULT_GUARDRAIL_GROUP = "platform.example.com"
_DEFAULT_GUARDRAIL_VERSION = "v1alpha1"
_DEFAULT_GUARDRAIL_PLURAL = "guardrailedaccountclaims"
_DEFAULT_RELEASE_GROUP = "helm.crossplane.io"
_DEFAULT_RELEASE_VERSION = "v1beta1"
_DEFAULT_RELEASE_PLURAL = "releases"
_DEFAULT_CHART_REPOSITORY = "https://charts.example.com"


@dataclass(frozen=True, slots=True)
class PortalSettings:
    """Configuration for the portal FastAPI application and reconciler.

    All fields have sensible defaults for local development. The ``live``
    adapter backend needs a reachable Kubernetes API and AWS credentials.
    """

    # ── Environment ────────────────────────────────────────────────
    environment: str = "local"
    """One of: local, dev, staging, production."""

    adapter_backend: str = "memory"
    """``memory`` for deterministic fakes, ``live`` for boto3/Kubernetes."""

    # ── AWS ────────────────────────────────────────────────────────
    aws_region: str = "us-east-1"
    aws_profile: str | None = None

    # ── Kubernetes ─────────────────────────────────────────────────
    kube_api_url: str = ""
    """API server URL (e.g. https://kubernetes.default.svc)."""

    kube_token: str = ""
    """Service-account bearer token. Never log this."""

    kube_namespace: str = "default"
    kube_verify_tls: bool = True

    guardrail_group: str = _DEFAULT_GUARDRAIL_GROUP
    guardrail_version: str = _DEFAULT_GUARDRAIL_VERSION
    guardrail_plural: str = _DEFAULT_GUARDRAIL_PLURAL

    release_group: str = _DEFAULT_RELEASE_GROUP
    release_version: str = _DEFAULT_RELEASE_VERSION
    release_plural: str = _DEFAULT_RELEASE_PLURAL
    release_chart_repository: str = _DEFAULT_CHART_REPOSITORY

    # ── Reconciliation ─────────────────────────────────────────────
    poll_interval_seconds: float = 2.0
    max_reconcile_attempts: int = 5
    backoff_base_seconds: float = 1.0
    backoff_max_seconds: float = 30.0
    reconciler_enabled: bool = True

    # ── HTTP / logging ─────────────────────────────────────────────
    cors_origins: tuple[str, ...] = _DEFAULT_CORS_ORIGINS
    log_level: str = "INFO"
    log_format: str = "json"

    @property
    def is_local(self) -> bool:
        return self.environment == "local"

    @property
    def is_live(self) -> bool:
        return self.adapter_backend == "live"

    def validate(self) -> list[str]:
        """Return a list of configuration errors. Empty means valid."""
        errors: list[str] = []
        if self.adapter_backend not in ADAPTER_BACKENDS:
            errors.append(
                f"adapter_backend must be one of {', '.join(ADAPTER_BACKENDS)}"
            )
        if self.is_live and not self.kube_api_url:
            errors.append(
                f"{self.environment}: kube_api_url is required for the live backend"
            )
        if self.poll_interval_seconds <= 0:
            errors.append("poll_interval_seconds must be positive")
        if self.max_reconcile_attempts < 1:
            errors.append("max_reconcile_attempts must be >= 1")
        if self.backoff_base_seconds < 0:
            errors.append("backoff_base_seconds cannot be negative")
        if self.backoff_max_seconds < self.backoff_base_seconds:
            errors.append("backoff_max_seconds must be >= backoff_base_seconds")
        return errors

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> PortalSettings:
        """Build settings from environment variables.

        This is a convenience factory for production use. Tests should
        construct PortalSettings directly.
        """
        if env is None:
            env = dict(os.environ)

        cors_raw = env.get("CORS_ORIGINS", "")
        cors = tuple(o.strip() for o in cors_raw.split(",") if o.strip()) if cors_raw else _DEFAULT_CORS_ORIGINS

        return cls(
            environment=env.get("ENVIRONMENT", "local"),
            adapter_backend=env.get("ADAPTER_BACKEND", "memory"),
            aws_region=env.get("AWS_REGION", "us-east-1"),
            aws_profile=env.get("AWS_PROFILE") or None,
            kube_api_url=env.get("KUBE_API_URL", ""),
            kube_token=env.get("KUBE_TOKEN", ""),
            kube_namespace=env.get("KUBE_NAMESPACE", "default"),
            kube_verify_tls=_env_bool(env.get("KUBE_VERIFY_TLS"), True),
            guardrail_group=env.get("GUARDRAIL_GROUP", _DEFAULT_GUARDRAIL_GROUP),
            guardrail_version=env.get("GUARDRAIL_VERSION", _DEFAULT_GUARDRAIL_VERSION),
            guardrail_plural=env.get("GUARDRAIL_PLURAL", _DEFAULT_GUARDRAIL_PLURAL),
            release_group=env.get("RELEASE_GROUP", _DEFAULT_RELEASE_GROUP),
            release_version=env.get("RELEASE_VERSION", _DEFAULT_RELEASE_VERSION),
            release_plural=env.get("RELEASE_PLURAL", _DEFAULT_RELEASE_PLURAL),
            release_chart_repository=env.get(
                "RELEASE_CHART_REPOSITORY", _DEFAULT_CHART_REPOSITORY,
            ),
            poll_interval_seconds=float(env.get("POLL_INTERVAL_SECONDS", "2.0")),
            max_reconcile_attempts=int(env.get("MAX_RECONCILE_ATTEMPTS", "5")),
            backoff_base_seconds=float(env.get("BACKOFF_BASE_SECONDS", "1.0")),
            backoff_max_seconds=float(env.get("BACKOFF_MAX_SECONDS", "30.0")),
            reconciler_enabled=_env_bool(env.get("RECONCILER_ENABLED"), True),
            cors_origins=cors,
            log_level=env.get("LOG_LEVEL", "INFO"),
            log_format=env.get("LOG_FORMAT", "json"),
        )


def _env_bool(raw: str | None, default: bool) -> bool:
    if raw is None or raw == "":
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")
