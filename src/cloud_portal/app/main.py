"""Portal FastAPI application factory.

The create_app() factory is the single entry point for building the portal
ASGI application. It wires middleware (request-ID, CORS), the resource
routers and error mapping, and injects repository/adapter implementations
via dependency injection. The reconciliation loop runs inside the app
lifespan.

Usage:
    # Local development (deterministic in-memory adapters)
    from cloud_portal.app import create_app, PortalSettings
    app = create_app(PortalSettings())

    # Live adapters (boto3 + Kubernetes)
    app = create_app(PortalSettings.from_env())

    # Testing (full DI control)
    app = create_app(settings, deps=AppDependencies(...))
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, Mapping

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from ..observability import metrics_text
from ..observability.middleware import RequestIdMiddleware
from .db.repository import (
    InMemoryAccountRequestRepository,
    InMemoryAwsAccountRepository,
    InMemoryEnvironmentRepository,
)
from .errors import (
    AccessDenied,
    AdapterError,
    Conflict,
    IllegalState,
    InvalidStateTransition,
    NotFound,
    PortalError,
    ValidationError,
)
from .models import EnvironmentTemplate
from .protocols import (
    AccountFactory,
    AccountRequestRepository,
    AwsAccountRepository,
    EnvironmentRepository,
    GuardrailController,
    ReleaseController,
)
from .providers.guardrails import InMemoryGuardrailController, KubernetesGuardrailController
from .providers.kubernetes import KubernetesCustomObjectsClient
from .providers.organizations import InMemoryAccountFactory, OrganizationsAccountFactory
from .providers.releases import InMemoryReleaseController, KubernetesReleaseController
from .provisioning.account_requests import AccountRequestService
from .provisioning.aws_accounts import AwsAccountService
from .provisioning.environments import EnvironmentService
from .provisioning.reconciler import Reconciler
from .provisioning.templates import DEFAULT_TEMPLATES
from .routes import (
    create_account_requests_router,
    create_aws_accounts_router,
    create_environments_router,
)
from .settings import PortalSettings

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[PortalError], int], ...] = (
    (ValidationError, 422),
    (NotFound, 404),
    (AccessDenied, 403),
    (Conflict, 409),
    (IllegalState, 409),
    (InvalidStateTransition, 409),
    (AdapterError, 502),
)


@dataclass(frozen=True)
class AppDependencies:
    """Container for all injected repository/adapter instances.

    Stored on ``app.state.deps`` so route handlers and tests can reach them.
    """

    account_requests: AccountRequestRepository
    aws_accounts: AwsAccountRepository
    environments: EnvironmentRepository
    account_factory: AccountFactory
    guardrails: GuardrailController
    releases: ReleaseController
    http_client: httpx.AsyncClient | None = None


def build_dependencies(settings: PortalSettings) -> AppDependencies:
    """Construct adapters for the configured backend.

    Repositories are in-memory for both backends.
    """
    repos: dict[str, Any] = {
        "account_requests": InMemoryAccountRequestRepository(),
        "aws_accounts": InMemoryAwsAccountRepository(),
        "environments": InMemoryEnvironmentRepository(),
    }
    if not settings.is_live:
        return AppDependencies(
            **repos,
            account_factory=InMemoryAccountFactory(),
            guardrails=InMemoryGuardrailController(namespace=settings.kube_namespace),
            releases=InMemoryReleaseController(),
        )

    http_client = httpx.AsyncClient(verify=settings.kube_verify_tls)
    claims = KubernetesCustomObjectsClient(
        api_url=settings.kube_api_url,
        group=settings.guardrail_group,
        version=settings.guardrail_version,
        plural=settings.guardrail_plural,
        namespace=settings.kube_namespace,
        bearer_token=settings.kube_token,
        http_client=http_client,
    )
    releases = KubernetesCustomObjectsClient(
        api_url=settings.kube_api_url,
        group=settings.release_group,
        version=settings.release_version,
        plural=settings.release_plural,
        namespace=settings.kube_namespace,
        bearer_token=settings.kube_token,
        http_client=http_client,
    )
    return AppDependencies(
        **repos,
        account_factory=OrganizationsAccountFactory.from_session(
            region=settings.aws_region, profile=settings.aws_profile,
        ),
        guardrails=KubernetesGuardrailController(claims),
        releases=KubernetesReleaseController(
            releases, chart_repository=settings.release_chart_repository,
        ),
        http_client=http_client,
    )


# ── Error mapping ───────────────────────────────────────────────────


def _error_response(request: Request, status_code: int, code: str, message: str, **extra: Any) -> JSONResponse:
    content = {
        "code": code,
        "message": message,
        "request_id": getattr(request.state, "request_id", None),
        **extra,
    }
    return JSONResponse(status_code=status_code, content=content)


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(PortalError)
    async def portal_error(request: Request, exc: PortalError):
        status_code = next(
            (status for cls, status in _STATUS_BY_ERROR if isinstance(exc, cls)),
            500,
        )
        extra: dict[str, Any] = {}
        if isinstance(exc, ValidationError):
            extra["errors"] = [
                {"field": e.field, "message": e.message} for e in exc.errors
            ]
        if status_code >= 500:
            logger.warning(
                "Request failed with %s: %s", exc.code, exc,
                extra={"path": request.url.path},
            )
        return _error_response(request, status_code, exc.code, str(exc), **extra)

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        errors = [
            {
                "field": ".".join(str(p) for p in err.get("loc", ()) if p != "body"),
                "message": err.get("msg", ""),
            }
            for err in exc.errors()
        ]
        return _error_response(
            request, 422, ValidationError.code, "Request validation failed",
            errors=errors,
        )


# ── Factory ─────────────────────────────────────────────────────────


def create_app(
    settings: PortalSettings | None = None,
    deps: AppDependencies | None = None,
    *,
    templates: Mapping[str, EnvironmentTemplate] | None = None,
) -> FastAPI:
    """Create a configured portal FastAPI application.

    Args:
        settings: Application settings. Defaults to local-dev settings.
        deps: Repository/adapter overrides. When None they are built from
            ``settings.adapter_backend``.
        templates: Environment template catalog. Defaults to the built-in one.

    Returns:
        Configured FastAPI application ready for uvicorn.run().

    Raises:
        ValueError: If settings validation fails.
    """
    if settings is None:
        settings = PortalSettings()

    errors = settings.validate()
    if errors:
        raise ValueError(
            "Portal settings validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    if deps is None:
        deps = build_dependencies(settings)

    account_requests = AccountRequestService(deps.account_requests)
    aws_accounts = AwsAccountService(deps.aws_accounts, deps.guardrails)
    environments = EnvironmentService(
        deps.environments,
        templates=templates if templates is not None else DEFAULT_TEMPLATES,
    )
    reconciler = Reconciler(
        account_requests=deps.account_requests,
        aws_accounts=deps.aws_accounts,
        environments=deps.environments,
        account_factory=deps.account_factory,
        guardrails=deps.guardrails,
        releases=deps.releases,
        settings=settings,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info(
            "Portal startup (environment=%s, backend=%s)",
            settings.environment,
            settings.adapter_backend,
        )
        if settings.reconciler_enabled:
            reconciler.start()
        try:
            yield
        finally:
            await reconciler.stop()
            if deps.http_client is not None:
                await deps.http_client.aclose()
            logger.info("Portal shutdown")

    app = FastAPI(
        title="Cloud Portal",
        description="Self-service AWS account and team environment provisioning",
        version="0.1.0",
        lifespan=lifespan,
    )

    app.state.deps = deps
    app.state.settings = settings
    app.state.reconciler = reconciler
    app.state.account_requests = account_requests
    app.state.aws_accounts = aws_accounts
    app.state.environments = environments

    # ── Middleware stack (applied in reverse order) ──────────────
    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIdMiddleware)

    _register_error_handlers(app)

    # ── Routes ──────────────────────────────────────────────────

    @app.get("/health")
    async def health():
        return {
            "status": "ok",
            "environment": settings.environment,
            "reconciler": "running" if reconciler.running else "stopped",
        }

    @app.get("/metrics")
    async def metrics():
        body, content_type = metrics_text()
        return Response(content=body, media_type=content_type)

    app.include_router(create_account_requests_router(account_requests))
    app.include_router(create_aws_accounts_router(aws_accounts))
    app.include_router(create_environments_router(environments))

    return app


# For uvicorn, use --factory flag:
#   uvicorn cloud_portal.app.main:create_app --factory
