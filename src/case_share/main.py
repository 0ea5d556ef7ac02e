"""Case sharing FastAPI application factory.

The create_app() factory is the single entry point for building the ASGI
application. It wires middleware (request-ID, access log with metrics,
bearer auth, CORS), the sharing router, and injects the record store and
audit emitter. Shutdown stops the invite sweep, drains pending audit
events and closes the store.

Usage:
    # Local development (in-memory store, X-User-ID headers accepted)
    from case_share import create_app, CaseShareSettings
    app = create_app(CaseShareSettings())

    # Non-local (Supabase/PostgREST)
    app = create_app(CaseShareSettings.from_env())

    # Testing (full DI control)
    app = create_app(settings, store=InMemoryRecordStore(), audit_emitter=emitter)
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import Response

from .db import (
    AccessCodeRepository,
    CaseInviteRepository,
    CaseRepository,
    CaseShareRepository,
    ProfileDirectory,
    SupabaseAuditEmitter,
    SupabaseClient,
)
from .inmemory import InMemoryAuditEmitter, InMemoryRecordStore
from .models import utcnow
from .observability import configure_logging, get_logger, metrics_text
from .observability.middleware import AccessLogMiddleware, RequestIdMiddleware
from .protocols import AuditEmitter, RecordStore
from .security.auth_guard import AuthGuardMiddleware
from .security.token_verify import TokenVerifier, create_token_verifier
from .settings import CaseShareSettings
from .sharing import (
    AccessCodeGateway,
    InviteLedger,
    InviteSweeper,
    ShareController,
    ShareRegistry,
    create_case_share_router,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class AppDependencies:
    """Everything the sharing routes reach through ``app.state.deps``."""

    store: RecordStore
    audit_emitter: AuditEmitter
    controller: ShareController
    ledger: InviteLedger
    sweeper: InviteSweeper

    @classmethod
    def build(
        cls,
        settings: CaseShareSettings,
        store: RecordStore,
        audit_emitter: AuditEmitter,
        clock: Callable[[], datetime] = utcnow,
    ) -> AppDependencies:
        cases = CaseRepository(store)
        shares = CaseShareRepository(store)
        profiles = ProfileDirectory(store)
        ledger = InviteLedger(
            cases=cases,
            invites=CaseInviteRepository(store),
            shares=shares,
            profiles=profiles,
            ttl=settings.invite_ttl,
            default_origin=settings.public_origin,
            clock=clock,
        )
        controller = ShareController(
            registry=ShareRegistry(cases=cases, shares=shares, profiles=profiles),
            ledger=ledger,
            gateway=AccessCodeGateway(codes=AccessCodeRepository(store), cases=cases),
            audit=audit_emitter,
        )
        return cls(
            store=store,
            audit_emitter=audit_emitter,
            controller=controller,
            ledger=ledger,
            sweeper=InviteSweeper(ledger, settings.invite_sweep_interval_seconds),
        )


def _default_store(settings: CaseShareSettings) -> RecordStore:
    if settings.is_local:
        return InMemoryRecordStore()
    return SupabaseClient(
        supabase_url=settings.supabase_url,
        service_role_key=settings.supabase_service_role_key,
    )


def _default_token_verifier(settings: CaseShareSettings) -> TokenVerifier | None:
    if settings.supabase_jwt_secret or settings.supabase_url:
        return create_token_verifier(
            supabase_url=settings.supabase_url or None,
            jwt_secret=settings.supabase_jwt_secret or None,
        )
    return None


# ── Factory ─────────────────────────────────────────────────────────


def create_app(
    settings: CaseShareSettings | None = None,
    *,
    store: RecordStore | None = None,
    audit_emitter: AuditEmitter | None = None,
    token_verifier: TokenVerifier | None = None,
    clock: Callable[[], datetime] = utcnow,
) -> FastAPI:
    """Create a configured case sharing FastAPI application.

    Args:
        settings: Application settings. Defaults to local-dev settings.
        store: Record store override. Local mode defaults to in-memory,
            other environments to the Supabase PostgREST client.
        audit_emitter: Audit override. Defaults to in-memory locally and
            the audit_logs table otherwise.
        token_verifier: Bearer verifier override.
        clock: "Now" for invite expiry.

    Raises:
        ValueError: If settings validation fails.
    """
    if settings is None:
        settings = CaseShareSettings()

    errors = settings.validate()
    if errors:
        raise ValueError(
            "Case share settings validation failed:\n"
            + "\n".join(f"  - {e}" for e in errors)
        )

    configure_logging(level=settings.log_level, json_output=settings.log_format == "json")

    if store is None:
        store = _default_store(settings)
    if audit_emitter is None:
        audit_emitter = InMemoryAuditEmitter() if settings.is_local else SupabaseAuditEmitter(store)
    if token_verifier is None:
        token_verifier = _default_token_verifier(settings)

    deps = AppDependencies.build(settings, store, audit_emitter, clock)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("case_share_startup", environment=settings.environment)
        deps.sweeper.start()
        yield
        await deps.sweeper.stop()
        await deps.controller.drain()
        close = getattr(deps.store, "aclose", None)
        if close is not None:
            await close()
        logger.info("case_share_shutdown")

    app = FastAPI(
        title="Case Sharing Service",
        description="Case shares, email invitations and access codes",
        version="0.1.0",
        lifespan=lifespan,
    )
    app.state.deps = deps
    app.state.settings = settings

    # ── Middleware stack (applied in reverse order) ──────────────
    # Order of execution: RequestId -> AccessLog -> AuthGuard -> CORS -> route

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        AuthGuardMiddleware,
        token_verifier=token_verifier,
        allow_dev_headers=settings.is_local,
    )
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(RequestIdMiddleware)

    # ── Routes ──────────────────────────────────────────────────

    @app.get("/health")
    async def health():
        return {"status": "ok", "environment": settings.environment}

    @app.get("/metrics")
    async def prometheus_metrics():
        body, content_type = metrics_text()
        return Response(content=body, media_type=content_type)

    app.include_router(create_case_share_router(deps.controller))

    return app


# For uvicorn, use --factory flag:
#   uvicorn case_share.main:create_app --factory
