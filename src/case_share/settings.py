"""Case sharing service configuration settings.

CaseShareSettings is the single configuration object accepted by create_app().
It is a plain dataclass (not env-coupled) so tests can inject config without
touching os.environ.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import timedelta

DEFAULT_CORS_ORIGINS: tuple[str, ...] = (
    "http://localhost:5173",
    "http://localhost:3000",
)


@dataclass(frozen=True, slots=True)
class CaseShareSettings:
    """Configuration for the case sharing FastAPI application.

    All fields have sensible defaults for local development.
    Non-local environments must supply supabase_url and
    supabase_service_role_key.
    """

    # ── Environment ────────────────────────────────────────────────
    environment: str = "local"
    """One of: local, dev, staging, production."""

    # ── Supabase ───────────────────────────────────────────────────
    supabase_url: str = ""
    """Supabase project URL (e.g. https://xyz.supabase.co)."""

    supabase_service_role_key: str = ""
    """Supabase service-role key for PostgREST calls. Never log this."""

    supabase_jwt_secret: str = ""
    """HS256 secret for verifying Supabase access tokens. Empty means JWKS."""

    # ── Invites ────────────────────────────────────────────────────
    public_origin: str = "http://localhost:5173"
    """Origin used to build invite links handed back to inviters."""

    invite_ttl_days: int = 7
    """Fixed lifetime of a pending invite."""

    invite_sweep_interval_seconds: float = 0
    """Period of the expired-invite sweep. 0 disables it."""

    # ── CORS ───────────────────────────────────────────────────────
    cors_origins: tuple[str, ...] = DEFAULT_CORS_ORIGINS
    """Allowed CORS origins."""

    # ── Logging ────────────────────────────────────────────────────
    log_level: str = "INFO"
    log_format: str = "json"

    @property
    def is_local(self) -> bool:
        return self.environment == "local"

    @property
    def invite_ttl(self) -> timedelta:
        return timedelta(days=self.invite_ttl_days)

    def validate(self) -> list[str]:
        """Return a list of configuration errors. Empty means valid."""
        errors: list[str] = []
        if not self.is_local:
            if not self.supabase_url:
                errors.append(f"{self.environment}: supabase_url is required")
            if not self.supabase_service_role_key:
                errors.append(
                    f"{self.environment}: supabase_service_role_key is required"
                )
        if self.invite_ttl_days < 1:
            errors.append("invite_ttl_days must be >= 1")
        if self.invite_sweep_interval_seconds < 0:
            errors.append("invite_sweep_interval_seconds must be >= 0")
        return errors

    @classmethod
    def from_env(cls, env: dict[str, str] | None = None) -> CaseShareSettings:
        """Build settings from environment variables.

        This is a convenience factory for production use. Tests should
        construct CaseShareSettings directly.
        """
        if env is None:
            env = dict(os.environ)

        cors_raw = env.get("CORS_ORIGINS", "")
        cors = (
            tuple(o.strip() for o in cors_raw.split(",") if o.strip())
            if cors_raw
            else DEFAULT_CORS_ORIGINS
        )

        return cls(
            environment=env.get("ENVIRONMENT", "local"),
            supabase_url=env.get("SUPABASE_URL", ""),
            supabase_service_role_key=env.get("SUPABASE_SERVICE_ROLE_KEY", ""),
            supabase_jwt_secret=env.get("SUPABASE_JWT_SECRET", ""),
            public_origin=env.get("PUBLIC_ORIGIN", "http://localhost:5173"),
            invite_ttl_days=int(env.get("INVITE_TTL_DAYS", "7")),
            invite_sweep_interval_seconds=float(
                env.get("INVITE_SWEEP_INTERVAL_SECONDS", "0")
            ),
            cors_origins=cors,
            log_level=env.get("LOG_LEVEL", "INFO"),
            log_format=env.get("LOG_FORMAT", "json"),
        )
