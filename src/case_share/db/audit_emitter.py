"""Store-backed AuditEmitter implementation.

Writes audit events to the audit_logs table. Emit is fire-and-forget: store
errors are logged but never propagate to callers.

Sanitization: PII (emails, names, phone numbers, ...) and credentials
(tokens, keys, passwords) are replaced with ``[REDACTED]`` at any nesting
depth before persistence. Audit rows must stay PII-free.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from case_share.observability import get_logger
from case_share.protocols import RecordStore

logger = get_logger(__name__)

REDACTED = "[REDACTED]"

_PII_KEYS = frozenset({
    "email",
    "password",
    "ssn",
    "credit_card",
    "phone",
    "address",
    "first_name",
    "last_name",
    "name",
})

_SECRET_KEYS = frozenset({
    "authorization",
    "apikey",
    "api_key",
    "service_role_key",
    "supabase_service_role_key",
    "bearer_token",
    "token",
    "invite_link",
    "secret",
    "code",
})

_SENSITIVE_KEYS = _PII_KEYS | _SECRET_KEYS


def _sanitize_payload(payload: dict[str, Any]) -> dict[str, Any]:
    """Copy payload with sensitive keys redacted."""
    sanitized: dict[str, Any] = {}
    for key, value in payload.items():
        if key.lower() in _SENSITIVE_KEYS:
            sanitized[key] = REDACTED
        elif isinstance(value, dict):
            sanitized[key] = _sanitize_payload(value)
        else:
            sanitized[key] = value
    return sanitized


class SupabaseAuditEmitter:
    """AuditEmitter backed by the audit_logs table.

    emit() never raises.
    """

    TABLE = "audit_logs"

    def __init__(self, store: RecordStore) -> None:
        self._store = store

    async def emit(self, event_type: str, data: dict[str, Any]) -> None:
        """Write an audit event. Errors are logged, not raised."""
        try:
            metadata = data.get("metadata")
            row = {
                "user_id": data.get("user_id"),  # nullable for system
                "action": event_type,
                "resource_type": data.get("resource_type"),
                "resource_id": data.get("resource_id"),
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "request_id": data.get("request_id"),
                "metadata": _sanitize_payload(metadata if isinstance(metadata, dict) else {}),
                "success": bool(data.get("success", True)),
                "error_message": data.get("error_message"),
            }
            await self._store.insert(self.TABLE, row)
        except Exception:
            logger.exception(
                "audit_emit_failed",
                action=event_type,
                resource_id=data.get("resource_id", "?"),
            )
