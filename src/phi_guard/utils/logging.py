"""Logging configuration for phi-guard."""

import logging
import sys
import threading
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import structlog
from structlog.stdlib import BoundLogger, LoggerFactory

from phi_guard.config import get_settings


def setup_logging() -> None:
    """Configure structured logging for the application."""
    settings = get_settings()

    # Configure standard library logging
    logging.basicConfig(
        format="%(message)s",
        stream=sys.stdout,
        level=getattr(logging, settings.log_level.upper()),
    )

    # Configure structlog
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            render_processor(),
        ],
        context_class=dict,
        logger_factory=LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def render_processor() -> Any:
    """Choose renderer based on configuration."""
    settings = get_settings()

    if settings.log_format == "json":
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer()


def get_logger(name: str) -> BoundLogger:
    """Get a configured logger instance."""
    bound_logger: BoundLogger = structlog.get_logger(name)
    return bound_logger


def redact_session_id(session_id: Optional[str]) -> Optional[str]:
    """Shorten a session id so logs never carry a usable bearer token."""
    if not session_id:
        return session_id
    return session_id[:8] + "..."


class AuditLogger:
    """Logger for HIPAA-compliant audit trails.

    Every event is written to the ``audit`` structlog logger and kept in a
    bounded in-process buffer so that the most recent trail can be
    inspected without a log shipper.
    """

    def __init__(self, max_entries: int = 10000) -> None:
        """Initialize audit logger."""
        self.logger = get_logger("audit")
        self.max_entries = max_entries
        self._entries: List[Dict[str, Any]] = []
        self._lock = threading.Lock()

    @property
    def entries(self) -> List[Dict[str, Any]]:
        """Return a copy of the buffered audit entries."""
        with self._lock:
            return list(self._entries)

    def clear(self) -> None:
        """Drop buffered entries."""
        with self._lock:
            self._entries.clear()

    def _record(self, event: str, level: str = "info", **fields: Any) -> None:
        entry = {
            "event": event,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **fields,
        }
        with self._lock:
            self._entries.append(entry)
            if len(self._entries) > self.max_entries:
                del self._entries[0]
        getattr(self.logger, level)(event, compliance="HIPAA", **fields)

    def log_session_event(
        self,
        user_id: Optional[str],
        action: str,
        success: bool,
        session_id: Optional[str] = None,
        ip_address: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Log session lifecycle events (login, validation, logout, eviction)."""
        self._record(
            "session_event",
            user_id=user_id,
            action=action,
            success=success,
            session_id=redact_session_id(session_id),
            ip_address=ip_address,
            details=details or {},
        )

    def log_access_decision(
        self,
        user_id: str,
        resource: str,
        action: str,
        granted: bool,
        role_used: Optional[str] = None,
        permission_used: Optional[str] = None,
        reason: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> None:
        """Log every policy decision, allow or deny."""
        self._record(
            "access_decision",
            level="info" if granted else "warning",
            user_id=user_id,
            resource=resource,
            action=action,
            granted=granted,
            role_used=role_used,
            permission_used=permission_used,
            reason=reason,
            ip_address=ip_address,
        )

    def log_role_change(
        self,
        actor_id: str,
        target_user_id: str,
        role_id: str,
        action: str,
        expires_at: Optional[datetime] = None,
    ) -> None:
        """Log role assignment and revocation."""
        self._record(
            "role_change",
            user_id=actor_id,
            target_user_id=target_user_id,
            role_id=role_id,
            action=action,
            expires_at=expires_at.isoformat() if expires_at else None,
        )

    def log_phi_failure(
        self,
        operation: str,
        error_code: Optional[str],
        field: Optional[str] = None,
        table: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> None:
        """Log PHI encryption/decryption failures. Never include the value."""
        self._record(
            "phi_%s_failed" % operation,
            level="error",
            error_code=error_code,
            field=field,
            table=table,
            user_id=user_id,
        )


# Global audit logger
audit_logger = AuditLogger()
