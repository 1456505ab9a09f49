"""User session model."""

from typing import Any, Dict, Optional

from sqlalchemy import JSON, Boolean, Column, Index, Integer, String

from phi_guard.models.base import Base
from phi_guard.models.db_types import UTCDateTime
from phi_guard.schemas.session import GeoLocation, SessionRecord, SessionState


class UserSessionModel(Base):
    """User session row. Sessions are deactivated, never deleted."""

    __tablename__ = "user_sessions"

    id = Column(String(64), primary_key=True)
    user_id = Column(String(64), nullable=False)

    # Device information
    device_fingerprint = Column(String(64), nullable=False)
    ip_address = Column(String(45))
    user_agent = Column(String(500))
    location = Column(JSON, nullable=True)

    # Session metadata
    created_at = Column(UTCDateTime, nullable=False)
    last_activity = Column(UTCDateTime, nullable=False)
    expires_at = Column(UTCDateTime, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)
    state = Column(String(32), default=SessionState.ACTIVE.value, nullable=False)
    termination_reason = Column(String(64))
    terminated_at = Column(UTCDateTime)

    # Security
    mfa_verified = Column(Boolean, default=False, nullable=False)
    login_method = Column(String(32), default="password", nullable=False)
    security_level = Column(Integer, nullable=False)
    is_trusted = Column(Boolean, default=False, nullable=False)

    # Indexes
    __table_args__ = (
        Index("idx_session_user_active", "user_id", "is_active"),
        Index("idx_session_expires", "expires_at"),
    )

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<UserSession(user_id={self.user_id}, active={self.is_active})>"

    def to_record(self) -> SessionRecord:
        """Convert the row to a detached session record."""
        location: Optional[Dict[str, Any]] = self.location
        return SessionRecord(
            id=self.id,
            user_id=self.user_id,
            device_fingerprint=self.device_fingerprint,
            ip_address=self.ip_address or "",
            user_agent=self.user_agent or "",
            location=GeoLocation.from_dict(location) if location else None,
            created_at=self.created_at,
            last_activity=self.last_activity,
            expires_at=self.expires_at,
            is_active=self.is_active,
            state=SessionState(self.state),
            termination_reason=self.termination_reason,
            terminated_at=self.terminated_at,
            mfa_verified=self.mfa_verified,
            login_method=self.login_method,
            security_level=self.security_level,
            is_trusted=self.is_trusted,
        )

    def apply(self, record: SessionRecord) -> None:
        """Copy a session record onto this row."""
        self.id = record.id
        self.user_id = record.user_id
        self.device_fingerprint = record.device_fingerprint
        self.ip_address = record.ip_address
        self.user_agent = record.user_agent
        self.location = record.location.to_dict() if record.location else None
        self.created_at = record.created_at
        self.last_activity = record.last_activity
        self.expires_at = record.expires_at
        self.is_active = record.is_active
        self.state = record.state.value
        self.termination_reason = record.termination_reason
        self.terminated_at = record.terminated_at
        self.mfa_verified = record.mfa_verified
        self.login_method = record.login_method
        self.security_level = record.security_level
        self.is_trusted = record.is_trusted
