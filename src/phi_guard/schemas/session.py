"""Session data types."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

CONCURRENT_LIMIT_REASON = "CONCURRENT_LIMIT"


class SessionState(str, Enum):
    """Lifecycle state of a session.

    ``ACTIVE`` is the only non-terminal state; a session never returns to it.
    """

    ACTIVE = "active"
    IDLE_EXPIRED = "idle_expired"
    HARD_EXPIRED = "hard_expired"
    LOGGED_OUT = "logged_out"
    EVICTED = "evicted"
    REVOKED = "revoked"

    @property
    def is_terminal(self) -> bool:
        """Check whether the state ends the session."""
        return self is not SessionState.ACTIVE


class ValidationFailure(str, Enum):
    """Reasons a session fails validation."""

    SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
    SESSION_EXPIRED = "SESSION_EXPIRED"
    IDLE_TIMEOUT = "IDLE_TIMEOUT"


@dataclass(frozen=True)
class DeviceInfo:
    """Client device details captured at login."""

    user_agent: str = ""
    ip_address: str = ""
    screen_resolution: Optional[str] = None
    timezone: Optional[str] = None
    language: Optional[str] = None
    platform: Optional[str] = None
    secure_transport: bool = False


@dataclass(frozen=True)
class GeoLocation:
    """Approximate location of an IP address."""

    country: str
    region: str
    city: str
    latitude: float
    longitude: float

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for JSON storage."""
        return {
            "country": self.country,
            "region": self.region,
            "city": self.city,
            "lat": self.latitude,
            "lng": self.longitude,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GeoLocation":
        """Deserialize from JSON storage."""
        return cls(
            country=data["country"],
            region=data["region"],
            city=data["city"],
            latitude=float(data["lat"]),
            longitude=float(data["lng"]),
        )


@dataclass
class SessionRecord:
    """One authenticated session row."""

    id: str
    user_id: str
    device_fingerprint: str
    ip_address: str
    user_agent: str
    created_at: datetime
    last_activity: datetime
    expires_at: datetime
    security_level: int
    is_trusted: bool
    mfa_verified: bool = False
    login_method: str = "password"
    location: Optional[GeoLocation] = None
    is_active: bool = True
    state: SessionState = SessionState.ACTIVE
    termination_reason: Optional[str] = None
    terminated_at: Optional[datetime] = None

    def age(self, now: datetime) -> timedelta:
        """Time since the session was created."""
        return now - self.created_at

    def idle_time(self, now: datetime) -> timedelta:
        """Time since the last successful validation."""
        return now - self.last_activity


@dataclass
class SessionAdmission:
    """Outcome of admitting a new session for a user.

    ``expired`` are rows that were still flagged active past their expiry;
    ``evicted`` are the least recently active sessions closed to stay under
    the concurrency limit. ``active_count`` includes the new session.
    """

    session: SessionRecord
    expired: List[SessionRecord] = field(default_factory=list)
    evicted: List[SessionRecord] = field(default_factory=list)
    active_count: int = 1


@dataclass(frozen=True)
class SessionCreationResult:
    """Result of creating a session."""

    session_id: str
    expires_at: datetime
    requires_mfa: bool
    security_level: int
    concurrent_session_count: int
    evicted_session_ids: tuple = field(default_factory=tuple)


@dataclass(frozen=True)
class SessionValidationResult:
    """Typed outcome of validating a session.

    Failures are reported here, never raised, so callers can send the user
    back to authentication.
    """

    valid: bool
    reason: Optional[ValidationFailure] = None
    session: Optional[SessionRecord] = None
    time_to_expiry: Optional[timedelta] = None
    requires_reauth: bool = False


@dataclass(frozen=True)
class SecurityContext:
    """Security metadata of a validated session, consumed by the policy engine."""

    user_id: str
    session_id: str
    security_level: int
    mfa_verified: bool
    trusted: bool
