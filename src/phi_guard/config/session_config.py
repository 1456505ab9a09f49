"""Session policy and security scoring configuration.

This module defines the session timeout policy and the weights used to
score the trust level of a newly created session.
"""

from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Any, Dict, Optional

from phi_guard.config.base import Settings


@dataclass(frozen=True)
class SessionPolicy:
    """Session lifecycle policy.

    All durations are in minutes. ``max_session_time`` is the lifetime given
    to a new session; ``absolute_ceiling`` bounds how far extensions may
    push ``expires_at`` past the creation time.
    """

    max_idle_time: int = 30
    max_session_time: int = 240  # 4 hours - HIPAA best practice
    absolute_ceiling: int = 480
    reauth_after: int = 240
    max_concurrent_sessions: int = 3
    require_mfa: bool = False
    enable_location_tracking: bool = False

    def __post_init__(self) -> None:
        """Reject policies that cannot be enforced."""
        if self.max_concurrent_sessions < 1:
            raise ValueError("max_concurrent_sessions must be at least 1")
        if self.absolute_ceiling < self.max_session_time:
            raise ValueError("absolute_ceiling cannot be shorter than max_session_time")

    @property
    def idle_timeout(self) -> timedelta:
        """Idle window as a timedelta."""
        return timedelta(minutes=self.max_idle_time)

    @property
    def session_lifetime(self) -> timedelta:
        """Initial session lifetime as a timedelta."""
        return timedelta(minutes=self.max_session_time)

    @property
    def ceiling(self) -> timedelta:
        """Hard lifetime ceiling as a timedelta."""
        return timedelta(minutes=self.absolute_ceiling)

    @property
    def reauth_age(self) -> timedelta:
        """Session age after which non-MFA sessions must re-authenticate."""
        return timedelta(minutes=self.reauth_after)

    @classmethod
    def from_settings(cls, settings: Settings) -> "SessionPolicy":
        """Build the policy from application settings.

        Args:
            settings: Loaded application settings

        Returns:
            Session policy with environment overrides applied
        """
        policy = cls(
            max_idle_time=settings.session_idle_timeout_minutes,
            max_session_time=settings.session_max_lifetime_minutes,
            absolute_ceiling=settings.session_absolute_ceiling_minutes,
            reauth_after=settings.session_reauth_after_minutes,
            max_concurrent_sessions=settings.max_concurrent_sessions,
            require_mfa=settings.session_require_mfa,
            enable_location_tracking=settings.session_location_tracking,
        )
        return SessionConfigOverrides.apply_overrides(policy, settings.environment)


@dataclass(frozen=True)
class SecurityLevelWeights:
    """Weights of the session security score."""

    base: int = 50
    mfa_bonus: int = 25
    secure_transport_bonus: int = 10
    login_method_adjustments: Dict[str, int] = field(
        default_factory=lambda: {"mfa": 15, "emergency": -20}
    )
    device_detail_bonus: int = 5
    trusted_threshold: int = 70
    minimum: int = 0
    maximum: int = 100


class SessionConfigOverrides:
    """Environment-specific session policy overrides."""

    PRODUCTION: Dict[str, Any] = {
        "require_mfa": True,
    }

    STAGING: Dict[str, Any] = {
        "require_mfa": True,
    }

    DEVELOPMENT: Dict[str, Any] = {}

    TESTING: Dict[str, Any] = {
        "max_idle_time": 5,  # Short timeouts for testing
    }

    @classmethod
    def get_overrides(cls, environment: Optional[str]) -> Dict[str, Any]:
        """Get overrides for an environment name.

        Args:
            environment: Environment name (production, development, testing)

        Returns:
            Mapping of policy field overrides
        """
        if not environment:
            return {}
        return dict(getattr(cls, environment.upper(), {}))

    @classmethod
    def apply_overrides(cls, policy: SessionPolicy, environment: str) -> SessionPolicy:
        """Return a copy of ``policy`` with environment overrides applied."""
        overrides = cls.get_overrides(environment)
        if not overrides:
            return policy
        return replace(policy, **overrides)
