"""
Session lifecycle manager.

Issues, validates, extends and terminates authenticated sessions. A user
may hold at most ``policy.max_concurrent_sessions`` active sessions; when a
login would exceed that, the least recently active session is evicted.
Sessions are deactivated, never deleted, and every lifecycle step is
written to the audit trail.
"""

import secrets
import threading
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, Iterator, List, Optional, Union

from phi_guard.config import get_settings
from phi_guard.config.session_config import SecurityLevelWeights, SessionPolicy
from phi_guard.repositories.base import SessionRepository
from phi_guard.schemas.session import (
    CONCURRENT_LIMIT_REASON,
    DeviceInfo,
    GeoLocation,
    SecurityContext,
    SessionCreationResult,
    SessionRecord,
    SessionState,
    SessionValidationResult,
    ValidationFailure,
)
from phi_guard.services.session_security import (
    Geolocator,
    calculate_security_level,
    generate_device_fingerprint,
    is_trusted,
)
from phi_guard.utils.exceptions import GeolocationError, SessionNotActiveError
from phi_guard.utils.logging import (
    AuditLogger,
    audit_logger,
    get_logger,
    redact_session_id,
)

logger = get_logger(__name__)

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class _UserLock:
    __slots__ = ("lock", "holders")

    def __init__(self) -> None:
        self.lock = threading.Lock()
        self.holders = 0


class SessionManager:
    """Manages the lifecycle of authenticated sessions."""

    def __init__(
        self,
        repository: SessionRepository,
        policy: Optional[SessionPolicy] = None,
        clock: Optional[Clock] = None,
        geolocator: Optional[Geolocator] = None,
        audit: Optional[AuditLogger] = None,
        weights: Optional[SecurityLevelWeights] = None,
    ):
        """Initialize the session manager.

        Args:
            repository: Session storage
            policy: Session policy, defaults to the configured policy
            clock: Source of the current time
            geolocator: Optional IP geolocation capability
            audit: Audit logger
            weights: Security level scoring weights
        """
        self.repository = repository
        self.policy = policy or SessionPolicy.from_settings(get_settings())
        self.clock = clock or utcnow
        self.geolocator = geolocator
        self.audit = audit or audit_logger
        self.weights = weights or SecurityLevelWeights()
        self._user_locks: Dict[str, _UserLock] = {}
        self._user_locks_guard = threading.Lock()

    @contextmanager
    def _user_lock(self, user_id: str) -> Iterator[None]:
        """Hold the user's lock; the entry is dropped once nobody holds or awaits it."""
        with self._user_locks_guard:
            entry = self._user_locks.get(user_id)
            if entry is None:
                entry = self._user_locks[user_id] = _UserLock()
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._user_locks_guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._user_locks[user_id]

    def create_session(
        self,
        user_id: str,
        device_info: DeviceInfo,
        mfa_verified: bool = False,
        login_method: str = "password",
    ) -> SessionCreationResult:
        """Create a session after successful authentication.

        Reading the user's active sessions, evicting and inserting happen
        in one repository call that is atomic per user, so concurrent
        logins cannot both slip under the concurrency limit, even from
        different processes sharing the store.

        Args:
            user_id: Authenticated user
            device_info: Client device details
            mfa_verified: Whether MFA was completed for this login
            login_method: Login method tag

        Returns:
            Creation result with the new session id
        """
        security_level = calculate_security_level(
            device_info, mfa_verified, login_method, self.weights
        )
        location = self._locate(device_info.ip_address)

        with self._user_lock(user_id):
            now = self.clock()
            session = SessionRecord(
                id=secrets.token_hex(32),
                user_id=user_id,
                device_fingerprint=generate_device_fingerprint(device_info),
                ip_address=device_info.ip_address,
                user_agent=device_info.user_agent,
                location=location,
                created_at=now,
                last_activity=now,
                expires_at=now + self.policy.session_lifetime,
                security_level=security_level,
                is_trusted=is_trusted(security_level, self.weights),
                mfa_verified=mfa_verified,
                login_method=login_method,
            )
            admission = self.repository.admit(
                session, self.policy.max_concurrent_sessions, now
            )

        for old in admission.expired:
            self._audit_termination(old, SessionState.HARD_EXPIRED, now)
        for old in admission.evicted:
            self._audit_termination(old, SessionState.EVICTED, now)

        evicted = [old.id for old in admission.evicted]
        concurrent = admission.active_count
        self.audit.log_session_event(
            user_id=user_id,
            action="login",
            success=True,
            session_id=session.id,
            ip_address=device_info.ip_address,
            details={
                "device_fingerprint": session.device_fingerprint,
                "security_level": security_level,
                "mfa_verified": mfa_verified,
                "login_method": login_method,
                "concurrent_sessions": concurrent,
                "evicted_sessions": len(evicted),
            },
        )

        return SessionCreationResult(
            session_id=session.id,
            expires_at=session.expires_at,
            requires_mfa=self.policy.require_mfa and not mfa_verified,
            security_level=security_level,
            concurrent_session_count=concurrent,
            evicted_session_ids=tuple(evicted),
        )

    def validate_session(
        self, session_id: str, ip_address: Optional[str] = None
    ) -> SessionValidationResult:
        """Validate a session and record activity on success.

        Args:
            session_id: Session id presented by the caller
            ip_address: Caller IP, for the audit trail only

        Returns:
            Typed validation result; failures are never raised
        """
        session = self.repository.get(session_id)
        if session is None or not session.is_active:
            return self._invalid(
                session_id, ValidationFailure.SESSION_NOT_FOUND, ip_address, session
            )

        now = self.clock()

        if now > session.expires_at:
            self._deactivate(session, SessionState.HARD_EXPIRED, now)
            return self._invalid(
                session_id, ValidationFailure.SESSION_EXPIRED, ip_address, session
            )

        if session.idle_time(now) > self.policy.idle_timeout:
            self._deactivate(session, SessionState.IDLE_EXPIRED, now)
            return self._invalid(
                session_id, ValidationFailure.IDLE_TIMEOUT, ip_address, session
            )

        if not self.repository.update_active(session_id, last_activity=now):
            # Terminated concurrently between the read and the update.
            return self._invalid(
                session_id, ValidationFailure.SESSION_NOT_FOUND, ip_address, session
            )
        session.last_activity = now

        requires_reauth = (
            session.age(now) > self.policy.reauth_age and not session.mfa_verified
        )
        time_to_expiry = session.expires_at - now

        self.audit.log_session_event(
            user_id=session.user_id,
            action="validate",
            success=True,
            session_id=session_id,
            ip_address=ip_address,
            details={
                "time_to_expiry_seconds": int(time_to_expiry.total_seconds()),
                "requires_reauth": requires_reauth,
            },
        )

        return SessionValidationResult(
            valid=True,
            session=session,
            time_to_expiry=time_to_expiry,
            requires_reauth=requires_reauth,
        )

    def terminate_session(
        self, session_id: str, reason: SessionState = SessionState.LOGGED_OUT
    ) -> bool:
        """Deactivate a session. Idempotent.

        Args:
            session_id: Session to end
            reason: Terminal state to record

        Returns:
            True if the session was active and is now ended, False if it was
            unknown or already inactive
        """
        if not reason.is_terminal:
            raise ValueError("A session can only be terminated into a terminal state")

        session = self.repository.get(session_id)
        if session is None or not session.is_active:
            logger.debug("session_already_inactive", session_id=redact_session_id(session_id))
            return False

        return self._deactivate(session, reason, self.clock())

    def terminate_all_user_sessions(
        self,
        user_id: str,
        except_session_id: Optional[str] = None,
        reason: SessionState = SessionState.REVOKED,
    ) -> int:
        """Deactivate every active session of a user.

        Args:
            user_id: User whose sessions end
            except_session_id: Session to keep (e.g. the caller's own)
            reason: Terminal state to record

        Returns:
            Number of sessions this call deactivated
        """
        if not reason.is_terminal:
            raise ValueError("A session can only be terminated into a terminal state")

        terminated = 0
        with self._user_lock(user_id):
            now = self.clock()
            for session in self.repository.list_active_by_user(user_id):
                if session.id == except_session_id:
                    continue
                if self.repository.deactivate(session.id, reason, now, "BULK_TERMINATION"):
                    terminated += 1

        self.audit.log_session_event(
            user_id=user_id,
            action="logout_all",
            success=True,
            session_id=except_session_id,
            details={
                "termination_reason": "BULK_TERMINATION",
                "state": reason.value,
                "sessions_terminated": terminated,
            },
        )
        return terminated

    def extend_session(self, session_id: str, minutes: int = 60) -> datetime:
        """Push a session's expiry out by ``minutes``.

        The new expiry never passes ``created_at + policy.absolute_ceiling``.

        Returns:
            The new expiry

        Raises:
            SessionNotActiveError: The session is unknown, ended or expired
        """
        if minutes <= 0:
            raise ValueError("Extension must be a positive number of minutes")

        session = self.repository.get(session_id)
        if session is None or not session.is_active:
            raise SessionNotActiveError()

        now = self.clock()
        if now > session.expires_at:
            self._deactivate(session, SessionState.HARD_EXPIRED, now)
            raise SessionNotActiveError("Session has expired")

        ceiling = session.created_at + self.policy.ceiling
        new_expires_at = min(session.expires_at + timedelta(minutes=minutes), ceiling)

        if not self.repository.update_active(session_id, expires_at=new_expires_at):
            raise SessionNotActiveError()

        self.audit.log_session_event(
            user_id=session.user_id,
            action="extend",
            success=True,
            session_id=session_id,
            details={
                "requested_minutes": minutes,
                "expires_at": new_expires_at.isoformat(),
                "capped": new_expires_at == ceiling,
            },
        )
        return new_expires_at

    def get_user_sessions(self, user_id: str) -> List[SessionRecord]:
        """List a user's active sessions, most recently active first."""
        return self.repository.list_active_by_user(user_id)

    @staticmethod
    def security_context(
        source: Union[SessionRecord, SessionValidationResult],
    ) -> SecurityContext:
        """Extract the security metadata the policy engine consumes.

        Raises:
            SessionNotActiveError: ``source`` is a failed validation result
        """
        session = source.session if isinstance(source, SessionValidationResult) else source
        if session is None:
            raise SessionNotActiveError("No valid session to build a security context from")
        return SecurityContext(
            user_id=session.user_id,
            session_id=session.id,
            security_level=session.security_level,
            mfa_verified=session.mfa_verified,
            trusted=session.is_trusted,
        )

    def _locate(self, ip_address: str) -> Optional[GeoLocation]:
        if not self.policy.enable_location_tracking or self.geolocator is None:
            return None
        try:
            return self.geolocator.locate(ip_address)
        except GeolocationError as e:
            logger.warning("session_geolocation_failed", error=str(e))
            return None

    def _deactivate(self, session: SessionRecord, state: SessionState, now: datetime) -> bool:
        if not self.repository.deactivate(session.id, state, now):
            return False
        session.is_active = False
        session.state = state
        self._audit_termination(session, state, now)
        return True

    def _audit_termination(self, session: SessionRecord, state: SessionState, now: datetime) -> None:
        self.audit.log_session_event(
            user_id=session.user_id,
            action="logout",
            success=True,
            session_id=session.id,
            details={
                "termination_reason": (
                    CONCURRENT_LIMIT_REASON if state is SessionState.EVICTED else state.name
                ),
                "session_duration_seconds": int((now - session.created_at).total_seconds()),
            },
        )

    def _invalid(
        self,
        session_id: str,
        reason: ValidationFailure,
        ip_address: Optional[str],
        session: Optional[SessionRecord] = None,
    ) -> SessionValidationResult:
        self.audit.log_session_event(
            user_id=session.user_id if session else None,
            action="validate",
            success=False,
            session_id=session_id,
            ip_address=ip_address,
            details={"reason": reason.value},
        )
        return SessionValidationResult(valid=False, reason=reason)
