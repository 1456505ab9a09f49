"""Tests for the session lifecycle manager."""

import re
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from phi_guard.config.session_config import SessionPolicy
from phi_guard.schemas.session import DeviceInfo, GeoLocation, SessionState, ValidationFailure
from phi_guard.services.session_manager import CONCURRENT_LIMIT_REASON, SessionManager
from phi_guard.services.session_security import StaticGeolocator
from phi_guard.utils.exceptions import SessionNotActiveError

DEVICE = DeviceInfo(user_agent="Mozilla/5.0", ip_address="203.0.113.10")


@pytest.fixture
def manager(session_repository, session_policy, clock, audit):
    """Session manager on an in-memory store and a fixed clock."""
    return SessionManager(session_repository, policy=session_policy, clock=clock, audit=audit)


def _keep_alive(manager, clock, session_id, minutes, step=20):
    """Validate every ``step`` minutes for ``minutes`` minutes."""
    for _ in range(minutes // step):
        clock.advance(minutes=step)
        assert manager.validate_session(session_id).valid


@pytest.mark.hipaa_required
class TestCreateSession:
    """Session creation."""

    def test_create_session(self, manager, clock, session_repository):
        """Test the creation result and the stored row."""
        result = manager.create_session("user-1", DEVICE)

        assert re.fullmatch(r"[0-9a-f]{64}", result.session_id)
        assert result.expires_at == clock.now + timedelta(minutes=240)
        assert result.concurrent_session_count == 1
        assert result.security_level == 50
        assert result.requires_mfa is False
        assert result.evicted_session_ids == ()

        stored = session_repository.get(result.session_id)
        assert stored.user_id == "user-1"
        assert stored.is_active
        assert stored.state is SessionState.ACTIVE
        assert stored.created_at == stored.last_activity == clock.now
        assert len(stored.device_fingerprint) == 32
        assert stored.is_trusted is False

    def test_session_ids_are_unique(self, manager):
        """Test that every session gets a fresh id."""
        ids = {manager.create_session("user-1", DEVICE).session_id for _ in range(3)}

        assert len(ids) == 3

    def test_requires_mfa_when_policy_demands_it(self, session_repository, clock, audit):
        """Test the MFA requirement flag."""
        manager = SessionManager(
            session_repository, policy=SessionPolicy(require_mfa=True), clock=clock, audit=audit
        )

        assert manager.create_session("user-1", DEVICE).requires_mfa is True
        assert manager.create_session("user-2", DEVICE, mfa_verified=True).requires_mfa is False

    def test_trusted_session(self, manager, session_repository):
        """Test that a strong login is marked trusted."""
        device = DeviceInfo(
            user_agent="Mozilla/5.0",
            ip_address="203.0.113.10",
            screen_resolution="1920x1080",
            timezone="America/Chicago",
            language="en-US",
            secure_transport=True,
        )

        result = manager.create_session("user-1", device, mfa_verified=True, login_method="mfa")

        assert result.security_level == 100
        assert session_repository.get(result.session_id).is_trusted is True

    @pytest.mark.audit_required
    def test_login_is_audited(self, manager, audit):
        """Test that creation writes a login event without the full session id."""
        result = manager.create_session("user-1", DEVICE)

        login = [e for e in audit.entries if e.get("action") == "login"]
        assert len(login) == 1
        assert login[0]["user_id"] == "user-1"
        assert login[0]["success"] is True
        assert result.session_id not in str(login[0])


@pytest.mark.hipaa_required
class TestConcurrencyLimit:
    """Concurrent session limit and eviction."""

    def test_evicts_least_recently_active(self, manager, clock, session_repository):
        """Test that the session idle the longest is evicted."""
        first = manager.create_session("user-1", DEVICE).session_id
        clock.advance(minutes=1)
        second = manager.create_session("user-1", DEVICE).session_id
        clock.advance(minutes=1)
        third = manager.create_session("user-1", DEVICE).session_id
        clock.advance(minutes=1)
        assert manager.validate_session(first).valid
        clock.advance(minutes=1)

        result = manager.create_session("user-1", DEVICE)

        assert result.evicted_session_ids == (second,)
        assert result.concurrent_session_count == 3
        evicted = session_repository.get(second)
        assert evicted.is_active is False
        assert evicted.state is SessionState.EVICTED
        assert evicted.termination_reason == CONCURRENT_LIMIT_REASON

        active = {s.id for s in manager.get_user_sessions("user-1")}
        assert active == {first, third, result.session_id}

    def test_evicted_session_fails_validation(self, manager, clock):
        """Test that an evicted session can no longer be used."""
        oldest = manager.create_session("user-1", DEVICE).session_id
        for _ in range(3):
            clock.advance(seconds=1)
            manager.create_session("user-1", DEVICE)

        result = manager.validate_session(oldest)

        assert result.valid is False
        assert result.reason is ValidationFailure.SESSION_NOT_FOUND

    def test_limit_is_per_user(self, manager):
        """Test that other users' sessions do not count."""
        for _ in range(3):
            manager.create_session("user-1", DEVICE)

        result = manager.create_session("user-2", DEVICE)

        assert result.evicted_session_ids == ()
        assert result.concurrent_session_count == 1

    def test_expired_sessions_do_not_count(self, manager, clock, session_repository):
        """Test that expired rows are closed instead of evicting live ones."""
        stale = [manager.create_session("user-1", DEVICE).session_id for _ in range(3)]
        clock.advance(minutes=241)

        result = manager.create_session("user-1", DEVICE)

        assert result.evicted_session_ids == ()
        assert result.concurrent_session_count == 1
        for session_id in stale:
            assert session_repository.get(session_id).state is SessionState.HARD_EXPIRED

    def test_concurrent_logins_respect_limit(self, manager, session_repository):
        """Test that parallel logins never leave more than the limit active."""
        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: manager.create_session("user-1", DEVICE), range(20)))

        assert len(results) == 20
        assert len(session_repository.list_active_by_user("user-1")) == 3
        evicted = [s for s in session_repository.all() if s.state is SessionState.EVICTED]
        assert len(evicted) == 17

    def test_user_locks_are_released(self, manager):
        """Test that per-user lock entries do not outlive their holders."""
        for n in range(5):
            manager.create_session(f"user-{n}", DEVICE)
        manager.terminate_all_user_sessions("user-1")

        assert manager._user_locks == {}

    @pytest.mark.audit_required
    def test_eviction_is_audited(self, manager, clock, audit):
        """Test that each evicted session gets a logout entry."""
        first = manager.create_session("user-1", DEVICE).session_id
        for _ in range(3):
            clock.advance(seconds=1)
            manager.create_session("user-1", DEVICE)

        logouts = [e for e in audit.entries if e.get("action") == "logout"]
        assert len(logouts) == 1
        assert logouts[0]["details"]["termination_reason"] == CONCURRENT_LIMIT_REASON
        assert logouts[0]["session_id"] == first[:8] + "..."


@pytest.mark.hipaa_required
class TestValidateSession:
    """Validation, idle timeout and hard expiry."""

    def test_valid_session_updates_activity(self, manager, clock, session_repository):
        """Test that a successful validation records activity."""
        session_id = manager.create_session("user-1", DEVICE).session_id
        clock.advance(minutes=10)

        result = manager.validate_session(session_id)

        assert result.valid is True
        assert result.reason is None
        assert result.time_to_expiry == timedelta(minutes=230)
        assert result.requires_reauth is False
        assert session_repository.get(session_id).last_activity == clock.now

    def test_unknown_session(self, manager):
        """Test that an unknown id is reported as not found."""
        result = manager.validate_session("does-not-exist")

        assert result.valid is False
        assert result.reason is ValidationFailure.SESSION_NOT_FOUND
        assert result.session is None

    def test_idle_timeout(self, manager, clock, session_repository):
        """Test that 31 idle minutes end the session."""
        session_id = manager.create_session("user-1", DEVICE).session_id
        clock.advance(minutes=31)

        result = manager.validate_session(session_id)

        assert result.valid is False
        assert result.reason is ValidationFailure.IDLE_TIMEOUT
        stored = session_repository.get(session_id)
        assert stored.is_active is False
        assert stored.state is SessionState.IDLE_EXPIRED

        again = manager.validate_session(session_id)
        assert again.reason is ValidationFailure.SESSION_NOT_FOUND

    def test_idle_window_boundary(self, manager, clock):
        """Test that exactly the idle window is still valid."""
        session_id = manager.create_session("user-1", DEVICE).session_id
        clock.advance(minutes=30)

        assert manager.validate_session(session_id).valid is True

    def test_activity_keeps_session_alive(self, manager, clock):
        """Test that regular activity resets the idle window."""
        session_id = manager.create_session("user-1", DEVICE).session_id

        _keep_alive(manager, clock, session_id, minutes=120)

    def test_hard_expiry_despite_activity(self, manager, clock, session_repository):
        """Test that activity never extends past expires_at."""
        session_id = manager.create_session("user-1", DEVICE).session_id
        _keep_alive(manager, clock, session_id, minutes=240)
        clock.advance(minutes=1)

        result = manager.validate_session(session_id)

        assert result.valid is False
        assert result.reason is ValidationFailure.SESSION_EXPIRED
        assert session_repository.get(session_id).state is SessionState.HARD_EXPIRED

    def test_requires_reauth_after_four_hours_without_mfa(self, manager, clock):
        """Test the re-authentication flag on old non-MFA sessions."""
        session_id = manager.create_session("user-1", DEVICE).session_id
        _keep_alive(manager, clock, session_id, minutes=240)
        manager.extend_session(session_id, minutes=60)
        clock.advance(minutes=1)

        result = manager.validate_session(session_id)

        assert result.valid is True
        assert result.requires_reauth is True

    def test_mfa_sessions_do_not_require_reauth(self, manager, clock):
        """Test that MFA sessions skip the re-authentication flag."""
        session_id = manager.create_session("user-1", DEVICE, mfa_verified=True).session_id
        _keep_alive(manager, clock, session_id, minutes=240)
        manager.extend_session(session_id, minutes=60)
        clock.advance(minutes=1)

        assert manager.validate_session(session_id).requires_reauth is False

    @pytest.mark.audit_required
    def test_failed_validation_is_audited(self, manager, audit):
        """Test that every validation outcome is audited."""
        manager.validate_session("missing", ip_address="198.51.100.7")

        entry = audit.entries[-1]
        assert entry["action"] == "validate"
        assert entry["success"] is False
        assert entry["details"]["reason"] == "SESSION_NOT_FOUND"
        assert entry["ip_address"] == "198.51.100.7"


@pytest.mark.hipaa_required
class TestTerminateSession:
    """Logout and revocation."""

    def test_terminate_is_idempotent(self, manager, session_repository):
        """Test that terminating twice is a no-op the second time."""
        session_id = manager.create_session("user-1", DEVICE).session_id

        assert manager.terminate_session(session_id) is True
        assert manager.terminate_session(session_id) is False
        assert manager.terminate_session("unknown") is False

        stored = session_repository.get(session_id)
        assert stored.state is SessionState.LOGGED_OUT
        assert stored.terminated_at is not None

    def test_terminated_session_fails_validation(self, manager):
        """Test that a logged out session cannot be used."""
        session_id = manager.create_session("user-1", DEVICE).session_id
        manager.terminate_session(session_id)

        assert (
            manager.validate_session(session_id).reason is ValidationFailure.SESSION_NOT_FOUND
        )

    def test_terminate_requires_terminal_state(self, manager):
        """Test that a session cannot be terminated into ACTIVE."""
        session_id = manager.create_session("user-1", DEVICE).session_id

        with pytest.raises(ValueError):
            manager.terminate_session(session_id, reason=SessionState.ACTIVE)

    def test_terminate_all_user_sessions(self, manager, session_repository):
        """Test revoking every session but the caller's."""
        keep = manager.create_session("user-1", DEVICE).session_id
        manager.create_session("user-1", DEVICE)
        manager.create_session("user-1", DEVICE)
        other = manager.create_session("user-2", DEVICE).session_id

        count = manager.terminate_all_user_sessions("user-1", except_session_id=keep)

        assert count == 2
        assert [s.id for s in manager.get_user_sessions("user-1")] == [keep]
        assert manager.validate_session(other).valid
        revoked = [s for s in session_repository.all() if s.state is SessionState.REVOKED]
        assert len(revoked) == 2


@pytest.mark.hipaa_required
class TestExtendSession:
    """Session extension."""

    def test_extend(self, manager, clock):
        """Test pushing the expiry out."""
        result = manager.create_session("user-1", DEVICE)

        new_expiry = manager.extend_session(result.session_id, minutes=60)

        assert new_expiry == result.expires_at + timedelta(minutes=60)
        assert manager.validate_session(result.session_id).time_to_expiry == timedelta(
            minutes=300
        )

    def test_extend_is_capped(self, manager, clock):
        """Test that extensions stop at the absolute ceiling."""
        created = clock.now
        session_id = manager.create_session("user-1", DEVICE).session_id

        new_expiry = manager.extend_session(session_id, minutes=600)

        assert new_expiry == created + timedelta(minutes=480)
        assert manager.extend_session(session_id, minutes=60) == created + timedelta(
            minutes=480
        )

    def test_extend_unknown_session(self, manager):
        """Test that only active sessions can be extended."""
        with pytest.raises(SessionNotActiveError):
            manager.extend_session("unknown")

    def test_extend_terminated_session(self, manager):
        """Test that ended sessions cannot be revived."""
        session_id = manager.create_session("user-1", DEVICE).session_id
        manager.terminate_session(session_id)

        with pytest.raises(SessionNotActiveError):
            manager.extend_session(session_id)

    def test_extend_expired_session(self, manager, clock, session_repository):
        """Test that an expired session is closed instead of extended."""
        session_id = manager.create_session("user-1", DEVICE).session_id
        clock.advance(minutes=241)

        with pytest.raises(SessionNotActiveError):
            manager.extend_session(session_id)

        assert session_repository.get(session_id).state is SessionState.HARD_EXPIRED

    def test_extend_requires_positive_minutes(self, manager):
        """Test that zero or negative extensions are refused."""
        session_id = manager.create_session("user-1", DEVICE).session_id

        with pytest.raises(ValueError):
            manager.extend_session(session_id, minutes=0)


class TestSecurityContext:
    """Security metadata for the policy engine."""

    def test_from_validation_result(self, manager):
        """Test extracting the context from a valid session."""
        session_id = manager.create_session("user-1", DEVICE, mfa_verified=True).session_id

        context = SessionManager.security_context(manager.validate_session(session_id))

        assert context.user_id == "user-1"
        assert context.session_id == session_id
        assert context.mfa_verified is True
        assert context.security_level == 75
        assert context.trusted is True

    def test_from_failed_validation(self, manager):
        """Test that a failed validation has no context."""
        with pytest.raises(SessionNotActiveError):
            SessionManager.security_context(manager.validate_session("missing"))


class TestGeolocation:
    """Optional login geolocation."""

    @pytest.fixture
    def geo_manager(self, session_repository, clock, audit):
        """Manager with location tracking enabled."""
        locations = {
            "203.0.113.10": GeoLocation("US", "Illinois", "Chicago", 41.88, -87.63),
        }
        return SessionManager(
            session_repository,
            policy=SessionPolicy(enable_location_tracking=True),
            clock=clock,
            geolocator=StaticGeolocator(locations),
            audit=audit,
        )

    def test_location_is_stored(self, geo_manager, session_repository):
        """Test that a located login records the location."""
        session_id = geo_manager.create_session("user-1", DEVICE).session_id

        assert session_repository.get(session_id).location.city == "Chicago"

    def test_geolocation_failure_is_not_fatal(self, geo_manager, session_repository):
        """Test that an unknown address stores no location."""
        device = DeviceInfo(user_agent="Mozilla/5.0", ip_address="198.51.100.99")

        session_id = geo_manager.create_session("user-1", device).session_id

        assert session_repository.get(session_id).location is None

    def test_tracking_disabled_by_default(self, manager, session_repository):
        """Test that no lookup happens unless enabled."""
        session_id = manager.create_session("user-1", DEVICE).session_id

        assert session_repository.get(session_id).location is None
