"""In-memory repositories for tests and single-process deployments."""

import threading
from dataclasses import replace
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from phi_guard.repositories.base import (
    RoleRepository,
    SessionRepository,
    mark_closed,
    plan_admission,
)
from phi_guard.schemas.rbac import Role, UserRole
from phi_guard.schemas.session import (
    CONCURRENT_LIMIT_REASON,
    SessionAdmission,
    SessionRecord,
    SessionState,
)


class InMemorySessionRepository(SessionRepository):
    """Thread-safe dictionary-backed session store.

    Records are copied on the way in and out so callers never share
    mutable state with the store.
    """

    def __init__(self) -> None:
        """Initialize empty store."""
        self._sessions: Dict[str, SessionRecord] = {}
        self._lock = threading.RLock()

    def get(self, session_id: str) -> Optional[SessionRecord]:
        """Get a session by id."""
        with self._lock:
            session = self._sessions.get(session_id)
            return replace(session) if session else None

    def save(self, session: SessionRecord) -> None:
        """Insert or update a session row."""
        with self._lock:
            self._sessions[session.id] = replace(session)

    def list_active_by_user(self, user_id: str) -> List[SessionRecord]:
        """List a user's active sessions, most recently active first."""
        with self._lock:
            sessions = [
                replace(s)
                for s in self._sessions.values()
                if s.user_id == user_id and s.is_active
            ]
        sessions.sort(key=lambda s: s.last_activity, reverse=True)
        return sessions

    def admit(self, session: SessionRecord, limit: int, now: datetime) -> SessionAdmission:
        """Close expired and evicted sessions and insert ``session`` under the store lock."""
        with self._lock:
            expired, evicted, retained = plan_admission(
                self.list_active_by_user(session.user_id), limit, now
            )
            for old in expired:
                mark_closed(old, SessionState.HARD_EXPIRED, now)
                self.save(old)
            for old in evicted:
                mark_closed(old, SessionState.EVICTED, now, CONCURRENT_LIMIT_REASON)
                self.save(old)
            self.save(session)
        return SessionAdmission(
            session=session,
            expired=expired,
            evicted=evicted,
            active_count=len(retained) + 1,
        )

    def update_active(
        self,
        session_id: str,
        last_activity: Optional[datetime] = None,
        expires_at: Optional[datetime] = None,
    ) -> bool:
        """Bump activity and/or expiry of an active session."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or not session.is_active:
                return False
            if last_activity is not None:
                session.last_activity = last_activity
            if expires_at is not None:
                session.expires_at = expires_at
            return True

    def deactivate(
        self, session_id: str, state: SessionState, at: datetime, reason: Optional[str] = None
    ) -> bool:
        """Deactivate a session if it is still active."""
        with self._lock:
            session = self._sessions.get(session_id)
            if session is None or not session.is_active:
                return False
            session.is_active = False
            session.state = state
            session.termination_reason = reason or state.name
            session.terminated_at = at
            return True

    def all(self) -> List[SessionRecord]:
        """Every stored row, active or not (audit and tests)."""
        with self._lock:
            return [replace(s) for s in self._sessions.values()]


class InMemoryRoleRepository(RoleRepository):
    """Thread-safe dictionary-backed role store."""

    def __init__(self) -> None:
        """Initialize empty store."""
        self._roles: Dict[str, Role] = {}
        self._user_roles: Dict[Tuple[str, str], UserRole] = {}
        self._lock = threading.RLock()

    def get_role(self, role_id: str) -> Optional[Role]:
        """Get a role with its permission set."""
        with self._lock:
            return self._roles.get(role_id)

    def get_role_by_name(self, name: str) -> Optional[Role]:
        """Get a role by name."""
        with self._lock:
            for role in self._roles.values():
                if role.name == name:
                    return role
        return None

    def save_role(self, role: Role) -> Role:
        """Insert or replace a role."""
        with self._lock:
            self._roles[role.id] = role
        return role

    def list_user_roles(self, user_id: str, active_only: bool = True) -> List[UserRole]:
        """List a user's role assignments in assignment order."""
        with self._lock:
            assignments = [
                ur
                for (uid, _), ur in self._user_roles.items()
                if uid == user_id and (ur.is_active or not active_only)
            ]
        return sorted(assignments, key=lambda ur: ur.assigned_at)

    def upsert_user_role(self, user_role: UserRole) -> UserRole:
        """Insert or replace the assignment for the (user, role) pair."""
        with self._lock:
            self._user_roles[(user_role.user_id, user_role.role_id)] = user_role
        return user_role

    def deactivate_user_role(self, user_id: str, role_id: str) -> bool:
        """Mark an assignment inactive."""
        with self._lock:
            current = self._user_roles.get((user_id, role_id))
            if current is None or not current.is_active:
                return False
            self._user_roles[(user_id, role_id)] = current.model_copy(
                update={"is_active": False}
            )
            return True
