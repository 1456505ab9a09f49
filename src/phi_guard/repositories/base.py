"""Repository interfaces consumed by the session manager and policy engine."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Tuple

from phi_guard.schemas.rbac import Role, UserRole
from phi_guard.schemas.session import SessionAdmission, SessionRecord, SessionState


def plan_admission(
    active: List[SessionRecord], limit: int, now: datetime
) -> Tuple[List[SessionRecord], List[SessionRecord], List[SessionRecord]]:
    """Split a user's active sessions ahead of a new login.

    Args:
        active: Active sessions, most recently active first
        limit: Maximum concurrent sessions including the new one
        now: Current time

    Returns:
        ``(expired, evicted, retained)``
    """
    expired = [s for s in active if now > s.expires_at]
    retained = [s for s in active if now <= s.expires_at]
    evicted: List[SessionRecord] = []
    while retained and len(retained) >= limit:
        evicted.append(retained.pop())
    return expired, evicted, retained


def mark_closed(
    session: SessionRecord, state: SessionState, at: datetime, reason: Optional[str] = None
) -> None:
    """Apply a terminal state to a detached session record."""
    session.is_active = False
    session.state = state
    session.termination_reason = reason or state.name
    session.terminated_at = at


class SessionRepository(ABC):
    """Storage for session rows.

    Rows are never deleted; ``deactivate`` is the only way a session ends.
    """

    @abstractmethod
    def get(self, session_id: str) -> Optional[SessionRecord]:
        """Get a session by id, active or not."""

    @abstractmethod
    def save(self, session: SessionRecord) -> None:
        """Insert or update a session row."""

    @abstractmethod
    def list_active_by_user(self, user_id: str) -> List[SessionRecord]:
        """List a user's active sessions, most recently active first."""

    @abstractmethod
    def admit(self, session: SessionRecord, limit: int, now: datetime) -> SessionAdmission:
        """Insert a new session, making room for it under the concurrency limit.

        Listing the user's active sessions, closing expired and evicted
        ones and inserting ``session`` happen atomically per user, across
        every process sharing the store.

        Args:
            session: New session row
            limit: Maximum concurrent sessions including the new one
            now: Current time
        """

    @abstractmethod
    def update_active(
        self,
        session_id: str,
        last_activity: Optional[datetime] = None,
        expires_at: Optional[datetime] = None,
    ) -> bool:
        """Bump activity and/or expiry of a session that is still active.

        Returns:
            False if the session is unknown or no longer active; an inactive
            session is never touched
        """

    @abstractmethod
    def deactivate(
        self, session_id: str, state: SessionState, at: datetime, reason: Optional[str] = None
    ) -> bool:
        """Deactivate a session if it is still active.

        Returns:
            True if this call performed the transition, False if the session
            is unknown or already inactive
        """


class RoleRepository(ABC):
    """Storage for roles, permissions and user role assignments."""

    @abstractmethod
    def get_role(self, role_id: str) -> Optional[Role]:
        """Get a role with its permission set."""

    @abstractmethod
    def get_role_by_name(self, name: str) -> Optional[Role]:
        """Get a role with its permission set by unique name."""

    @abstractmethod
    def save_role(self, role: Role) -> Role:
        """Insert or replace a role and its permission links."""

    @abstractmethod
    def list_user_roles(self, user_id: str, active_only: bool = True) -> List[UserRole]:
        """List a user's role assignments in assignment order."""

    @abstractmethod
    def upsert_user_role(self, user_role: UserRole) -> UserRole:
        """Insert an assignment or replace the existing one for the same pair."""

    @abstractmethod
    def deactivate_user_role(self, user_id: str, role_id: str) -> bool:
        """Mark an assignment inactive. Returns False when none is active."""
