"""Per-user login lock rows."""

from sqlalchemy import Column, String

from phi_guard.models.base import Base
from phi_guard.models.db_types import UTCDateTime


class SessionUserLockModel(Base):
    """One row per user, locked for update while a login admits a session."""

    __tablename__ = "session_user_locks"

    user_id = Column(String(64), primary_key=True)
    locked_at = Column(UTCDateTime)

    def __repr__(self) -> str:
        """Return string representation."""
        return f"<SessionUserLock(user_id={self.user_id})>"
