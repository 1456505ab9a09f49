"""Repository layer for data access.

Abstract storage interfaces consumed by the session manager and policy
engine, with in-memory and SQLAlchemy implementations.
"""

from phi_guard.repositories.base import RoleRepository, SessionRepository
from phi_guard.repositories.database import (
    SQLAlchemyRoleRepository,
    SQLAlchemySessionRepository,
    create_session_factory,
)
from phi_guard.repositories.memory import (
    InMemoryRoleRepository,
    InMemorySessionRepository,
)

__all__ = [
    "InMemoryRoleRepository",
    "InMemorySessionRepository",
    "RoleRepository",
    "SQLAlchemyRoleRepository",
    "SQLAlchemySessionRepository",
    "SessionRepository",
    "create_session_factory",
]
