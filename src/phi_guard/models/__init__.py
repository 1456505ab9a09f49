"""Database models for phi-guard."""

from phi_guard.models.base import Base
from phi_guard.models.rbac import (
    PermissionModel,
    RoleModel,
    RolePermissionModel,
    UserRoleModel,
)
from phi_guard.models.session import UserSessionModel
from phi_guard.models.session_lock import SessionUserLockModel

__all__ = [
    "Base",
    "PermissionModel",
    "RoleModel",
    "RolePermissionModel",
    "SessionUserLockModel",
    "UserRoleModel",
    "UserSessionModel",
]
