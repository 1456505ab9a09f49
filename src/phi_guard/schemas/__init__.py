"""Domain types shared by the session manager and the policy engine."""

from phi_guard.schemas.context import RequestContext
from phi_guard.schemas.rbac import (
    AccessCondition,
    AccessDecision,
    ClientScope,
    HipaaAccessLevel,
    LocationRestriction,
    Permission,
    Role,
    RoleCategory,
    TimeRestriction,
    UserRole,
)
from phi_guard.schemas.session import (
    DeviceInfo,
    GeoLocation,
    SecurityContext,
    SessionCreationResult,
    SessionRecord,
    SessionState,
    SessionValidationResult,
    ValidationFailure,
)

__all__ = [
    "AccessCondition",
    "AccessDecision",
    "ClientScope",
    "DeviceInfo",
    "GeoLocation",
    "HipaaAccessLevel",
    "LocationRestriction",
    "Permission",
    "RequestContext",
    "Role",
    "RoleCategory",
    "SecurityContext",
    "SessionCreationResult",
    "SessionRecord",
    "SessionState",
    "SessionValidationResult",
    "TimeRestriction",
    "UserRole",
    "ValidationFailure",
]
