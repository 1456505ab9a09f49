"""Role, permission and restriction models.

Restrictions are stored as JSON on the role/permission link, so they are
pydantic models and validate when loaded from the store. All models are
frozen: a role loaded for one access check is an immutable snapshot.
"""

import re
from dataclasses import dataclass
from datetime import datetime, time
from enum import Enum
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator

_HOUR_RANGE_PATTERN = re.compile(r"^([01]\d|2[0-3]):([0-5]\d)-([01]\d|2[0-4]):([0-5]\d)$")


class RoleCategory(str, Enum):
    """Role categories."""

    CLINICAL = "clinical"
    ADMINISTRATIVE = "administrative"
    TECHNICAL = "technical"
    EXECUTIVE = "executive"


class HipaaAccessLevel(str, Enum):
    """HIPAA minimum-necessary access tiers."""

    MINIMAL = "minimal"
    LIMITED = "limited"
    FULL = "full"
    ADMINISTRATIVE = "administrative"


class ClientScope(str, Enum):
    """Which client records a permission reaches."""

    OWN = "own"
    ASSIGNED = "assigned"
    ALL = "all"


class AccessCondition(BaseModel):
    """Contextual conditions on a permission."""

    model_config = ConfigDict(frozen=True)

    data_scope: Tuple[str, ...] = ()
    client_scope: Optional[ClientScope] = None
    department_scope: Tuple[str, ...] = ()
    emergency_only: bool = False


class TimeRestriction(BaseModel):
    """Temporal restriction on a permission.

    ``allowed_days`` uses 0 for Sunday through 6 for Saturday.
    ``allowed_hours`` is an ``HH:MM-HH:MM`` window, end exclusive.
    """

    model_config = ConfigDict(frozen=True)

    business_hours_only: bool = False
    allowed_hours: Optional[str] = None
    allowed_days: Optional[Tuple[int, ...]] = None
    emergency_override: bool = False

    @field_validator("allowed_hours")
    @classmethod
    def validate_allowed_hours(cls, v: Optional[str]) -> Optional[str]:
        """Require the ``HH:MM-HH:MM`` form."""
        if v is None:
            return v
        v = v.replace(" ", "")
        if not _HOUR_RANGE_PATTERN.match(v):
            raise ValueError(f"allowed_hours must look like '09:00-17:00', got {v!r}")
        return v

    @field_validator("allowed_days")
    @classmethod
    def validate_allowed_days(cls, v: Optional[Tuple[int, ...]]) -> Optional[Tuple[int, ...]]:
        """Days are 0 (Sunday) to 6 (Saturday)."""
        if v is not None and any(day < 0 or day > 6 for day in v):
            raise ValueError("allowed_days must be between 0 (Sunday) and 6 (Saturday)")
        return v

    def hour_window(self) -> Optional[Tuple[time, Optional[time]]]:
        """Parse ``allowed_hours`` into (start, end); end None means midnight."""
        if not self.allowed_hours:
            return None
        start_raw, end_raw = self.allowed_hours.split("-")
        start = time.fromisoformat(start_raw)
        end = None if end_raw == "24:00" else time.fromisoformat(end_raw)
        return start, end


class LocationRestriction(BaseModel):
    """Network/location restriction on a permission."""

    model_config = ConfigDict(frozen=True)

    allowed_locations: Tuple[str, ...] = ()
    blocked_locations: Tuple[str, ...] = ()
    require_secure_network: bool = False


class Permission(BaseModel):
    """A resource/action grant as attached to one role."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    resource: str
    actions: Tuple[str, ...]
    description: Optional[str] = None
    conditions: Optional[AccessCondition] = None
    time_restrictions: Optional[TimeRestriction] = None
    location_restrictions: Optional[LocationRestriction] = None

    def matches(self, resource: str, action: str) -> bool:
        """Check whether this permission covers ``action`` on ``resource``."""
        return self.resource == resource and action in self.actions


class Role(BaseModel):
    """A role and its ordered permission set."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: Optional[str] = None
    category: RoleCategory
    hipaa_access_level: HipaaAccessLevel
    emergency_override: bool = False
    permissions: Tuple[Permission, ...] = ()


class UserRole(BaseModel):
    """Assignment of a role to a user. Unique per (user_id, role_id)."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    role_id: str
    assigned_by: str
    assigned_at: datetime
    expires_at: Optional[datetime] = None
    is_active: bool = True

    def is_effective(self, now: datetime) -> bool:
        """Check whether the assignment takes part in access resolution."""
        if not self.is_active:
            return False
        return self.expires_at is None or self.expires_at >= now


@dataclass(frozen=True)
class AccessDecision:
    """Outcome of an access check."""

    allowed: bool
    role_name: Optional[str] = None
    permission_name: Optional[str] = None
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        """Truthiness follows the decision."""
        return self.allowed
