"""
Access policy engine.

Resolves whether a user may perform an action on a resource. A user's
effective permissions are the union of the permissions of all active,
unexpired role assignments. A permission that matches the resource and
action is then gated, in order, by its access condition, its time
restriction and its location restriction; the first permission that
passes all three grants access. There is no explicit deny.
"""

from datetime import datetime, timezone, tzinfo
from typing import Any, Callable, List, Optional, Set, Tuple
from zoneinfo import ZoneInfo

from phi_guard.config import Settings, get_settings
from phi_guard.repositories.base import RoleRepository
from phi_guard.schemas.context import RequestContext
from phi_guard.schemas.rbac import (
    AccessCondition,
    AccessDecision,
    Permission,
    TimeRestriction,
    UserRole,
)
from phi_guard.services.location_policy import LocationPolicy, PermissiveLocationPolicy
from phi_guard.services.session_manager import utcnow
from phi_guard.utils.exceptions import RoleLimitExceededError, RoleNotFoundError
from phi_guard.utils.logging import AuditLogger, audit_logger, get_logger

logger = get_logger(__name__)

BUSINESS_DAYS = frozenset({1, 2, 3, 4, 5})  # Monday-Friday, Sunday = 0
BUSINESS_HOURS = (9, 17)

INSUFFICIENT_PERMISSIONS = "insufficient_permissions"
EMERGENCY_ONLY = "emergency_only"
TIME_RESTRICTED = "time_restricted"
LOCATION_RESTRICTED = "location_restricted"


def sunday_based_weekday(moment: datetime) -> int:
    """Day of week with Sunday as 0 and Saturday as 6."""
    return (moment.weekday() + 1) % 7


def check_conditions(conditions: AccessCondition, context: Optional[RequestContext]) -> bool:
    """Check a permission's access condition.

    Only ``emergency_only`` is enforced; the scope fields describe which
    records a caller may reach and are applied by the data layer.
    """
    if conditions.emergency_only and not (context and context.emergency_access):
        return False
    return True


def check_time_restrictions(restrictions: TimeRestriction, moment: datetime) -> bool:
    """Check a permission's time restriction at ``moment`` (local wall time).

    Any failing window still passes when the restriction itself carries
    ``emergency_override``.
    """
    day = sunday_based_weekday(moment)

    if restrictions.business_hours_only:
        start_hour, end_hour = BUSINESS_HOURS
        if day not in BUSINESS_DAYS or not start_hour <= moment.hour < end_hour:
            return restrictions.emergency_override

    if restrictions.allowed_days is not None and day not in restrictions.allowed_days:
        return restrictions.emergency_override

    window = restrictions.hour_window()
    if window is not None:
        start, end = window
        current = moment.time().replace(tzinfo=None)
        if current < start or (end is not None and current >= end):
            return restrictions.emergency_override

    return True


class AccessPolicyEngine:
    """Role based access policy resolution."""

    def __init__(
        self,
        repository: RoleRepository,
        location_policy: Optional[LocationPolicy] = None,
        clock: Optional[Callable[[], datetime]] = None,
        audit: Optional[AuditLogger] = None,
        max_roles_per_user: int = 25,
        local_timezone: Optional[tzinfo] = None,
    ):
        """Initialize the policy engine.

        Args:
            repository: Role storage
            location_policy: Location gate, permissive by default
            clock: Source of the current time
            audit: Audit logger
            max_roles_per_user: Cap on active role assignments per user
            local_timezone: Timezone business hours are evaluated in;
                aware timestamps are converted to it
        """
        self.repository = repository
        self.location_policy = location_policy or PermissiveLocationPolicy()
        self.clock = clock or utcnow
        self.audit = audit or audit_logger
        self.max_roles_per_user = max_roles_per_user
        self.local_timezone = local_timezone

    @classmethod
    def from_settings(
        cls, repository: RoleRepository, settings: Optional[Settings] = None, **kwargs: Any
    ) -> "AccessPolicyEngine":
        """Build an engine with the configured role cap and practice timezone."""
        settings = settings or get_settings()
        name = settings.practice_timezone
        local = timezone.utc if name.upper() == "UTC" else ZoneInfo(name)
        return cls(
            repository,
            max_roles_per_user=settings.max_roles_per_user,
            local_timezone=local,
            **kwargs,
        )

    def check_access(
        self,
        user_id: str,
        resource: str,
        action: str,
        context: Optional[RequestContext] = None,
    ) -> bool:
        """Check whether ``user_id`` may perform ``action`` on ``resource``."""
        return self.evaluate(user_id, resource, action, context).allowed

    def evaluate(
        self,
        user_id: str,
        resource: str,
        action: str,
        context: Optional[RequestContext] = None,
    ) -> AccessDecision:
        """Resolve an access request to a decision.

        Time restrictions are only checked when ``context`` carries a
        timestamp. Every decision, allow or deny, is written to the audit
        trail with the role and permission that granted it, or the reason it
        was denied.
        """
        now = self.clock()
        moment = self._local_time(context.timestamp) if context and context.timestamp else None
        denial_reason = INSUFFICIENT_PERMISSIONS

        for user_role in self._effective_assignments(user_id, now):
            role = self.repository.get_role(user_role.role_id)
            if role is None:
                logger.warning("assigned_role_missing", user_id=user_id, role_id=user_role.role_id)
                continue

            for permission in role.permissions:
                if not permission.matches(resource, action):
                    continue

                blocked_by = self._gate(permission, context, moment)
                if blocked_by is not None:
                    if denial_reason == INSUFFICIENT_PERMISSIONS:
                        denial_reason = blocked_by
                    continue

                decision = AccessDecision(
                    allowed=True, role_name=role.name, permission_name=permission.name
                )
                self._audit(user_id, resource, action, decision, context)
                return decision

        decision = AccessDecision(allowed=False, reason=denial_reason)
        self._audit(user_id, resource, action, decision, context)
        return decision

    def list_effective_permissions(self, user_id: str) -> List[Tuple[str, str]]:
        """Union of ``(resource, action)`` pairs granted by active roles, ignoring gates."""
        pairs: Set[Tuple[str, str]] = set()
        for user_role in self._effective_assignments(user_id, self.clock()):
            role = self.repository.get_role(user_role.role_id)
            if role is None:
                continue
            for permission in role.permissions:
                pairs.update((permission.resource, a) for a in permission.actions)
        return sorted(pairs)

    def assign_user_role(
        self,
        user_id: str,
        role_id: str,
        assigned_by: str,
        expires_at: Optional[datetime] = None,
    ) -> UserRole:
        """Assign a role to a user, replacing any previous assignment of the pair.

        Raises:
            RoleNotFoundError: The role does not exist
            RoleLimitExceededError: The user already holds the maximum
                number of active roles
        """
        if self.repository.get_role(role_id) is None:
            raise RoleNotFoundError(role_id)

        now = self.clock()
        held = [
            ur for ur in self._active_assignments(user_id, now) if ur.role_id != role_id
        ]
        if len(held) >= self.max_roles_per_user:
            raise RoleLimitExceededError(user_id, self.max_roles_per_user)

        user_role = self.repository.upsert_user_role(
            UserRole(
                user_id=user_id,
                role_id=role_id,
                assigned_by=assigned_by,
                assigned_at=now,
                expires_at=expires_at,
                is_active=True,
            )
        )
        self.audit.log_role_change(
            actor_id=assigned_by,
            target_user_id=user_id,
            role_id=role_id,
            action="role_assignment",
            expires_at=expires_at,
        )
        return user_role

    def revoke_user_role(self, user_id: str, role_id: str, revoked_by: str) -> bool:
        """Deactivate a role assignment; it is kept for audit."""
        revoked = self.repository.deactivate_user_role(user_id, role_id)
        self.audit.log_role_change(
            actor_id=revoked_by,
            target_user_id=user_id,
            role_id=role_id,
            action="role_revocation" if revoked else "role_revocation_noop",
        )
        return revoked

    def get_user_roles(self, user_id: str) -> List[UserRole]:
        """All role assignments of a user, including inactive and expired ones."""
        return self.repository.list_user_roles(user_id, active_only=False)

    def get_role(self, role_id: str):
        """Load a role snapshot."""
        return self.repository.get_role(role_id)

    def _active_assignments(self, user_id: str, now: datetime) -> List[UserRole]:
        return [
            ur
            for ur in self.repository.list_user_roles(user_id, active_only=True)
            if ur.is_effective(now)
        ]

    def _effective_assignments(self, user_id: str, now: datetime) -> List[UserRole]:
        assignments = self._active_assignments(user_id, now)
        if len(assignments) > self.max_roles_per_user:
            logger.warning(
                "role_fan_out_truncated",
                user_id=user_id,
                assigned=len(assignments),
                limit=self.max_roles_per_user,
            )
            assignments = assignments[: self.max_roles_per_user]
        return assignments

    def _gate(
        self,
        permission: Permission,
        context: Optional[RequestContext],
        moment: Optional[datetime],
    ) -> Optional[str]:
        """Return the name of the first gate that blocks ``permission``, if any.

        The time gate only applies to requests that carry a timestamp.
        """
        if permission.conditions and not check_conditions(permission.conditions, context):
            return EMERGENCY_ONLY
        if (
            moment is not None
            and permission.time_restrictions
            and not check_time_restrictions(permission.time_restrictions, moment)
        ):
            return TIME_RESTRICTED
        if permission.location_restrictions and not self.location_policy.is_allowed(
            context.ip_address if context else None, permission.location_restrictions
        ):
            return LOCATION_RESTRICTED
        return None

    def _local_time(self, moment: datetime) -> datetime:
        if self.local_timezone is not None and moment.tzinfo is not None:
            return moment.astimezone(self.local_timezone)
        return moment

    def _audit(
        self,
        user_id: str,
        resource: str,
        action: str,
        decision: AccessDecision,
        context: Optional[RequestContext],
    ) -> None:
        self.audit.log_access_decision(
            user_id=user_id,
            resource=resource,
            action=action,
            granted=decision.allowed,
            role_used=decision.role_name,
            permission_used=decision.permission_name,
            reason=decision.reason,
            ip_address=context.ip_address if context else None,
        )
