"""
Default healthcare role catalog.

Six roles for a behavioural-health practice, the thirteen permissions they
draw from, and the per-role conditions and time restrictions attached to
each grant. ``seed_healthcare_roles`` writes them through a role
repository; re-seeding replaces the stored definitions.
"""

from typing import Dict, List, Optional, Tuple

from phi_guard.repositories.base import RoleRepository
from phi_guard.schemas.rbac import (
    AccessCondition,
    ClientScope,
    HipaaAccessLevel,
    Permission,
    Role,
    RoleCategory,
    TimeRestriction,
)
from phi_guard.utils.logging import get_logger

logger = get_logger(__name__)

CRUD = ("create", "read", "update", "delete")

# id -> (name, resource, actions, description)
HEALTHCARE_PERMISSIONS: Dict[str, Tuple[str, str, Tuple[str, ...], str]] = {
    "client.full_access": (
        "Full Client Access",
        "client",
        CRUD,
        "Complete access to client records",
    ),
    "client.basic_access": (
        "Basic Client Access",
        "client",
        ("read", "update"),
        "Demographics and contact information only",
    ),
    "session.clinical_access": (
        "Clinical Session Access",
        "session",
        ("create", "read", "update"),
        "Clinical session records",
    ),
    "notes.clinical_access": (
        "Clinical Notes Access",
        "notes",
        ("create", "read", "update"),
        "Progress and psychotherapy notes",
    ),
    "treatment_plan.full_access": (
        "Treatment Plan Access",
        "treatment_plan",
        CRUD,
        "Treatment plans and goals",
    ),
    "scheduling.management": (
        "Scheduling Management",
        "scheduling",
        CRUD,
        "Appointment scheduling",
    ),
    "billing.management": (
        "Billing Management",
        "billing",
        ("create", "read", "update"),
        "Claims, invoices and payments",
    ),
    "insurance.management": (
        "Insurance Management",
        "insurance",
        ("read", "update"),
        "Insurance verification and authorizations",
    ),
    "reports.administrative": (
        "Administrative Reports",
        "reports",
        ("read", "export"),
        "Practice and financial reporting",
    ),
    "system.administration": (
        "System Administration",
        "system",
        CRUD + ("configure",),
        "System configuration",
    ),
    "audit.access": (
        "Audit Log Access",
        "audit",
        ("read", "export"),
        "HIPAA audit trail",
    ),
    "security.management": (
        "Security Management",
        "security",
        ("read", "update", "configure"),
        "Security settings and incident response",
    ),
    "emergency.access": (
        "Emergency Access",
        "emergency",
        ("override",),
        "Break-glass access during emergencies",
    ),
}

# id -> (name, description, category, access level, emergency override)
HEALTHCARE_ROLES: Dict[str, Tuple[str, str, RoleCategory, HipaaAccessLevel, bool]] = {
    "licensed_therapist": (
        "Licensed Therapist",
        "Licensed mental health professional providing direct care",
        RoleCategory.CLINICAL,
        HipaaAccessLevel.FULL,
        True,
    ),
    "administrative_assistant": (
        "Administrative Assistant",
        "Front desk and scheduling support",
        RoleCategory.ADMINISTRATIVE,
        HipaaAccessLevel.LIMITED,
        False,
    ),
    "practice_manager": (
        "Practice Manager",
        "Practice operations and staff management",
        RoleCategory.ADMINISTRATIVE,
        HipaaAccessLevel.ADMINISTRATIVE,
        True,
    ),
    "billing_specialist": (
        "Billing Specialist",
        "Billing, claims and insurance processing",
        RoleCategory.ADMINISTRATIVE,
        HipaaAccessLevel.LIMITED,
        False,
    ),
    "it_administrator": (
        "IT Administrator",
        "System administration and security",
        RoleCategory.TECHNICAL,
        HipaaAccessLevel.ADMINISTRATIVE,
        True,
    ),
    "clinical_supervisor": (
        "Clinical Supervisor",
        "Supervises clinical staff and reviews care",
        RoleCategory.CLINICAL,
        HipaaAccessLevel.FULL,
        True,
    ),
}

ROLE_PERMISSION_MAPPINGS: Dict[str, List[str]] = {
    "licensed_therapist": [
        "client.full_access",
        "session.clinical_access",
        "notes.clinical_access",
        "treatment_plan.full_access",
        "scheduling.management",
        "billing.management",
        "emergency.access",
    ],
    "administrative_assistant": [
        "client.basic_access",
        "scheduling.management",
        "billing.management",
        "insurance.management",
    ],
    "practice_manager": [
        "client.full_access",
        "session.clinical_access",
        "scheduling.management",
        "billing.management",
        "insurance.management",
        "reports.administrative",
        "emergency.access",
    ],
    "billing_specialist": [
        "client.basic_access",
        "billing.management",
        "insurance.management",
        "reports.administrative",
    ],
    "it_administrator": [
        "system.administration",
        "audit.access",
        "security.management",
        "emergency.access",
    ],
    "clinical_supervisor": [
        "client.full_access",
        "session.clinical_access",
        "notes.clinical_access",
        "treatment_plan.full_access",
        "reports.administrative",
        "emergency.access",
    ],
}

# Roles whose client scope covers every client rather than assigned ones.
PRACTICE_WIDE_ROLES = frozenset({"clinical_supervisor", "practice_manager"})


def role_conditions(role_id: str, category: RoleCategory) -> AccessCondition:
    """Access conditions attached to every grant of a role."""
    scope = ClientScope.ALL if role_id in PRACTICE_WIDE_ROLES else ClientScope.ASSIGNED
    if category == RoleCategory.CLINICAL:
        return AccessCondition(data_scope=("clinical", "administrative"), client_scope=scope)
    if category == RoleCategory.ADMINISTRATIVE:
        return AccessCondition(data_scope=("administrative", "billing"), client_scope=scope)
    return AccessCondition()


def role_time_restrictions(
    category: RoleCategory, emergency_override: bool
) -> Optional[TimeRestriction]:
    """Business-hours restriction for non-clinical, non-technical roles."""
    if category in (RoleCategory.CLINICAL, RoleCategory.TECHNICAL):
        return None
    return TimeRestriction(business_hours_only=True, emergency_override=emergency_override)


def build_healthcare_roles() -> List[Role]:
    """Build the default role definitions."""
    roles = []
    for role_id, (name, description, category, level, override) in HEALTHCARE_ROLES.items():
        conditions = role_conditions(role_id, category)
        time_restrictions = role_time_restrictions(category, override)

        permissions = []
        for permission_id in ROLE_PERMISSION_MAPPINGS[role_id]:
            perm_name, resource, actions, perm_description = HEALTHCARE_PERMISSIONS[
                permission_id
            ]
            permissions.append(
                Permission(
                    id=permission_id,
                    name=perm_name,
                    resource=resource,
                    actions=actions,
                    description=perm_description,
                    conditions=conditions,
                    time_restrictions=time_restrictions,
                )
            )

        roles.append(
            Role(
                id=role_id,
                name=name,
                description=description,
                category=category,
                hipaa_access_level=level,
                emergency_override=override,
                permissions=tuple(permissions),
            )
        )
    return roles


def seed_healthcare_roles(repository: RoleRepository) -> List[Role]:
    """Write the default roles to ``repository``."""
    roles = [repository.save_role(role) for role in build_healthcare_roles()]
    logger.info("healthcare_roles_seeded", roles=len(roles))
    return roles
