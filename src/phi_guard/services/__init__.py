"""Services layer for phi-guard.

Session lifecycle management and role-based access policy resolution.
"""

from phi_guard.services.access_policy import AccessPolicyEngine
from phi_guard.services.location_policy import (
    LocationPolicy,
    NetworkLocationPolicy,
    PermissiveLocationPolicy,
)
from phi_guard.services.role_catalog import seed_healthcare_roles
from phi_guard.services.session_manager import SessionManager
from phi_guard.services.session_security import (
    Geolocator,
    StaticGeolocator,
    calculate_security_level,
    generate_device_fingerprint,
)

__all__ = [
    "AccessPolicyEngine",
    "Geolocator",
    "LocationPolicy",
    "NetworkLocationPolicy",
    "PermissiveLocationPolicy",
    "SessionManager",
    "StaticGeolocator",
    "calculate_security_level",
    "generate_device_fingerprint",
    "seed_healthcare_roles",
]
