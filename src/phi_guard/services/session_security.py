"""Session security helpers.

Device fingerprinting, the session security score and the geolocation
capability used at login.
"""

import hashlib
from abc import ABC, abstractmethod
from typing import Optional

from phi_guard.config.session_config import SecurityLevelWeights
from phi_guard.schemas.session import DeviceInfo, GeoLocation
from phi_guard.utils.exceptions import GeolocationError

DEFAULT_WEIGHTS = SecurityLevelWeights()


def generate_device_fingerprint(device_info: DeviceInfo) -> str:
    """Derive a stable fingerprint from client-reported device details.

    Missing fields hash as empty strings.

    Args:
        device_info: Device details captured at login

    Returns:
        First 32 hex characters of a SHA-256 digest
    """
    digest = hashlib.sha256()
    for part in (
        device_info.user_agent,
        device_info.screen_resolution,
        device_info.timezone,
        device_info.language,
        device_info.platform,
    ):
        digest.update((part or "").encode("utf-8"))
    return digest.hexdigest()[:32]


def calculate_security_level(
    device_info: DeviceInfo,
    mfa_verified: bool,
    login_method: str,
    weights: Optional[SecurityLevelWeights] = None,
) -> int:
    """Score a new session's trust level in [0, 100].

    Args:
        device_info: Device details captured at login
        mfa_verified: Whether MFA was completed
        login_method: Login method tag (password, mfa, emergency, ...)
        weights: Scoring weights

    Returns:
        Clamped security level
    """
    weights = weights or DEFAULT_WEIGHTS
    score = weights.base

    if mfa_verified:
        score += weights.mfa_bonus

    if device_info.secure_transport:
        score += weights.secure_transport_bonus

    score += weights.login_method_adjustments.get(login_method, 0)

    # Device info completeness
    for detail in (device_info.screen_resolution, device_info.timezone, device_info.language):
        if detail:
            score += weights.device_detail_bonus

    return max(weights.minimum, min(weights.maximum, score))


def is_trusted(security_level: int, weights: Optional[SecurityLevelWeights] = None) -> bool:
    """Check whether a security level qualifies as trusted."""
    weights = weights or DEFAULT_WEIGHTS
    return security_level >= weights.trusted_threshold


class Geolocator(ABC):
    """IP geolocation capability."""

    @abstractmethod
    def locate(self, ip_address: str) -> GeoLocation:
        """Locate an IP address.

        Raises:
            GeolocationError: The address cannot be located
        """


class StaticGeolocator(Geolocator):
    """Geolocator backed by a fixed IP -> location table."""

    def __init__(self, table: Optional[dict] = None):
        """Initialize with an IP to GeoLocation mapping."""
        self.table = dict(table or {})

    def locate(self, ip_address: str) -> GeoLocation:
        """Look the address up in the table."""
        try:
            return self.table[ip_address]
        except KeyError as e:
            raise GeolocationError(f"No location known for {ip_address}") from e
