"""Location gating for permissions.

The policy engine asks a ``LocationPolicy`` whether a caller IP satisfies a
permission's ``LocationRestriction``. The default policy allows everything;
``NetworkLocationPolicy`` enforces allow/block lists of networks.
"""

import ipaddress
from abc import ABC, abstractmethod
from typing import Iterable, List, Optional, Union

from phi_guard.schemas.rbac import LocationRestriction
from phi_guard.utils.logging import get_logger

logger = get_logger(__name__)

Network = Union[ipaddress.IPv4Network, ipaddress.IPv6Network]


class LocationPolicy(ABC):
    """Decides whether a caller location satisfies a restriction."""

    @abstractmethod
    def is_allowed(self, ip_address: Optional[str], restriction: LocationRestriction) -> bool:
        """Check the caller IP against ``restriction``."""


class PermissiveLocationPolicy(LocationPolicy):
    """Allows every location. Restrictions are recorded but not enforced."""

    def is_allowed(self, ip_address: Optional[str], restriction: LocationRestriction) -> bool:
        """Always allow."""
        return True


def _parse_networks(entries: Iterable[str]) -> List[Network]:
    networks = []
    for entry in entries:
        try:
            networks.append(ipaddress.ip_network(entry, strict=False))
        except ValueError:
            logger.warning("location_restriction_entry_ignored", entry=entry)
    return networks


class NetworkLocationPolicy(LocationPolicy):
    """Enforces IP/CIDR allow and block lists.

    Entries of ``allowed_locations``/``blocked_locations`` that are not IP
    networks are ignored. ``require_secure_network`` is satisfied by an IP
    inside one of ``secure_networks``.
    """

    def __init__(self, secure_networks: Optional[Iterable[str]] = None):
        """Initialize with the networks considered secure (VPN, clinic LAN)."""
        self.secure_networks = _parse_networks(secure_networks or [])

    def is_allowed(self, ip_address: Optional[str], restriction: LocationRestriction) -> bool:
        """Check the caller IP against allow/block lists."""
        if not ip_address:
            # Unknown origin only passes an empty restriction.
            return not (
                restriction.allowed_locations or restriction.require_secure_network
            )

        try:
            address = ipaddress.ip_address(ip_address)
        except ValueError:
            logger.warning("location_check_invalid_ip")
            return False

        if any(address in net for net in _parse_networks(restriction.blocked_locations)):
            return False

        allowed = _parse_networks(restriction.allowed_locations)
        if allowed and not any(address in net for net in allowed):
            return False

        if restriction.require_secure_network and not any(
            address in net for net in self.secure_networks
        ):
            return False

        return True
