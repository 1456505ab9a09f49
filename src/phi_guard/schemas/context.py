"""Request context supplied by the HTTP layer."""

from dataclasses import dataclass
from datetime import datetime
from typing import Optional


@dataclass(frozen=True)
class RequestContext:
    """Caller context for a session validation or access check.

    Everything here comes from the client and is untrusted. In particular
    ``emergency_access`` only matters for permissions whose policy data
    carries an emergency flag.
    """

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    timestamp: Optional[datetime] = None
    emergency_access: bool = False
    session_id: Optional[str] = None
    patient_id: Optional[str] = None
