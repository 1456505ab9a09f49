"""FastAPI integration for phi-guard."""

from phi_guard.api.dependencies import (
    get_client_ip,
    get_current_session,
    install,
    request_context,
    require_permission,
)

__all__ = [
    "get_client_ip",
    "get_current_session",
    "install",
    "request_context",
    "require_permission",
]
