"""FastAPI dependencies for session validation and access checks.

The session manager and policy engine are attached to ``app.state`` with
``install``. Endpoints then declare::

    @app.get("/clients/{patient_id}")
    def read_client(decision: AccessDecision = Depends(require_permission("client", "read"))):
        ...

A missing or invalid session yields 401 with the validation reason as the
detail; a denied access check yields 403.
"""

# flake8: noqa: B008  # FastAPI Depends() is designed to be used in function defaults

from typing import Callable, Optional

from fastapi import Depends, FastAPI, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from phi_guard.schemas.context import RequestContext
from phi_guard.schemas.rbac import AccessDecision
from phi_guard.schemas.session import SessionValidationResult, ValidationFailure
from phi_guard.services.access_policy import AccessPolicyEngine
from phi_guard.services.session_manager import SessionManager, utcnow
from phi_guard.utils.logging import get_logger

logger = get_logger(__name__)

EMERGENCY_ACCESS_HEADER = "X-Emergency-Access"

security = HTTPBearer(auto_error=False)
security_dependency = Depends(security)


def install(
    app: FastAPI, session_manager: SessionManager, policy_engine: AccessPolicyEngine
) -> None:
    """Attach the session manager and policy engine to an application."""
    app.state.session_manager = session_manager
    app.state.policy_engine = policy_engine


def get_session_manager(request: Request) -> SessionManager:
    """Get the installed session manager."""
    manager = getattr(request.app.state, "session_manager", None)
    if manager is None:
        logger.error("session_manager_not_installed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Session management not configured",
        )
    return manager


def get_policy_engine(request: Request) -> AccessPolicyEngine:
    """Get the installed access policy engine."""
    engine = getattr(request.app.state, "policy_engine", None)
    if engine is None:
        logger.error("policy_engine_not_installed")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Access policy not configured",
        )
    return engine


def get_client_ip(request: Request) -> Optional[str]:
    """Extract client IP from request."""
    # Check for proxy headers
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        # Get the first IP in the chain
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("X-Real-IP")
    if real_ip:
        return real_ip

    if request.client:
        return request.client.host
    return None


def request_context(request: Request, session_id: Optional[str] = None) -> RequestContext:
    """Build the caller context for a request.

    Everything read here is client supplied and untrusted.
    """
    emergency = request.headers.get(EMERGENCY_ACCESS_HEADER, "").strip().lower()
    return RequestContext(
        ip_address=get_client_ip(request),
        user_agent=request.headers.get("User-Agent"),
        timestamp=utcnow(),
        emergency_access=emergency in ("1", "true", "yes"),
        session_id=session_id,
        patient_id=request.path_params.get("patient_id"),
    )


def get_current_session(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = security_dependency,
) -> SessionValidationResult:
    """Validate the bearer session of a request.

    Raises:
        HTTPException: 401 with the validation reason
    """
    if credentials is None or not credentials.credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=ValidationFailure.SESSION_NOT_FOUND.value,
            headers={"WWW-Authenticate": "Bearer"},
        )

    manager = get_session_manager(request)
    result = manager.validate_session(credentials.credentials, ip_address=get_client_ip(request))
    if not result.valid:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=result.reason.value if result.reason else "SESSION_INVALID",
            headers={"WWW-Authenticate": "Bearer"},
        )

    request.state.session = result.session
    return result


current_session_dependency = Depends(get_current_session)


def require_permission(resource: str, action: str) -> Callable[..., AccessDecision]:
    """Require ``action`` on ``resource`` for the session's user.

    Args:
        resource: Resource name, e.g. ``client``
        action: Action name, e.g. ``read``
    """

    def dependency(
        request: Request,
        validation: SessionValidationResult = current_session_dependency,
    ) -> AccessDecision:
        session = validation.session
        context = request_context(request, session_id=session.id)
        decision = get_policy_engine(request).evaluate(
            session.user_id, resource, action, context
        )
        if not decision:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return decision

    return dependency
