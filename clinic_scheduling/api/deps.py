from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from clinic_scheduling.core.db import get_session  # noqa: F401  re-exported for routes
from clinic_scheduling.core.security import Actor, Role, decode_access_token
from clinic_scheduling.services.payment_service import PaymentCollaborator, PaystackPaymentCollaborator
from clinic_scheduling.services.session_service import LoggingSessionNotifier, SessionCollaborator

security = HTTPBearer(auto_error=False)


async def get_current_actor(
    credentials: HTTPAuthorizationCredentials | None = Depends(security),
) -> Actor:
    if not credentials or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing or invalid authorization header",
            headers={"WWW-Authenticate": "Bearer"},
        )
    actor = decode_access_token(credentials.credentials)
    if actor is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return actor


def require_schedule_owner(provider_id: int, actor: Actor) -> None:
    """Providers manage their own schedule; admins manage any."""
    if actor.role == Role.ADMIN:
        return
    if actor.role == Role.PROVIDER and actor.id == provider_id:
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail="Only the provider or an admin can change this schedule",
    )


def get_payment_collaborator() -> PaymentCollaborator:
    return PaystackPaymentCollaborator()


def get_session_collaborator() -> SessionCollaborator:
    return LoggingSessionNotifier()
