from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from enum import Enum

from jose import JWTError, jwt

from clinic_scheduling.core.config import settings


class Role(str, Enum):
    PATIENT = "patient"
    PROVIDER = "provider"
    ADMIN = "admin"
    SYSTEM = "system"


@dataclass(frozen=True)
class Actor:
    """Caller identity taken from a bearer token issued by the identity service."""

    id: int
    role: Role
    email: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def create_access_token(subject: str | int, role: Role, email: str | None = None) -> str:
    """Issue a token the way the identity service does; used by tooling and tests."""
    expire = datetime.now(UTC) + timedelta(minutes=settings.access_token_expire_minutes)
    to_encode = {"sub": str(subject), "exp": expire, "type": "access", "role": role.value}
    if email:
        to_encode["email"] = email
    return jwt.encode(to_encode, settings.secret_key, algorithm=settings.algorithm)


def decode_access_token(token: str) -> Actor | None:
    try:
        payload = jwt.decode(
            token, settings.secret_key, algorithms=[settings.algorithm]
        )
    except JWTError:
        return None
    if payload.get("type") != "access":
        return None
    try:
        return Actor(
            id=int(payload.get("sub")),
            role=Role(payload.get("role")),
            email=payload.get("email"),
        )
    except (TypeError, ValueError):
        return None
