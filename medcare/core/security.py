from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Optional
from jose import JWTError, jwt
from fastapi import HTTPException, status
from fastapi.security import HTTPBearer
from pydantic import BaseModel
from enum import Enum

from .config import settings

# JWT Security
security = HTTPBearer()

class UserRole(str, Enum):
    ADMIN = "admin"
    DOCTOR = "doctor"
    PATIENT = "patient"

class TokenPayload(BaseModel):
    sub: Optional[str] = None
    email: Optional[str] = None
    role: Optional[str] = None
    exp: Optional[int] = None
    token_type: Optional[str] = None  # "access" or "refresh"


@dataclass(frozen=True)
class Actor:
    """The authenticated caller, passed explicitly into every operation."""
    id: int
    role: UserRole

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


# JWT utilities
def create_access_token(
    data: dict,
    expires_delta: Optional[timedelta] = None
) -> str:
    """Create JWT access token.

    Tokens are normally issued by the identity service; this helper exists for
    local tooling and tests that share the same secret.
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(
            minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES
        )

    to_encode.update({
        "exp": expire,
        "token_type": "access"
    })

    encoded_jwt = jwt.encode(
        to_encode,
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM
    )
    return encoded_jwt

def create_actor_token(user_id: int, role: UserRole) -> str:
    """Create an access token for a user id and role."""
    return create_access_token({"sub": str(user_id), "role": role.value})

def verify_token(token: str) -> Optional[TokenPayload]:
    """Verify and decode JWT token."""
    try:
        payload = jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )

        return TokenPayload(**payload)

    except JWTError:
        return None

def actor_from_token(token_payload: TokenPayload) -> Optional[Actor]:
    """Build an Actor from decoded claims, None if claims are unusable."""
    try:
        return Actor(id=int(token_payload.sub), role=UserRole(token_payload.role))
    except (TypeError, ValueError):
        return None

# Security exceptions
class AuthenticationError(HTTPException):
    def __init__(self, detail: str = "Could not validate credentials"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            headers={"WWW-Authenticate": "Bearer"},
        )
