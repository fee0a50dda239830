from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import List

from ..core.database import get_db
from ..core.exceptions import Forbidden
from ..core.security import (
    security, verify_token, actor_from_token,
    AuthenticationError, UserRole, TokenPayload, Actor
)
from ..services.appointment_service import AppointmentService
from ..services.availability import AvailabilityCalculator
from ..services.notifications import NotificationTrigger, get_notifier
from ..services.slot_catalog import SlotCatalog, get_slot_catalog

async def get_current_user_token(
    credentials: HTTPAuthorizationCredentials = Depends(security)
) -> TokenPayload:
    """Extract and verify JWT token from Authorization header."""
    token = credentials.credentials

    # Verify token
    token_payload = verify_token(token)
    if not token_payload:
        raise AuthenticationError("Invalid or expired token")

    # Check if token is access token
    if token_payload.token_type != "access":
        raise AuthenticationError("Invalid token type")

    return token_payload

async def get_current_actor(
    token_payload: TokenPayload = Depends(get_current_user_token)
) -> Actor:
    """Resolve the authenticated caller from the token claims."""
    actor = actor_from_token(token_payload)
    if actor is None:
        raise AuthenticationError("Invalid token payload")
    return actor

# Role-based access control dependencies
def require_role(allowed_roles: List[UserRole]):
    """Create a dependency that requires specific user roles."""
    async def role_checker(
        actor: Actor = Depends(get_current_actor)
    ) -> Actor:
        if actor.role not in allowed_roles:
            raise Forbidden(
                f"Access denied. Required roles: {[role.value for role in allowed_roles]}"
            )
        return actor

    return role_checker

async def get_admin_actor(
    actor: Actor = Depends(require_role([UserRole.ADMIN]))
) -> Actor:
    """Require admin role."""
    return actor

async def get_patient_actor(
    actor: Actor = Depends(require_role([UserRole.PATIENT]))
) -> Actor:
    """Require patient role."""
    return actor

# Service dependencies
def get_appointment_service(
    db: Session = Depends(get_db),
    catalog: SlotCatalog = Depends(get_slot_catalog),
    notifier: NotificationTrigger = Depends(get_notifier)
) -> AppointmentService:
    return AppointmentService(db, catalog, notifier)

def get_availability_calculator(
    db: Session = Depends(get_db),
    catalog: SlotCatalog = Depends(get_slot_catalog)
) -> AvailabilityCalculator:
    return AvailabilityCalculator(db, catalog)
