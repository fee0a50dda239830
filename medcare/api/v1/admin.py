from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from ...api.deps import get_admin_actor, get_appointment_service
from ...core.database import get_db
from ...core.security import Actor
from ...services.appointment_service import AppointmentService
from ...services.slot_catalog import SlotCatalog, get_slot_catalog
from ...schemas.appointment import (
    AppointmentPage, AppointmentStatistics, TimeSlotCreate, TimeSlotResponse
)

router = APIRouter(prefix="/admin", tags=["Admin"])
slots_router = APIRouter(prefix="/time-slots", tags=["Time Slots"])

@router.get("/appointments/pending", response_model=AppointmentPage)
def pending_requests(
    page: int = 1,
    limit: int = 10,
    actor: Actor = Depends(get_admin_actor),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Pending requests, soonest first (admin only)."""
    items, total = service.list_pending(actor, page=page, limit=limit)
    return AppointmentPage.build(items, total, page, limit)

@router.get("/statistics/appointments", response_model=AppointmentStatistics)
def appointment_statistics(
    actor: Actor = Depends(get_admin_actor),
    service: AppointmentService = Depends(get_appointment_service)
):
    return AppointmentStatistics(**service.statistics(actor))

@router.post("/time-slots", response_model=TimeSlotResponse, status_code=status.HTTP_201_CREATED)
def add_time_slot(
    payload: TimeSlotCreate,
    _: Actor = Depends(get_admin_actor),
    db: Session = Depends(get_db),
    catalog: SlotCatalog = Depends(get_slot_catalog)
):
    """Add a slot to the shared catalog (admin only)."""
    return catalog.add_slot(db, payload.start_time, payload.end_time)

@slots_router.get("", response_model=List[TimeSlotResponse])
def list_time_slots(
    db: Session = Depends(get_db),
    catalog: SlotCatalog = Depends(get_slot_catalog)
):
    """The shared slot catalog, ordered by start time."""
    return catalog.list_slots(db)
