from datetime import date
from typing import List, Set

from sqlalchemy.orm import Session

from ..core.database import storage_guard
from ..core.exceptions import NotFound
from ..models.appointment import AppointmentRequest, AppointmentStatus
from .doctor_directory import DoctorDirectory
from .slot_catalog import CatalogSlot, SlotCatalog


class AvailabilityCalculator:
    """Compute which catalog slots a doctor still has free on a date.

    The answer is advisory: it takes no locks, so a slot reported free may be
    confirmed for someone else before the caller's request is approved.
    """

    def __init__(self, db: Session, catalog: SlotCatalog):
        self.db = db
        self.catalog = catalog
        self.doctors = DoctorDirectory(db)

    def consumed_slot_ids(self, doctor_id: int, on_date: date) -> Set[int]:
        rows = self.db.query(AppointmentRequest.time_slot_id).filter(
            AppointmentRequest.doctor_id == doctor_id,
            AppointmentRequest.appointment_date == on_date,
            AppointmentRequest.status == AppointmentStatus.CONFIRMED
        ).all()
        return {row.time_slot_id for row in rows}

    def available_slots(self, doctor_id: int, on_date: date) -> List[CatalogSlot]:
        with storage_guard(self.db):
            if not self.doctors.exists(doctor_id):
                raise NotFound("Doctor not found", {"doctor_id": doctor_id})

            consumed = self.consumed_slot_ids(doctor_id, on_date)
            return [slot for slot in self.catalog.list_slots(self.db) if slot.id not in consumed]
