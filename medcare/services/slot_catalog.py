from dataclasses import dataclass
from datetime import datetime, time, timedelta
from typing import List, Optional
import logging
import threading
from time import monotonic

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.database import storage_guard
from ..core.exceptions import ValidationFailed
from ..models.time_slot import TimeSlot

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CatalogSlot:
    """Detached, immutable copy of a catalog row that is safe to share across sessions."""
    id: int
    start_time: time
    end_time: time

    def overlaps(self, start_time: time, end_time: time) -> bool:
        return start_time < self.end_time and self.start_time < end_time


class SlotCatalog:
    """Process-wide read-mostly cache of the shared time slot catalog.

    Entries expire after ``ttl_seconds`` and are dropped immediately whenever an
    admin edits the catalog through :meth:`add_slot`.
    """

    def __init__(self, ttl_seconds: Optional[int] = None):
        self.ttl_seconds = settings.SLOT_CATALOG_CACHE_SECONDS if ttl_seconds is None else ttl_seconds
        self._lock = threading.Lock()
        self._slots: Optional[List[CatalogSlot]] = None
        self._loaded_at = 0.0

    def list_slots(self, db: Session) -> List[CatalogSlot]:
        """Return the catalog ordered by start time."""
        with self._lock:
            if self._slots is not None and not self._expired():
                return list(self._slots)

        with storage_guard(db):
            rows = db.query(TimeSlot).order_by(TimeSlot.start_time, TimeSlot.id).all()
        slots = [CatalogSlot(id=row.id, start_time=row.start_time, end_time=row.end_time) for row in rows]

        with self._lock:
            self._slots = slots
            self._loaded_at = monotonic()
        return list(slots)

    def get(self, db: Session, slot_id: int) -> Optional[CatalogSlot]:
        """Look up a slot, reloading once on a miss.

        Another process may have added the slot after this cache was filled.
        """
        slot = _find(self.list_slots(db), slot_id)
        if slot is None:
            self.invalidate()
            slot = _find(self.list_slots(db), slot_id)
        return slot

    def exists(self, db: Session, slot_id: int) -> bool:
        return self.get(db, slot_id) is not None

    def invalidate(self):
        with self._lock:
            self._slots = None
            self._loaded_at = 0.0

    def add_slot(self, db: Session, start_time: time, end_time: time) -> CatalogSlot:
        """Add a catalog entry (admin tooling) and drop the cached copy."""
        if start_time >= end_time:
            raise ValidationFailed("Slot start time must be before its end time")

        self.invalidate()
        for existing in self.list_slots(db):
            if existing.overlaps(start_time, end_time):
                raise ValidationFailed(
                    f"Slot {start_time:%H:%M}-{end_time:%H:%M} overlaps existing slot "
                    f"{existing.start_time:%H:%M}-{existing.end_time:%H:%M}",
                    {"overlapping_slot_id": existing.id},
                )

        slot = TimeSlot(start_time=start_time, end_time=end_time)
        with storage_guard(db):
            db.add(slot)
            db.commit()
            db.refresh(slot)
        self.invalidate()

        logger.info(f"Added time slot {slot.id} ({start_time:%H:%M}-{end_time:%H:%M})")
        return CatalogSlot(id=slot.id, start_time=slot.start_time, end_time=slot.end_time)

    def _expired(self) -> bool:
        return monotonic() - self._loaded_at > self.ttl_seconds


def _find(slots: List[CatalogSlot], slot_id: int) -> Optional[CatalogSlot]:
    return next((slot for slot in slots if slot.id == slot_id), None)


def default_slot_bounds(start: str, end: str, minutes: int) -> List[tuple]:
    """Split the working day into consecutive slots of ``minutes`` length."""
    day = datetime(2000, 1, 1)
    cursor = datetime.combine(day, datetime.strptime(start, "%H:%M").time())
    stop = datetime.combine(day, datetime.strptime(end, "%H:%M").time())
    step = timedelta(minutes=minutes)

    bounds = []
    while cursor + step <= stop:
        bounds.append((cursor.time(), (cursor + step).time()))
        cursor += step
    return bounds


def seed_default_slots(db: Session) -> int:
    """Populate an empty catalog with the configured working-day slots."""
    if db.query(TimeSlot).first() is not None:
        return 0

    bounds = default_slot_bounds(
        settings.DEFAULT_SLOT_START,
        settings.DEFAULT_SLOT_END,
        settings.DEFAULT_SLOT_MINUTES,
    )
    db.add_all(TimeSlot(start_time=start, end_time=end) for start, end in bounds)
    db.commit()
    logger.info(f"Seeded {len(bounds)} default time slots")
    return len(bounds)


# Shared across requests in this process
slot_catalog = SlotCatalog()

def get_slot_catalog() -> SlotCatalog:
    """Get the process-wide slot catalog."""
    return slot_catalog
