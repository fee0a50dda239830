from datetime import time

import pytest

from medcare.core.exceptions import ValidationFailed
from medcare.models.time_slot import TimeSlot
from medcare.services.appointment_service import AppointmentService
from medcare.services.slot_catalog import SlotCatalog, default_slot_bounds, seed_default_slots

from .conftest import PATIENT_A, future


def test_default_bounds_cover_working_day():
    bounds = default_slot_bounds("09:00", "17:00", 30)
    assert len(bounds) == 16
    assert bounds[0] == (time(9, 0), time(9, 30))
    assert bounds[-1] == (time(16, 30), time(17, 0))


def test_default_bounds_drop_partial_tail():
    assert default_slot_bounds("09:00", "10:45", 30)[-1] == (time(10, 0), time(10, 30))


def test_seeded_catalog(db, catalog):
    slots = catalog.list_slots(db)
    assert len(slots) == 16
    assert [s.start_time for s in slots] == sorted(s.start_time for s in slots)
    # Already seeded
    assert seed_default_slots(db) == 0


def test_catalog_is_cached(db, catalog):
    before = catalog.list_slots(db)

    # Edits behind the catalog's back stay invisible until invalidation
    db.add(TimeSlot(start_time=time(7, 0), end_time=time(7, 30)))
    db.commit()
    assert catalog.list_slots(db) == before

    catalog.invalidate()
    assert len(catalog.list_slots(db)) == len(before) + 1


def test_expired_cache_reloads(db):
    catalog = SlotCatalog(ttl_seconds=-1)
    before = catalog.list_slots(db)
    db.add(TimeSlot(start_time=time(7, 0), end_time=time(7, 30)))
    db.commit()
    assert len(catalog.list_slots(db)) == len(before) + 1


def test_add_slot_invalidates_cache(db, catalog):
    catalog.list_slots(db)
    added = catalog.add_slot(db, time(18, 0), time(18, 30))

    slots = catalog.list_slots(db)
    assert slots[-1] == added
    assert catalog.exists(db, added.id)
    assert catalog.get(db, added.id).start_time == time(18, 0)


def test_add_slot_rejects_overlap(db, catalog):
    with pytest.raises(ValidationFailed) as exc:
        catalog.add_slot(db, time(9, 15), time(9, 45))
    assert "overlapping_slot_id" in exc.value.extra


def test_add_slot_rejects_inverted_interval(db, catalog):
    with pytest.raises(ValidationFailed):
        catalog.add_slot(db, time(19, 0), time(18, 0))


def test_slot_added_by_another_process_is_found(db, doctor, notifier):
    """A cache miss reloads, so a slot added elsewhere is bookable at once."""
    admin_side = SlotCatalog(ttl_seconds=300)
    booking_side = SlotCatalog(ttl_seconds=300)
    booking_side.list_slots(db)

    added = admin_side.add_slot(db, time(18, 0), time(18, 30))

    assert booking_side.exists(db, added.id)
    appointment = AppointmentService(db, booking_side, notifier).create(
        PATIENT_A, doctor_id=doctor.id, appointment_date=future().isoformat(),
        time_slot_id=added.id, consultation_type="online",
        patient_age=30, patient_gender="female"
    )
    assert appointment.time_slot_id == added.id
    assert booking_side.list_slots(db)[-1] == added


def test_unknown_slot_still_missing_after_reload(db, catalog):
    assert catalog.get(db, 9999) is None
    assert not catalog.exists(db, 9999)
