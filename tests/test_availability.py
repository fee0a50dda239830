from datetime import date, time, timedelta

import pytest
from sqlalchemy.exc import OperationalError

from medcare.core.exceptions import NotFound, Unavailable
from medcare.services.availability import AvailabilityCalculator

from .conftest import ADMIN, PATIENT_A, PATIENT_B, PATIENT_C, future


@pytest.fixture
def calculator(db, catalog):
    return AvailabilityCalculator(db, catalog)


def _ids(slots):
    return [slot.id for slot in slots]


def test_all_slots_free_in_catalog_order(calculator, doctor, slots):
    available = calculator.available_slots(doctor.id, future())
    assert _ids(available) == _ids(slots)
    assert available[0].start_time == time(9, 0)
    assert [s.start_time for s in available] == sorted(s.start_time for s in available)


def test_unknown_doctor(calculator):
    with pytest.raises(NotFound):
        calculator.available_slots(9999, future())


def test_pending_requests_do_not_consume(calculator, doctor, slots, book):
    book(PATIENT_A, doctor.id, slots[0].id)
    book(PATIENT_B, doctor.id, slots[0].id)
    assert slots[0].id in _ids(calculator.available_slots(doctor.id, future()))


def test_confirmed_slot_removed_for_that_doctor_and_date_only(calculator, service, doctor, other_doctor, slots, book):
    a = book(PATIENT_A, doctor.id, slots[0].id)
    service.decide(ADMIN, a.id, "approved")

    assert slots[0].id not in _ids(calculator.available_slots(doctor.id, future()))
    assert slots[0].id in _ids(calculator.available_slots(doctor.id, future(2)))
    assert slots[0].id in _ids(calculator.available_slots(other_doctor.id, future()))
    assert len(calculator.available_slots(doctor.id, future())) == len(slots) - 1


def test_rejected_and_declined_do_not_consume(calculator, service, doctor, slots, book):
    a = book(PATIENT_A, doctor.id, slots[0].id)
    b = book(PATIENT_B, doctor.id, slots[1].id)
    service.decide(ADMIN, a.id, "rejected")
    service.decide(ADMIN, b.id, "declined")

    available = _ids(calculator.available_slots(doctor.id, future()))
    assert slots[0].id in available
    assert slots[1].id in available


def test_cancelling_confirmed_frees_slot(calculator, service, doctor, slots, book):
    a = book(PATIENT_A, doctor.id, slots[4].id)
    book(PATIENT_C, doctor.id, slots[4].id)
    service.decide(ADMIN, a.id, "approved")
    assert slots[4].id not in _ids(calculator.available_slots(doctor.id, future()))

    service.cancel(PATIENT_A, a.id)
    assert slots[4].id in _ids(calculator.available_slots(doctor.id, future()))


def test_past_dates_are_not_special(calculator, doctor, slots):
    yesterday = date.today() - timedelta(days=1)
    assert _ids(calculator.available_slots(doctor.id, yesterday)) == _ids(slots)


def test_storage_failure_is_unavailable(calculator, doctor, monkeypatch):
    def broken_query(*args, **kwargs):
        raise OperationalError("SELECT", {}, Exception("lock timeout"))

    monkeypatch.setattr(calculator.db, "query", broken_query)

    with pytest.raises(Unavailable) as exc:
        calculator.available_slots(doctor.id, future())
    assert exc.value.extra["retryable"] is True
