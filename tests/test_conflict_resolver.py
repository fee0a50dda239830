import threading

import pytest
from sqlalchemy.exc import IntegrityError

from medcare.core.exceptions import SlotTaken
from medcare.models.appointment import AppointmentRequest, AppointmentStatus
from medcare.services.appointment_service import AppointmentService
from medcare.services.conflict_resolver import ConflictResolver

from .conftest import ADMIN, PATIENT_A, PATIENT_B, PATIENT_C, RecordingNotifier, future


def test_find_confirmed_excludes_self(db, service, doctor, slots, book):
    a = book(PATIENT_A, doctor.id, slots[0].id)
    service.decide(ADMIN, a.id, "approved")
    resolver = ConflictResolver(db)

    assert resolver.find_confirmed(doctor.id, future(), slots[0].id).id == a.id
    assert resolver.find_confirmed(doctor.id, future(), slots[0].id, exclude_id=a.id) is None
    assert resolver.find_confirmed(doctor.id, future(2), slots[0].id) is None


def test_try_confirm_returns_cascaded(db, doctor, slots, book):
    a = book(PATIENT_A, doctor.id, slots[0].id)
    b = book(PATIENT_B, doctor.id, slots[0].id)
    c = book(PATIENT_C, doctor.id, slots[0].id)

    cascaded = ConflictResolver(db).try_confirm(a)
    db.commit()

    assert sorted(r.id for r in cascaded) == sorted([b.id, c.id])
    statuses = {
        r.id: r.status
        for r in db.query(AppointmentRequest).filter(AppointmentRequest.time_slot_id == slots[0].id)
    }
    assert statuses == {
        a.id: AppointmentStatus.CONFIRMED,
        b.id: AppointmentStatus.REJECTED,
        c.id: AppointmentStatus.REJECTED,
    }


def test_unique_index_backstops_double_confirmation(db, doctor, slots):
    """The database itself refuses a second confirmed row for a tuple."""
    on_date = future(3)
    for patient_id in (PATIENT_A.id, PATIENT_B.id):
        db.add(AppointmentRequest(
            doctor_id=doctor.id,
            patient_id=patient_id,
            time_slot_id=slots[0].id,
            appointment_date=on_date,
            consultation_type="online",
            patient_age=30,
            patient_gender="female",
            status=AppointmentStatus.CONFIRMED,
        ))
    with pytest.raises(IntegrityError):
        db.commit()
    db.rollback()


@pytest.mark.parametrize("rounds", range(5))
def test_concurrent_approvals_single_winner(session_factory, catalog, doctor, slots, book, rounds):
    """Two admins approving rivals at once: exactly one confirmation, one SlotTaken."""
    on_date = future(10 + rounds)
    slot_id = slots[rounds].id
    rivals = [book(actor, doctor.id, slot_id, on_date=on_date).id for actor in (PATIENT_A, PATIENT_B)]

    barrier = threading.Barrier(len(rivals))
    outcomes = {}

    def approve(request_id):
        session = session_factory()
        try:
            service = AppointmentService(session, catalog, RecordingNotifier())
            # Both admins saw the request as pending before either decision lands
            session.get(AppointmentRequest, request_id)
            barrier.wait(timeout=10)
            try:
                result = service.decide(ADMIN, request_id, "approved")
                outcomes[request_id] = result.appointment.status
            except SlotTaken as e:
                outcomes[request_id] = e
        finally:
            session.close()

    threads = [threading.Thread(target=approve, args=(request_id,)) for request_id in rivals]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=60)

    winners = [rid for rid, outcome in outcomes.items() if outcome == AppointmentStatus.CONFIRMED]
    losers = [rid for rid, outcome in outcomes.items() if isinstance(outcome, SlotTaken)]
    assert len(winners) == 1
    assert len(losers) == 1
    assert outcomes[losers[0]].blocking_request_id == winners[0]

    check = session_factory()
    try:
        confirmed = check.query(AppointmentRequest).filter(
            AppointmentRequest.doctor_id == doctor.id,
            AppointmentRequest.appointment_date == on_date,
            AppointmentRequest.time_slot_id == slot_id,
            AppointmentRequest.status == AppointmentStatus.CONFIRMED
        ).all()
        assert [r.id for r in confirmed] == winners
        loser = check.get(AppointmentRequest, losers[0])
        assert loser.status == AppointmentStatus.REJECTED
    finally:
        check.close()
