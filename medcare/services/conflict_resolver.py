from typing import List, Optional
import logging

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..core.exceptions import Conflict, InvalidTransition, SlotTaken
from ..models.appointment import AppointmentRequest, AppointmentStatus

logger = logging.getLogger(__name__)

_LIVE_STATUSES = (AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED)


class ConflictResolver:
    """Confirm a request while keeping one confirmed booking per slot tuple.

    Three layers cooperate so that only one of several concurrent approvals for
    the same (doctor, date, slot) can win:

    * the live rows of the tuple are locked in id order (``SELECT ... FOR UPDATE``
      on backends that support it),
    * every row written carries an optimistic version check, so a write based
      on a stale read fails at flush,
    * a partial unique index rejects a second confirmed row outright.

    Whichever layer trips, the loser is re-examined after rollback and reported
    as :class:`SlotTaken` when the tuple now has a confirmed occupant.
    """

    def __init__(self, db: Session):
        self.db = db

    def find_confirmed(self, doctor_id, appointment_date, time_slot_id, exclude_id: Optional[int] = None) -> Optional[AppointmentRequest]:
        query = self.db.query(AppointmentRequest).filter(
            AppointmentRequest.doctor_id == doctor_id,
            AppointmentRequest.appointment_date == appointment_date,
            AppointmentRequest.time_slot_id == time_slot_id,
            AppointmentRequest.status == AppointmentStatus.CONFIRMED
        )
        if exclude_id is not None:
            query = query.filter(AppointmentRequest.id != exclude_id)
        return query.first()

    def lock_tuple(self, doctor_id, appointment_date, time_slot_id) -> List[AppointmentRequest]:
        """Load and lock the pending/confirmed rows of a tuple with fresh state."""
        return self.db.query(AppointmentRequest).filter(
            AppointmentRequest.doctor_id == doctor_id,
            AppointmentRequest.appointment_date == appointment_date,
            AppointmentRequest.time_slot_id == time_slot_id,
            AppointmentRequest.status.in_(_LIVE_STATUSES)
        ).order_by(AppointmentRequest.id).with_for_update().populate_existing().all()

    def try_confirm(self, request: AppointmentRequest) -> List[AppointmentRequest]:
        """Mark ``request`` confirmed and reject its pending competitors.

        Returns the competitors moved to rejected. Changes are flushed but not
        committed; the caller owns the transaction.
        """
        request_id = request.id
        slot_tuple = request.slot_tuple

        live = self.lock_tuple(*slot_tuple)

        blocker = next(
            (row for row in live if row.status == AppointmentStatus.CONFIRMED and row.id != request_id),
            None
        )
        if blocker is not None:
            raise SlotTaken(blocker.id, blocker.patient_id)

        if request not in live:
            self.db.refresh(request)
        if request.status != AppointmentStatus.PENDING:
            raise InvalidTransition(request.status.value, AppointmentStatus.CONFIRMED.value)

        competitors = [row for row in live if row.id != request_id]

        request.status = AppointmentStatus.CONFIRMED
        for competitor in competitors:
            competitor.status = AppointmentStatus.REJECTED

        try:
            self.db.flush()
        except (StaleDataError, IntegrityError) as e:
            self.db.rollback()
            logger.info(f"Approval of appointment {request_id} lost a race: {e.__class__.__name__}")
            raise self._lost_race(request_id, slot_tuple)

        if competitors:
            logger.info(
                f"Appointment {request_id} confirmed; cascaded rejection to "
                f"{[c.id for c in competitors]}"
            )
        return competitors

    def _lost_race(self, request_id: int, slot_tuple) -> Exception:
        blocker = self.find_confirmed(*slot_tuple, exclude_id=request_id)
        if blocker is not None:
            return SlotTaken(blocker.id, blocker.patient_id)
        return Conflict(
            f"Appointment {request_id} was modified concurrently, please retry",
            {"appointment_id": request_id}
        )
