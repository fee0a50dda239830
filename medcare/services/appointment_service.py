from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import List, Optional, Tuple, Union
import logging

from sqlalchemy import func
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from ..core.config import settings
from ..core.database import storage_guard
from ..core.exceptions import (
    BookingError, Conflict, Forbidden, InvalidTransition,
    NotFound, SlotTaken, ValidationFailed
)
from ..core.security import Actor, UserRole
from ..models.appointment import AppointmentRequest, AppointmentStatus, ConsultationType, Gender
from ..models.time_slot import TimeSlot
from ..schemas.appointment import AppointmentResponse
from .conflict_resolver import ConflictResolver
from .doctor_directory import DoctorDirectory
from .notifications import NotificationTrigger, RequestCreated, RequestStatusChanged
from .slot_catalog import SlotCatalog

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100
MAX_PATIENT_AGE = 150


class Decision(str, Enum):
    APPROVE = "approved"
    REJECT = "rejected"
    DECLINE = "declined"

    @classmethod
    def parse(cls, value: str) -> "Decision":
        aliases = {"approve": cls.APPROVE, "reject": cls.REJECT, "decline": cls.DECLINE}
        normalized = (value or "").strip().lower()
        if normalized in aliases:
            return aliases[normalized]
        try:
            return cls(normalized)
        except ValueError:
            raise ValidationFailed(
                'Invalid status. Must be one of "approved", "rejected" or "declined"',
                {"status": value}
            )

    @property
    def target(self) -> AppointmentStatus:
        return {
            Decision.APPROVE: AppointmentStatus.CONFIRMED,
            Decision.REJECT: AppointmentStatus.REJECTED,
            Decision.DECLINE: AppointmentStatus.DECLINED,
        }[self]


@dataclass
class DecisionResult:
    appointment: AppointmentRequest
    cascaded: List[AppointmentRequest] = field(default_factory=list)


def parse_appointment_date(value: Union[date, str]) -> date:
    """Parse a calendar date, accepting ISO dates and ISO datetimes."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value).strip())
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(str(value).strip()).date()
    except ValueError:
        raise ValidationFailed(
            "Appointment date must be a valid date (YYYY-MM-DD)",
            {"appointment_date": str(value)}
        )


def parse_status(value: Optional[str]) -> Optional[AppointmentStatus]:
    """Parse a status filter; "approved" is accepted for confirmed."""
    if value is None:
        return None
    normalized = value.strip().lower()
    if normalized == "approved":
        return AppointmentStatus.CONFIRMED
    try:
        return AppointmentStatus(normalized)
    except ValueError:
        raise ValidationFailed(f"Unknown appointment status '{value}'", {"status": value})


def _parse_choice(enum_cls, value, field_name: str):
    try:
        return enum_cls(str(value).strip().lower())
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationFailed(
            f"{field_name} must be one of: {allowed}",
            {field_name: value}
        )


class AppointmentService:
    """Appointment request lifecycle: creation, decisions and state transitions.

    Every write goes through this class. Roles and ownership come from the
    ``Actor`` passed to each operation. Notifications are collected during the
    unit of work and fired only after it commits.
    """

    def __init__(
        self,
        db: Session,
        catalog: SlotCatalog,
        notifier: NotificationTrigger,
        strict_create: Optional[bool] = None,
        require_past_date_for_completion: Optional[bool] = None,
    ):
        self.db = db
        self.catalog = catalog
        self.notifier = notifier
        self.doctors = DoctorDirectory(db)
        self.resolver = ConflictResolver(db)
        self.strict_create = (
            settings.STRICT_SLOT_EXCLUSIVITY_ON_CREATE if strict_create is None else strict_create
        )
        self.require_past_date_for_completion = (
            settings.REQUIRE_PAST_DATE_FOR_COMPLETION
            if require_past_date_for_completion is None
            else require_past_date_for_completion
        )

    # Commands

    def create(
        self,
        actor: Actor,
        doctor_id: int,
        appointment_date: Union[date, str],
        time_slot_id: int,
        consultation_type: str,
        patient_age: Optional[int] = None,
        patient_gender: Optional[str] = None,
        health_info: Optional[str] = None,
    ) -> AppointmentRequest:
        """Submit a new request in the pending state."""
        if actor.role != UserRole.PATIENT:
            raise Forbidden("Only patients can request appointments")

        with self._unit_of_work() as events:
            if not self.doctors.exists(doctor_id):
                raise NotFound("Doctor not found", {"doctor_id": doctor_id})

            on_date = parse_appointment_date(appointment_date)
            if on_date < date.today():
                raise ValidationFailed(
                    "Appointment date cannot be in the past",
                    {"appointment_date": on_date.isoformat()}
                )

            if not self.catalog.exists(self.db, time_slot_id):
                raise NotFound("Time slot not found", {"time_slot_id": time_slot_id})

            consultation = _parse_choice(ConsultationType, consultation_type, "consultation_type")
            if patient_gender is None:
                raise ValidationFailed("patient_gender is required")
            gender = _parse_choice(Gender, patient_gender, "patient_gender")
            if patient_age is None or not 0 <= patient_age <= MAX_PATIENT_AGE:
                raise ValidationFailed(
                    f"Patient age must be a number between 0 and {MAX_PATIENT_AGE}",
                    {"patient_age": patient_age}
                )

            if self.strict_create:
                blocker = self.resolver.find_confirmed(doctor_id, on_date, time_slot_id)
                if blocker is not None:
                    raise SlotTaken(blocker.id, blocker.patient_id)

            appointment = AppointmentRequest(
                doctor_id=doctor_id,
                patient_id=actor.id,
                time_slot_id=time_slot_id,
                appointment_date=on_date,
                consultation_type=consultation,
                patient_age=patient_age,
                patient_gender=gender,
                health_info=health_info,
                status=AppointmentStatus.PENDING,
            )
            self.db.add(appointment)
            self.db.flush()
            events.append(RequestCreated(self._snapshot(appointment)))

        logger.info(
            f"Patient {actor.id} requested appointment {appointment.id} "
            f"(doctor={doctor_id}, date={on_date}, slot={time_slot_id})"
        )
        return appointment

    def decide(self, actor: Actor, request_id: int, decision: Union[Decision, str]) -> DecisionResult:
        """Admin approval, rejection or decline of a pending request."""
        if not actor.is_admin:
            raise Forbidden("Admin access required to decide appointment requests")
        decision = decision if isinstance(decision, Decision) else Decision.parse(decision)

        with self._unit_of_work() as events:
            appointment = self._load(request_id)
            self._require_status(appointment, decision.target, AppointmentStatus.PENDING)

            if decision is Decision.APPROVE:
                cascaded = self.resolver.try_confirm(appointment)
                events.append(self._changed(appointment, AppointmentStatus.PENDING))
                events.extend(self._changed(c, AppointmentStatus.PENDING) for c in cascaded)
            else:
                cascaded = []
                self._transition(appointment, decision.target, events)

        logger.info(
            f"Admin {actor.id} set appointment {request_id} to {decision.target.value}"
            + (f", rejected {[c.id for c in cascaded]}" if cascaded else "")
        )
        return DecisionResult(appointment=appointment, cascaded=cascaded)

    def cancel(self, actor: Actor, request_id: int) -> AppointmentRequest:
        """Owning patient withdraws a pending or confirmed request."""
        with self._unit_of_work() as events:
            appointment = self._load(request_id)
            if actor.role != UserRole.PATIENT or appointment.patient_id != actor.id:
                raise Forbidden("Only the patient who made the request can cancel it")
            self._require_status(
                appointment, AppointmentStatus.CANCELLED,
                AppointmentStatus.PENDING, AppointmentStatus.CONFIRMED
            )
            self._transition(appointment, AppointmentStatus.CANCELLED, events)

        logger.info(f"Patient {actor.id} cancelled appointment {request_id}")
        return appointment

    def decline(self, actor: Actor, request_id: int) -> AppointmentRequest:
        """Decline a pending request (admin, owning doctor or owning patient)."""
        with self._unit_of_work() as events:
            appointment = self._load(request_id)
            if not (
                actor.is_admin
                or self._is_owning_doctor(actor, appointment)
                or self._is_owning_patient(actor, appointment)
            ):
                raise Forbidden("Not authorized to decline this appointment")
            self._require_status(appointment, AppointmentStatus.DECLINED, AppointmentStatus.PENDING)
            self._transition(appointment, AppointmentStatus.DECLINED, events)

        logger.info(f"User {actor.id} ({actor.role.value}) declined appointment {request_id}")
        return appointment

    def complete(self, actor: Actor, request_id: int) -> AppointmentRequest:
        """Mark a confirmed appointment as held (admin or owning doctor)."""
        with self._unit_of_work() as events:
            appointment = self._load(request_id)
            if not (actor.is_admin or self._is_owning_doctor(actor, appointment)):
                raise Forbidden("Not authorized to update this appointment")
            self._require_status(appointment, AppointmentStatus.COMPLETED, AppointmentStatus.CONFIRMED)
            if self.require_past_date_for_completion and appointment.appointment_date > date.today():
                raise InvalidTransition(
                    appointment.status.value,
                    AppointmentStatus.COMPLETED.value,
                    "the appointment date has not been reached"
                )
            self._transition(appointment, AppointmentStatus.COMPLETED, events)

        logger.info(f"User {actor.id} marked appointment {request_id} completed")
        return appointment

    def update_status(self, actor: Actor, request_id: int, status: str) -> AppointmentRequest:
        """Route a free-form status update to the matching transition."""
        target = parse_status(status)
        if target == AppointmentStatus.DECLINED:
            return self.decline(actor, request_id)
        if target == AppointmentStatus.COMPLETED:
            return self.complete(actor, request_id)
        if target == AppointmentStatus.CANCELLED:
            return self.cancel(actor, request_id)
        if target in (AppointmentStatus.CONFIRMED, AppointmentStatus.REJECTED):
            return self.decide(actor, request_id, Decision.APPROVE if target == AppointmentStatus.CONFIRMED else Decision.REJECT).appointment
        raise ValidationFailed(f"Cannot set status to '{status}' directly", {"status": status})

    # Queries

    def get_for_actor(self, actor: Actor, request_id: int) -> AppointmentRequest:
        with self._reads():
            appointment = self._load(request_id)
            if not (
                actor.is_admin
                or self._is_owning_patient(actor, appointment)
                or self._is_owning_doctor(actor, appointment)
            ):
                raise Forbidden("Not authorized to view this appointment")
            return appointment

    def list_for_patient(
        self, actor: Actor, status: Optional[str] = None, page: int = 1, limit: Optional[int] = None
    ) -> Tuple[List[AppointmentRequest], int]:
        if actor.role != UserRole.PATIENT:
            raise Forbidden("Only patients have their own appointment list")
        status_filter = parse_status(status)

        with self._reads():
            query = self.db.query(AppointmentRequest).join(TimeSlot).filter(
                AppointmentRequest.patient_id == actor.id
            )
            if status_filter is not None:
                query = query.filter(AppointmentRequest.status == status_filter)
            query = query.order_by(AppointmentRequest.appointment_date.desc(), TimeSlot.start_time.desc())
            return self._paginate(query, page, limit)

    def list_for_doctor(
        self, actor: Actor, doctor_id: int, on_date: Optional[Union[date, str]] = None, status: Optional[str] = None
    ) -> List[AppointmentRequest]:
        status_filter = parse_status(status)
        day = parse_appointment_date(on_date) if on_date is not None else None

        with self._reads():
            if not self.doctors.exists(doctor_id):
                raise NotFound("Doctor not found", {"doctor_id": doctor_id})
            if not (actor.is_admin or (actor.role == UserRole.DOCTOR and self.doctors.is_owned_by(doctor_id, actor.id))):
                raise Forbidden("Not authorized to view this doctor's appointments")

            query = self.db.query(AppointmentRequest).join(TimeSlot).filter(
                AppointmentRequest.doctor_id == doctor_id
            )
            if day is not None:
                query = query.filter(AppointmentRequest.appointment_date == day)
            if status_filter is not None:
                query = query.filter(AppointmentRequest.status == status_filter)
            return query.order_by(AppointmentRequest.appointment_date, TimeSlot.start_time).all()

    def list_pending(self, actor: Actor, page: int = 1, limit: Optional[int] = None) -> Tuple[List[AppointmentRequest], int]:
        if not actor.is_admin:
            raise Forbidden("Admin access required")

        with self._reads():
            query = self.db.query(AppointmentRequest).join(TimeSlot).filter(
                AppointmentRequest.status == AppointmentStatus.PENDING
            ).order_by(AppointmentRequest.appointment_date, TimeSlot.start_time, AppointmentRequest.id)
            return self._paginate(query, page, limit)

    def statistics(self, actor: Actor) -> dict:
        if not actor.is_admin:
            raise Forbidden("Admin access required")

        with self._reads():
            by_status = dict(
                self.db.query(AppointmentRequest.status, func.count(AppointmentRequest.id))
                .group_by(AppointmentRequest.status)
                .all()
            )
            today = date.today()
            upcoming = self.db.query(func.count(AppointmentRequest.id)).filter(
                AppointmentRequest.appointment_date >= today
            ).scalar()
            past = self.db.query(func.count(AppointmentRequest.id)).filter(
                AppointmentRequest.appointment_date < today
            ).scalar()

        return {
            "pending_count": by_status.get(AppointmentStatus.PENDING, 0),
            "approved_count": by_status.get(AppointmentStatus.CONFIRMED, 0),
            "rejected_count": by_status.get(AppointmentStatus.REJECTED, 0),
            "declined_count": by_status.get(AppointmentStatus.DECLINED, 0),
            "completed_count": by_status.get(AppointmentStatus.COMPLETED, 0),
            "cancelled_count": by_status.get(AppointmentStatus.CANCELLED, 0),
            "upcoming_count": upcoming or 0,
            "past_count": past or 0,
        }

    def is_review_eligible(self, request_id: int, patient_id: int) -> bool:
        """True when the patient's appointment actually took place."""
        with self._reads():
            appointment = self.db.get(AppointmentRequest, request_id)
            if appointment is None or appointment.patient_id != patient_id:
                return False
            if appointment.status == AppointmentStatus.COMPLETED:
                return True
            return (
                appointment.status == AppointmentStatus.CONFIRMED
                and appointment.appointment_date < date.today()
            )

    # Helpers

    @contextmanager
    def _unit_of_work(self):
        """Commit on success, map storage failures, then fire queued events."""
        events = []
        try:
            with storage_guard(self.db):
                yield events
                self.db.commit()
        except BookingError:
            self.db.rollback()
            raise
        except StaleDataError:
            self.db.rollback()
            raise Conflict("The appointment was modified concurrently, please retry")
        except Exception:
            self.db.rollback()
            raise

        for event in events:
            self.notifier.fire(event)

    @contextmanager
    def _reads(self):
        with storage_guard(self.db):
            yield

    def _load(self, request_id: int) -> AppointmentRequest:
        appointment = self.db.get(AppointmentRequest, request_id)
        if appointment is None:
            raise NotFound("Appointment not found", {"appointment_id": request_id})
        return appointment

    def _require_status(self, appointment: AppointmentRequest, attempted: AppointmentStatus, *allowed: AppointmentStatus):
        if appointment.status not in allowed:
            raise InvalidTransition(appointment.status.value, attempted.value)

    def _transition(self, appointment: AppointmentRequest, new_status: AppointmentStatus, events: list):
        old_status = appointment.status
        appointment.status = new_status
        self.db.flush()
        events.append(self._changed(appointment, old_status))

    def _changed(self, appointment: AppointmentRequest, old_status: AppointmentStatus) -> RequestStatusChanged:
        return RequestStatusChanged(
            request=self._snapshot(appointment),
            old_status=old_status.value,
            new_status=appointment.status.value,
        )

    def _snapshot(self, appointment: AppointmentRequest) -> dict:
        return AppointmentResponse.model_validate(appointment).model_dump(mode="json")

    def _is_owning_patient(self, actor: Actor, appointment: AppointmentRequest) -> bool:
        return actor.role == UserRole.PATIENT and appointment.patient_id == actor.id

    def _is_owning_doctor(self, actor: Actor, appointment: AppointmentRequest) -> bool:
        return actor.role == UserRole.DOCTOR and self.doctors.is_owned_by(appointment.doctor_id, actor.id)

    def _paginate(self, query, page: int, limit: Optional[int]) -> Tuple[list, int]:
        if limit is None:
            limit = settings.DEFAULT_PAGE_SIZE
        if page < 1 or not 1 <= limit <= MAX_PAGE_SIZE:
            raise ValidationFailed(
                f"page must be >= 1 and limit between 1 and {MAX_PAGE_SIZE}",
                {"page": page, "limit": limit}
            )
        total = query.order_by(None).count()
        items = query.offset((page - 1) * limit).limit(limit).all()
        return items, total
