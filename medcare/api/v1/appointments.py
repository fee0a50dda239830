from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status

from ...api.deps import (
    get_current_actor, get_patient_actor,
    get_appointment_service, get_availability_calculator
)
from ...core.security import Actor
from ...services.appointment_service import AppointmentService, parse_appointment_date
from ...services.availability import AvailabilityCalculator
from ...schemas.appointment import (
    AppointmentCreate, AppointmentResponse, AppointmentPage, DecisionResponse,
    RequestDecision, ReviewEligibility, StatusUpdate, TimeSlotResponse
)

router = APIRouter(prefix="/appointments", tags=["Appointments"])

@router.get("/available-slots/{doctor_id}", response_model=List[TimeSlotResponse])
def available_slots(
    doctor_id: int,
    date: str = Query(..., description="Calendar date, YYYY-MM-DD"),
    calculator: AvailabilityCalculator = Depends(get_availability_calculator)
):
    """Slots of the catalog not yet confirmed for the doctor on the date."""
    on_date = parse_appointment_date(date)
    return calculator.available_slots(doctor_id, on_date)

@router.post("", response_model=AppointmentResponse, status_code=status.HTTP_201_CREATED)
def create_appointment_request(
    payload: AppointmentCreate,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Submit an appointment request; it stays pending until an admin decides."""
    appointment = service.create(
        actor,
        doctor_id=payload.doctor_id,
        appointment_date=payload.appointment_date,
        time_slot_id=payload.time_slot_id,
        consultation_type=payload.consultation_type,
        patient_age=payload.patient_age,
        patient_gender=payload.patient_gender,
        health_info=payload.health_info,
    )
    return AppointmentResponse.model_validate(appointment)

@router.get("/patient", response_model=AppointmentPage)
def my_appointments(
    status: Optional[str] = None,
    page: int = 1,
    limit: int = 10,
    actor: Actor = Depends(get_patient_actor),
    service: AppointmentService = Depends(get_appointment_service)
):
    """The calling patient's requests, newest first."""
    items, total = service.list_for_patient(actor, status=status, page=page, limit=limit)
    return AppointmentPage.build(items, total, page, limit)

@router.get("/doctor/{doctor_id}", response_model=List[AppointmentResponse])
def doctor_appointments(
    doctor_id: int,
    date: Optional[str] = None,
    status: Optional[str] = None,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Requests for one doctor (the doctor themself or an admin)."""
    items = service.list_for_doctor(actor, doctor_id, on_date=date, status=status)
    return [AppointmentResponse.model_validate(item) for item in items]

@router.get("/{appointment_id}", response_model=AppointmentResponse)
def get_appointment(
    appointment_id: int,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service)
):
    return AppointmentResponse.model_validate(service.get_for_actor(actor, appointment_id))

@router.get("/{appointment_id}/review-eligibility", response_model=ReviewEligibility)
def review_eligibility(
    appointment_id: int,
    actor: Actor = Depends(get_patient_actor),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Whether the calling patient may review this appointment."""
    return ReviewEligibility(
        appointment_id=appointment_id,
        eligible=service.is_review_eligible(appointment_id, actor.id)
    )

@router.patch("/{appointment_id}/request-status", response_model=DecisionResponse)
def decide_request(
    appointment_id: int,
    decision: RequestDecision,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Approve, reject or decline a pending request (admin only)."""
    result = service.decide(actor, appointment_id, decision.status)
    return DecisionResponse(
        appointment=AppointmentResponse.model_validate(result.appointment),
        cascaded_rejections=[c.id for c in result.cascaded]
    )

@router.patch("/{appointment_id}/status", response_model=AppointmentResponse)
def update_status(
    appointment_id: int,
    update: StatusUpdate,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Decline or complete an appointment."""
    return AppointmentResponse.model_validate(
        service.update_status(actor, appointment_id, update.status)
    )

@router.patch("/{appointment_id}/cancel", response_model=AppointmentResponse)
def cancel_appointment(
    appointment_id: int,
    actor: Actor = Depends(get_current_actor),
    service: AppointmentService = Depends(get_appointment_service)
):
    """Cancel one of the caller's own requests, freeing a confirmed slot."""
    return AppointmentResponse.model_validate(service.cancel(actor, appointment_id))
