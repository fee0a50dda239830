from datetime import date, datetime, time
from math import ceil
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

from ..models.appointment import AppointmentStatus, ConsultationType, Gender


class TimeSlotResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    start_time: time
    end_time: time

    @field_serializer("start_time", "end_time")
    def _format_time(self, value: time) -> str:
        return value.strftime("%H:%M")


class TimeSlotCreate(BaseModel):
    start_time: time
    end_time: time


class AppointmentCreate(BaseModel):
    """Payload for a new appointment request.

    Date and enumerated fields arrive as raw strings; the lifecycle manager
    validates them in a fixed order so that callers get the first failing rule.
    """
    doctor_id: int
    appointment_date: str
    time_slot_id: int
    consultation_type: str
    patient_age: Optional[int] = None
    patient_gender: Optional[str] = None
    health_info: Optional[str] = Field(default=None, max_length=5000)


class AppointmentResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    doctor_id: int
    patient_id: int
    time_slot_id: int
    appointment_date: date
    consultation_type: ConsultationType
    patient_age: Optional[int] = None
    patient_gender: Optional[Gender] = None
    health_info: Optional[str] = None
    status: AppointmentStatus
    version: int
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    time_slot: Optional[TimeSlotResponse] = None

    @field_serializer("status")
    def _status_label(self, value: AppointmentStatus) -> str:
        return value.label


class RequestDecision(BaseModel):
    status: str = Field(description="approved, rejected or declined")


class StatusUpdate(BaseModel):
    status: str = Field(description="declined or completed")


class DecisionResponse(BaseModel):
    appointment: AppointmentResponse
    cascaded_rejections: List[int] = []


class Pagination(BaseModel):
    total: int
    page: int
    pages: int
    limit: int


class AppointmentPage(BaseModel):
    data: List[AppointmentResponse]
    pagination: Pagination

    @classmethod
    def build(cls, items, total: int, page: int, limit: int) -> "AppointmentPage":
        return cls(
            data=[AppointmentResponse.model_validate(item) for item in items],
            pagination=Pagination(
                total=total,
                page=page,
                pages=ceil(total / limit) if limit else 0,
                limit=limit,
            ),
        )


class AppointmentStatistics(BaseModel):
    pending_count: int
    approved_count: int
    rejected_count: int
    declined_count: int
    completed_count: int
    cancelled_count: int
    upcoming_count: int
    past_count: int


class ReviewEligibility(BaseModel):
    appointment_id: int
    eligible: bool

