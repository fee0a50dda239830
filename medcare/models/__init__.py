from .doctor import Doctor
from .time_slot import TimeSlot
from .appointment import AppointmentRequest, AppointmentStatus, ConsultationType, Gender

__all__ = [
    "Doctor",
    "TimeSlot",
    "AppointmentRequest",
    "AppointmentStatus",
    "ConsultationType",
    "Gender",
]
