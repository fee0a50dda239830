from sqlalchemy import Column, Integer, String, ForeignKey, Date, DateTime, Text, Index, Enum as SQLEnum, text
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship
import enum

from ..core.database import Base

class AppointmentStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    DECLINED = "declined"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def label(self) -> str:
        """User-facing name; a confirmed request is shown as approved."""
        return "approved" if self is AppointmentStatus.CONFIRMED else self.value

class ConsultationType(str, enum.Enum):
    ONLINE = "online"
    OFFLINE = "offline"

class Gender(str, enum.Enum):
    MALE = "male"
    FEMALE = "female"
    OTHER = "other"


def _enum_column(enum_cls):
    return SQLEnum(
        enum_cls,
        values_callable=lambda members: [m.value for m in members],
        native_enum=False,
        length=20,
    )


class AppointmentRequest(Base):
    __tablename__ = "appointments"
    __table_args__ = (
        Index("ix_appointments_slot_tuple", "doctor_id", "appointment_date", "time_slot_id"),
        # At most one confirmed request per (doctor, date, slot)
        Index(
            "uq_appointments_confirmed_slot",
            "doctor_id", "appointment_date", "time_slot_id",
            unique=True,
            postgresql_where=text("status = 'confirmed'"),
            sqlite_where=text("status = 'confirmed'"),
        ),
    )

    id = Column(Integer, primary_key=True, index=True)

    doctor_id = Column(Integer, ForeignKey("doctors.id"), nullable=False)
    patient_id = Column(Integer, nullable=False, index=True)
    time_slot_id = Column(Integer, ForeignKey("time_slots.id"), nullable=False)
    appointment_date = Column(Date, nullable=False)

    # Request details
    consultation_type = Column(_enum_column(ConsultationType), nullable=False)
    patient_age = Column(Integer, nullable=True)
    patient_gender = Column(_enum_column(Gender), nullable=True)
    health_info = Column(Text, nullable=True)

    status = Column(_enum_column(AppointmentStatus), nullable=False, default=AppointmentStatus.PENDING, index=True)
    version = Column(Integer, nullable=False)

    # Tracking
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    doctor = relationship("Doctor", back_populates="appointments")
    time_slot = relationship("TimeSlot")

    __mapper_args__ = {"version_id_col": version}

    @property
    def slot_tuple(self):
        return (self.doctor_id, self.appointment_date, self.time_slot_id)

    def __repr__(self):
        return (
            f"<AppointmentRequest(id={self.id}, doctor_id={self.doctor_id}, "
            f"date='{self.appointment_date}', slot={self.time_slot_id}, status='{self.status.value}')>"
        )
