from sqlalchemy import Column, Integer, String, DateTime, Numeric
from sqlalchemy.sql import func
from sqlalchemy.orm import relationship

from ..core.database import Base

class Doctor(Base):
    """Doctor reference owned by the profile service; read-only here."""
    __tablename__ = "doctors"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, unique=True, nullable=False, index=True)

    specialty = Column(String(100), nullable=False)
    consultation_fee = Column(Numeric(10, 2), nullable=True)

    # Timestamps
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())

    # Relationships
    appointments = relationship("AppointmentRequest", back_populates="doctor")

    def __repr__(self):
        return f"<Doctor(id={self.id}, user_id={self.user_id}, specialty='{self.specialty}')>"
