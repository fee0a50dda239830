from sqlalchemy import Column, Integer, Time, DateTime, CheckConstraint
from sqlalchemy.sql import func

from ..core.database import Base

class TimeSlot(Base):
    __tablename__ = "time_slots"
    __table_args__ = (
        CheckConstraint("start_time < end_time", name="ck_time_slots_start_before_end"),
    )

    id = Column(Integer, primary_key=True, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    created_at = Column(DateTime, server_default=func.now())

    def __repr__(self):
        return f"<TimeSlot(id={self.id}, {self.start_time:%H:%M}-{self.end_time:%H:%M})>"
