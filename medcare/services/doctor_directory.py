from typing import Optional

from sqlalchemy.orm import Session

from ..models.doctor import Doctor


class DoctorDirectory:
    """Read-only view of the doctor profiles owned by the profile service."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, doctor_id: int) -> Optional[Doctor]:
        return self.db.get(Doctor, doctor_id)

    def exists(self, doctor_id: int) -> bool:
        return self.db.query(Doctor.id).filter(Doctor.id == doctor_id).first() is not None

    def is_owned_by(self, doctor_id: int, user_id: int) -> bool:
        """True when ``user_id`` is the account behind the doctor profile."""
        return self.db.query(Doctor.id).filter(
            Doctor.id == doctor_id,
            Doctor.user_id == user_id
        ).first() is not None
