import uuid
from datetime import datetime

from sqlalchemy import Boolean, Column, Date, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import relationship

from pillclock.db.database import Base


def _new_id() -> str:
    return str(uuid.uuid4())


class Medication(Base):
    __tablename__ = "medications"

    id = Column(String(36), primary_key=True, default=_new_id, index=True)
    name = Column(String(255), nullable=False)
    dosage = Column(String(255), nullable=False, default="")
    time = Column(String(16), nullable=False)  # "HH:MM" or "H:MM AM"
    repeat_type = Column(String(16), nullable=False, default="daily")  # daily | weekly | monthly | once
    weekday = Column(Integer, nullable=True)  # 0 = Monday
    day = Column(Integer, nullable=True)  # day of month, 1..31
    once_on = Column(Date, nullable=True)
    lead_minutes = Column(Integer, nullable=False, default=0)
    enabled = Column(Boolean, nullable=False, default=True)
    # Today's status; put back to "active" by the daily reset
    status = Column(String(16), nullable=False, default="active")
    next_reminder_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    records = relationship("ComplianceRecord", back_populates="medication", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Medication id={self.id} name={self.name} repeat={self.repeat_type} enabled={self.enabled}>"


class ComplianceRecord(Base):
    __tablename__ = "compliance_records"

    id = Column(String(36), primary_key=True, default=_new_id, index=True)
    medication_id = Column(String(36), ForeignKey("medications.id", ondelete="CASCADE"), nullable=False, index=True)
    # Naive local wall-clock time of the dose
    scheduled_time = Column(DateTime, nullable=False, index=True)
    status = Column(String(16), nullable=False, default="pending", index=True)  # pending | taken | missed | snoozed | skipped | late
    action_time = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    medication = relationship("Medication", back_populates="records")

    def __repr__(self) -> str:
        return f"<ComplianceRecord medication={self.medication_id} at={self.scheduled_time} status={self.status}>"
