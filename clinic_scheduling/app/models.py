# models.py
import uuid
from datetime import datetime
from enum import Enum

from sqlalchemy import Column, String, DateTime, ForeignKey, Index, Text
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


class CallerRole(str, Enum):
    ADMIN = "admin"
    DOCTOR = "doctor"
    PATIENT = "patient"


class SlotStatus(str, Enum):
    FREE = "free"
    BOOKED = "booked"
    OCCUPIED = "occupied"


def generate_id():
    return str(uuid.uuid4())


class AppointmentSlot(Base):
    __tablename__ = 'appointment_slots'
    id = Column(String(36), primary_key=True, default=generate_id)
    doctor_id = Column(String(64), nullable=False)
    patient_id = Column(String(64), nullable=True)  # set only while booked or occupied
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=False)
    title = Column(String, nullable=True)
    symptoms = Column(Text, nullable=True)
    status = Column(String(16), nullable=False, default=SlotStatus.FREE.value)
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    medical_record = relationship(
        "MedicalRecord",
        back_populates="appointment",
        uselist=False,
        cascade="all, delete-orphan",
    )

    __table_args__ = (
        Index('idx_doctor_start_time', 'doctor_id', 'start_time'),
        Index('idx_patient_start_time', 'patient_id', 'start_time'),
    )

    @property
    def duration_minutes(self):
        return int((self.end_time - self.start_time).total_seconds() // 60)

    def __repr__(self):
        return (f"<AppointmentSlot {self.id} doctor={self.doctor_id} "
                f"{self.start_time.isoformat()}-{self.end_time.isoformat()} {self.status}>")


class MedicalRecord(Base):
    __tablename__ = 'medical_records'
    id = Column(String(36), primary_key=True, default=generate_id)
    appointment_id = Column(String(36), ForeignKey('appointment_slots.id', ondelete='CASCADE'),
                            nullable=False, unique=True)
    patient_id = Column(String(64), nullable=False, index=True)
    doctor_id = Column(String(64), nullable=False)
    doctor_notes = Column(Text, nullable=False, default="")
    created_at = Column(DateTime, nullable=False, default=datetime.utcnow)
    updated_at = Column(DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow)

    appointment = relationship("AppointmentSlot", back_populates="medical_record")
