# store.py
import logging
from contextlib import contextmanager
from datetime import datetime
from typing import List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .errors import NotFound, SlotConflict, StoreFailure
from .models import AppointmentSlot, MedicalRecord, SlotStatus

SLOT_FIELDS = {"patient_id", "start_time", "end_time", "title", "symptoms", "status"}


class SlotStore:
    """CRUD over appointment slots and their medical records inside one session.

    The store never commits; the surrounding unit of work decides whether the
    transaction is kept or rolled back.
    """

    def __init__(self, db: Session):
        self.db = db

    def get(self, slot_id: str) -> AppointmentSlot:
        slot = self.db.query(AppointmentSlot).filter(AppointmentSlot.id == slot_id).first()
        if slot is None:
            raise NotFound(f"Appointment slot {slot_id} not found")
        return slot

    def list_by_range(
            self,
            doctor_id: Optional[str] = None,
            patient_id: Optional[str] = None,
            start_time: Optional[datetime] = None,
            end_time: Optional[datetime] = None,
    ) -> List[AppointmentSlot]:
        query = self.db.query(AppointmentSlot)
        if doctor_id is not None:
            query = query.filter(AppointmentSlot.doctor_id == doctor_id)
        if patient_id is not None:
            query = query.filter(AppointmentSlot.patient_id == patient_id)
        if start_time is not None:
            query = query.filter(AppointmentSlot.start_time >= start_time)
        if end_time is not None:
            query = query.filter(AppointmentSlot.end_time <= end_time)
        return query.order_by(AppointmentSlot.start_time.asc(), AppointmentSlot.id.asc()).all()

    def find_overlapping(
            self,
            doctor_id: str,
            start_time: datetime,
            end_time: datetime,
            exclude_id: Optional[str] = None,
    ) -> List[AppointmentSlot]:
        # Half-open intersection; free slots never hold the doctor's time.
        query = self.db.query(AppointmentSlot).filter(
            AppointmentSlot.doctor_id == doctor_id,
            AppointmentSlot.status != SlotStatus.FREE.value,
            AppointmentSlot.start_time < end_time,
            AppointmentSlot.end_time > start_time,
        )
        if exclude_id is not None:
            query = query.filter(AppointmentSlot.id != exclude_id)
        return query.order_by(AppointmentSlot.start_time.asc()).all()

    def create(self, slot: AppointmentSlot) -> AppointmentSlot:
        conflicts = self.find_overlapping(slot.doctor_id, slot.start_time, slot.end_time)
        if conflicts:
            raise SlotConflict(
                "The selected time slot is already booked",
                conflicting_ids=[existing.id for existing in conflicts],
            )
        self.db.add(slot)
        self.db.flush()
        return slot

    def update(self, slot_id: str, **fields) -> AppointmentSlot:
        slot = self.get(slot_id)
        unknown = set(fields) - SLOT_FIELDS
        if unknown:
            raise ValueError(f"Cannot update slot fields: {sorted(unknown)}")
        for name, value in fields.items():
            setattr(slot, name, value)
        slot.updated_at = datetime.utcnow()
        self.db.flush()
        return slot

    def delete(self, slot_id: str) -> None:
        slot = self.get(slot_id)
        self.db.delete(slot)
        self.db.flush()

    def doctor_ids(self) -> List[str]:
        rows = self.db.query(AppointmentSlot.doctor_id).distinct().order_by(AppointmentSlot.doctor_id).all()
        return [row[0] for row in rows]

    def has_appointment_with(self, doctor_id: str, patient_id: str) -> bool:
        return self.db.query(AppointmentSlot.id).filter(
            AppointmentSlot.doctor_id == doctor_id,
            AppointmentSlot.patient_id == patient_id,
        ).first() is not None

    # Medical-record documents attached to completed appointments

    def attach_medical_record(self, slot: AppointmentSlot, text: str) -> MedicalRecord:
        record = MedicalRecord(
            appointment_id=slot.id,
            patient_id=slot.patient_id,
            doctor_id=slot.doctor_id,
            doctor_notes=text,
        )
        slot.medical_record = record
        self.db.flush()
        return record

    def update_medical_record(self, record: MedicalRecord, text: str) -> MedicalRecord:
        record.doctor_notes = text
        record.updated_at = datetime.utcnow()
        self.db.flush()
        return record

    def list_medical_records(self, patient_id: str) -> List[MedicalRecord]:
        return self.db.query(MedicalRecord).join(
            AppointmentSlot, MedicalRecord.appointment_id == AppointmentSlot.id
        ).filter(
            MedicalRecord.patient_id == patient_id
        ).order_by(AppointmentSlot.start_time.desc()).all()


@contextmanager
def slot_store(session_factory):
    """Open one transaction and yield a store bound to it.

    Commits when the block finishes, rolls back on any exception. Database
    errors are re-raised as StoreFailure.
    """
    db = session_factory()
    try:
        yield SlotStore(db)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logging.error(f"Slot store failure: {str(e)}")
        raise StoreFailure("The appointment store is unavailable") from e
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
