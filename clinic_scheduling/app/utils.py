import os
from datetime import datetime, timedelta, timezone

from .errors import InvalidInput
from .models import AppointmentSlot, MedicalRecord

MIN_SLOT_MINUTES = int(os.getenv('MIN_SLOT_MINUTES', 30))
MAX_SLOT_MINUTES = int(os.getenv('MAX_SLOT_MINUTES', 180))


def normalize_datetime(dt):
    """Bring a timestamp into the single naive timezone the store works in.

    Aware values are converted to UTC first; naive values are taken as-is.
    """
    if dt is None:
        return None
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt


def validate_duration(duration_minutes):
    if isinstance(duration_minutes, bool) or not isinstance(duration_minutes, int):
        raise InvalidInput("Duration must be a whole number of minutes")
    if not MIN_SLOT_MINUTES <= duration_minutes <= MAX_SLOT_MINUTES:
        raise InvalidInput(
            f"Duration must be between {MIN_SLOT_MINUTES} and {MAX_SLOT_MINUTES} minutes"
        )
    return duration_minutes


def compute_end_time(start_time: datetime, duration_minutes: int) -> datetime:
    end_time = start_time + timedelta(minutes=duration_minutes)
    if end_time <= start_time:
        raise InvalidInput("End time must be after start time")
    return end_time


def intervals_overlap(start_a, end_a, start_b, end_b):
    """Half-open test: [a_start, a_end) and [b_start, b_end) share an instant."""
    return start_a < end_b and end_a > start_b


def serialize_slot(slot: AppointmentSlot, include_medical_record: bool = False):
    serialized = {
        "id": slot.id,
        "doctor_id": slot.doctor_id,
        "patient_id": slot.patient_id,
        "start_time": slot.start_time.isoformat(),
        "end_time": slot.end_time.isoformat(),
        "duration": slot.duration_minutes,
        "title": slot.title,
        "symptoms": slot.symptoms,
        "status": slot.status,
        "created_at": slot.created_at.isoformat() if slot.created_at else None,
        "updated_at": slot.updated_at.isoformat() if slot.updated_at else None,
    }
    if include_medical_record:
        record = slot.medical_record
        serialized["medical_record"] = serialize_medical_record(record) if record else None
    return serialized


def serialize_medical_record(record: MedicalRecord):
    return {
        "id": record.id,
        "appointment_id": record.appointment_id,
        "patient_id": record.patient_id,
        "doctor_id": record.doctor_id,
        "doctor_notes": record.doctor_notes,
        "created_at": record.created_at.isoformat() if record.created_at else None,
        "updated_at": record.updated_at.isoformat() if record.updated_at else None,
    }
