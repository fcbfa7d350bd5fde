# scheduling.py
import logging
from contextlib import contextmanager
from datetime import datetime
from functools import wraps
from typing import Optional

from prometheus_client import Counter

from .errors import InvalidInput, InvalidState, SchedulingError, SlotConflict, Unauthorized
from .models import AppointmentSlot, CallerRole, SlotStatus
from .permissions import (
    Caller,
    CancelEffect,
    Operation,
    authorize,
    authorize_create,
    authorize_medical_records,
    cancel_effect,
    check_transition,
    scope_listing,
)
from .store import slot_store
from .utils import (
    compute_end_time,
    normalize_datetime,
    serialize_medical_record,
    serialize_slot,
    validate_duration,
)

SLOT_OPERATION_COUNT = Counter(
    "slot_operation_count",
    "Scheduling engine operations by outcome",
    ["operation", "outcome"],
)

RELEASED_FIELDS = {"patient_id": None, "title": None, "symptoms": None, "status": SlotStatus.FREE.value}


def recorded(operation):
    """Count and log every call of an engine operation."""
    def decorator(func):
        @wraps(func)
        def wrapper(self, caller, *args, **kwargs):
            try:
                result = func(self, caller, *args, **kwargs)
            except SchedulingError as e:
                SLOT_OPERATION_COUNT.labels(operation=operation, outcome=type(e).__name__).inc()
                logging.warning(f"{operation} rejected for {caller.role.value} {caller.id}: {e.message}")
                raise
            SLOT_OPERATION_COUNT.labels(operation=operation, outcome="ok").inc()
            return result
        return wrapper
    return decorator


def _require_patient_details_allowed(patient_id, title, symptoms):
    if patient_id is None and (title is not None or symptoms is not None):
        raise InvalidInput("Title and symptoms require an attached patient")


def _raise_on_conflict(conflicts):
    if conflicts:
        raise SlotConflict(
            "The selected time slot is already booked",
            conflicting_ids=[existing.id for existing in conflicts],
        )


class SchedulingEngine:
    """Validates and applies every change to a doctor's appointment timeline.

    Mutations take the doctor's timeline lock and run the overlap query and
    the write in one transaction, so two racing requests for overlapping
    intervals cannot both succeed. Results are returned as plain dicts built
    before the transaction closes.
    """

    def __init__(self, session_factory, locks):
        self.session_factory = session_factory
        self.locks = locks

    @contextmanager
    def _timeline(self, doctor_id):
        with self.locks.hold(doctor_id):
            with slot_store(self.session_factory) as store:
                yield store

    @contextmanager
    def _slot_timeline(self, slot_id):
        # doctor_id is immutable, so it is safe to read it before locking.
        with slot_store(self.session_factory) as store:
            doctor_id = store.get(slot_id).doctor_id
        with self._timeline(doctor_id) as store:
            yield store, store.get(slot_id)

    @recorded("create")
    def create_slot(
            self,
            caller: Caller,
            doctor_id: str,
            start_time: datetime,
            duration: int,
            patient_id: Optional[str] = None,
            title: Optional[str] = None,
            symptoms: Optional[str] = None,
    ):
        if not doctor_id:
            raise InvalidInput("doctor_id is required")
        if start_time is None:
            raise InvalidInput("start_time is required")
        patient_id = authorize_create(caller, doctor_id, patient_id)
        _require_patient_details_allowed(patient_id, title, symptoms)
        start_time = normalize_datetime(start_time)
        end_time = compute_end_time(start_time, validate_duration(duration))

        with self._timeline(doctor_id) as store:
            slot = store.create(AppointmentSlot(
                doctor_id=doctor_id,
                patient_id=patient_id,
                start_time=start_time,
                end_time=end_time,
                title=title,
                symptoms=symptoms,
                status=SlotStatus.BOOKED.value if patient_id else SlotStatus.FREE.value,
            ))
            logging.info(f"Created {slot.status} slot {slot.id} for doctor {doctor_id} "
                         f"{start_time.isoformat()}-{end_time.isoformat()}")
            return serialize_slot(slot)

    @recorded("reserve")
    def reserve_slot(
            self,
            caller: Caller,
            slot_id: str,
            patient_id: Optional[str] = None,
            title: Optional[str] = None,
            symptoms: Optional[str] = None,
    ):
        with self._slot_timeline(slot_id) as (store, slot):
            authorize(caller, Operation.RESERVE, slot)
            patient_id = self._booking_patient(caller, patient_id)
            _raise_on_conflict(store.find_overlapping(
                slot.doctor_id, slot.start_time, slot.end_time, exclude_id=slot.id
            ))
            slot = store.update(
                slot.id,
                patient_id=patient_id,
                title=title,
                symptoms=symptoms,
                status=SlotStatus.BOOKED.value,
            )
            logging.info(f"Slot {slot.id} reserved for patient {patient_id}")
            return serialize_slot(slot)

    @staticmethod
    def _booking_patient(caller: Caller, patient_id):
        if caller.role == CallerRole.PATIENT:
            if patient_id is not None and patient_id != caller.id:
                raise Unauthorized("Patients can only book appointments for themselves")
            return caller.id
        if not patient_id:
            raise InvalidInput("patient_id is required to book a slot")
        return patient_id

    @recorded("update")
    def update_slot(
            self,
            caller: Caller,
            slot_id: str,
            start_time: Optional[datetime] = None,
            duration: Optional[int] = None,
            title: Optional[str] = None,
            symptoms: Optional[str] = None,
            status=None,
            patient_id: Optional[str] = None,
    ):
        with self._slot_timeline(slot_id) as (store, slot):
            authorize(caller, Operation.UPDATE, slot)

            current = SlotStatus(slot.status)
            try:
                requested = SlotStatus(status) if status is not None else current
            except ValueError:
                raise InvalidInput(f"Unknown appointment status: {status}")
            check_transition(caller, current, requested)

            changes = {}
            new_start, new_end = slot.start_time, slot.end_time
            if start_time is not None or duration is not None:
                new_start = normalize_datetime(start_time) if start_time is not None else slot.start_time
                minutes = validate_duration(duration) if duration is not None else slot.duration_minutes
                new_end = compute_end_time(new_start, minutes)
                changes.update(start_time=new_start, end_time=new_end)

            if requested == SlotStatus.FREE:
                if patient_id is not None:
                    raise InvalidInput("The patient can only be set when booking a free slot")
                _require_patient_details_allowed(None, title, symptoms)
                if current != SlotStatus.FREE:
                    changes.update(RELEASED_FIELDS)
            elif current == SlotStatus.FREE:
                booked_for = self._booking_patient(caller, patient_id)
                changes.update(patient_id=booked_for, title=title, symptoms=symptoms,
                               status=requested.value)
            else:
                if patient_id is not None and patient_id != slot.patient_id:
                    raise InvalidInput("The patient can only be set when booking a free slot")
                if title is not None:
                    changes["title"] = title
                if symptoms is not None:
                    changes["symptoms"] = symptoms
                if requested != current:
                    changes["status"] = requested.value

            if "start_time" in changes or (current == SlotStatus.FREE and requested != SlotStatus.FREE):
                _raise_on_conflict(store.find_overlapping(
                    slot.doctor_id, new_start, new_end, exclude_id=slot.id
                ))

            if changes:
                slot = store.update(slot.id, **changes)
                logging.info(f"Updated slot {slot.id}: {sorted(changes)}")
            return serialize_slot(slot, include_medical_record=caller.role != CallerRole.ADMIN)

    @recorded("confirm_arrival")
    def confirm_arrival(self, caller: Caller, slot_id: str):
        with self._slot_timeline(slot_id) as (store, slot):
            authorize(caller, Operation.CONFIRM_ARRIVAL, slot)
            if slot.patient_id is None:
                raise InvalidState("No patient assigned to this appointment")
            slot = store.update(slot.id, status=SlotStatus.OCCUPIED.value)
            logging.info(f"Patient {slot.patient_id} arrived for slot {slot.id}")
            return serialize_slot(slot)

    @recorded("complete")
    def complete_appointment(self, caller: Caller, slot_id: str, doctor_notes: str):
        if not isinstance(doctor_notes, str):
            raise InvalidInput("doctor_notes must be text")
        with self._slot_timeline(slot_id) as (store, slot):
            authorize(caller, Operation.COMPLETE, slot)
            if slot.patient_id is None:
                raise InvalidState("No patient assigned to this appointment")
            if slot.medical_record is None:
                store.attach_medical_record(slot, doctor_notes)
            else:
                store.update_medical_record(slot.medical_record, doctor_notes)
            slot = store.update(slot.id, status=SlotStatus.OCCUPIED.value)
            logging.info(f"Completed appointment {slot.id} for patient {slot.patient_id}")
            return serialize_slot(slot, include_medical_record=True)

    @recorded("mark_no_show")
    def mark_no_show(self, caller: Caller, slot_id: str):
        with self._slot_timeline(slot_id) as (store, slot):
            authorize(caller, Operation.MARK_NO_SHOW, slot)
            patient_id = slot.patient_id
            slot = store.update(slot.id, **RELEASED_FIELDS)
            logging.info(f"Patient {patient_id} marked as no-show, slot {slot.id} released")
            return serialize_slot(slot)

    @recorded("cancel")
    def cancel_slot(self, caller: Caller, slot_id: str):
        with self._slot_timeline(slot_id) as (store, slot):
            authorize(caller, Operation.CANCEL, slot)
            effect = cancel_effect(caller, slot)
            if effect is CancelEffect.DELETED:
                store.delete(slot.id)
                logging.info(f"Slot {slot_id} deleted by {caller.role.value} {caller.id}")
                return {"slot_id": slot_id, "outcome": effect.value, "slot": None}
            slot = store.update(slot.id, **RELEASED_FIELDS)
            logging.info(f"Booking on slot {slot_id} cancelled by {caller.role.value} {caller.id}")
            return {"slot_id": slot_id, "outcome": effect.value, "slot": serialize_slot(slot)}

    @recorded("delete")
    def delete_slot(self, caller: Caller, slot_id: str):
        with self._slot_timeline(slot_id) as (store, slot):
            authorize(caller, Operation.DELETE, slot)
            store.delete(slot.id)
            logging.info(f"Slot {slot_id} deleted by {caller.role.value} {caller.id}")

    @recorded("view")
    def get_slot(self, caller: Caller, slot_id: str):
        with slot_store(self.session_factory) as store:
            slot = store.get(slot_id)
            authorize(caller, Operation.VIEW, slot)
            return serialize_slot(slot, include_medical_record=caller.role != CallerRole.ADMIN)

    @recorded("list")
    def list_slots(
            self,
            caller: Caller,
            doctor_id: Optional[str] = None,
            patient_id: Optional[str] = None,
            start_date: Optional[datetime] = None,
            end_date: Optional[datetime] = None,
    ):
        doctor_id, patient_id = scope_listing(caller, doctor_id, patient_id)
        start_date = normalize_datetime(start_date)
        end_date = normalize_datetime(end_date)
        if start_date is not None and end_date is not None and end_date < start_date:
            raise InvalidInput("end_date must not be before start_date")
        with slot_store(self.session_factory) as store:
            slots = store.list_by_range(doctor_id, patient_id, start_date, end_date)
            return [serialize_slot(slot) for slot in slots]

    @recorded("medical_records")
    def list_medical_records(self, caller: Caller, patient_id: str):
        with slot_store(self.session_factory) as store:
            treated = caller.role == CallerRole.DOCTOR and store.has_appointment_with(caller.id, patient_id)
            authorize_medical_records(caller, patient_id, treated)
            return [serialize_medical_record(record) for record in store.list_medical_records(patient_id)]
