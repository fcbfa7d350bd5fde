# permissions.py
"""Who may do what to an appointment slot, in one table.

Each engine operation consults :func:`authorize` exactly once before touching
a slot. A rule names the ownership scope the caller must satisfy and the slot
statuses the operation may start from. Ownership is checked before status, so
a caller poking at somebody else's slot always gets ``Unauthorized``.
"""
from dataclasses import dataclass
from enum import Enum
from typing import FrozenSet

from .errors import InvalidState, InvalidTransition, Unauthorized
from .models import AppointmentSlot, CallerRole, SlotStatus


@dataclass(frozen=True)
class Caller:
    """An already authenticated identity: profile id plus role."""
    id: str
    role: CallerRole

    def __post_init__(self):
        object.__setattr__(self, "role", CallerRole(self.role))


class Operation(str, Enum):
    VIEW = "view"
    RESERVE = "reserve"
    UPDATE = "update"
    CONFIRM_ARRIVAL = "confirm_arrival"
    COMPLETE = "complete"
    MARK_NO_SHOW = "mark_no_show"
    CANCEL = "cancel"
    DELETE = "delete"


class Scope(str, Enum):
    ANY = "any"
    DOCTOR_OWNER = "doctor_owner"
    ATTACHED_PATIENT = "attached_patient"


class CancelEffect(str, Enum):
    RELEASED = "released"
    DELETED = "deleted"


@dataclass(frozen=True)
class Rule:
    scope: Scope
    statuses: FrozenSet[SlotStatus]


FREE = SlotStatus.FREE
BOOKED = SlotStatus.BOOKED
OCCUPIED = SlotStatus.OCCUPIED
ALL_STATUSES = frozenset(SlotStatus)

PATIENT = CallerRole.PATIENT
DOCTOR = CallerRole.DOCTOR
ADMIN = CallerRole.ADMIN

PERMISSIONS = {
    (PATIENT, Operation.VIEW): Rule(Scope.ATTACHED_PATIENT, ALL_STATUSES),
    (DOCTOR, Operation.VIEW): Rule(Scope.DOCTOR_OWNER, ALL_STATUSES),
    (ADMIN, Operation.VIEW): Rule(Scope.ANY, ALL_STATUSES),

    (PATIENT, Operation.RESERVE): Rule(Scope.ANY, frozenset({FREE})),
    (DOCTOR, Operation.RESERVE): Rule(Scope.DOCTOR_OWNER, frozenset({FREE})),
    (ADMIN, Operation.RESERVE): Rule(Scope.ANY, frozenset({FREE})),

    (PATIENT, Operation.UPDATE): Rule(Scope.ATTACHED_PATIENT, frozenset({BOOKED})),
    (DOCTOR, Operation.UPDATE): Rule(Scope.DOCTOR_OWNER, ALL_STATUSES),
    (ADMIN, Operation.UPDATE): Rule(Scope.ANY, ALL_STATUSES),

    (DOCTOR, Operation.CONFIRM_ARRIVAL): Rule(Scope.DOCTOR_OWNER, frozenset({BOOKED})),
    (ADMIN, Operation.CONFIRM_ARRIVAL): Rule(Scope.ANY, frozenset({BOOKED})),

    (DOCTOR, Operation.COMPLETE): Rule(Scope.DOCTOR_OWNER, frozenset({BOOKED, OCCUPIED})),

    (DOCTOR, Operation.MARK_NO_SHOW): Rule(Scope.DOCTOR_OWNER, frozenset({BOOKED})),
    (ADMIN, Operation.MARK_NO_SHOW): Rule(Scope.ANY, frozenset({BOOKED})),

    (PATIENT, Operation.CANCEL): Rule(Scope.ATTACHED_PATIENT, frozenset({BOOKED})),
    (DOCTOR, Operation.CANCEL): Rule(Scope.DOCTOR_OWNER, frozenset({FREE, BOOKED})),
    (ADMIN, Operation.CANCEL): Rule(Scope.ANY, ALL_STATUSES),

    (DOCTOR, Operation.DELETE): Rule(Scope.DOCTOR_OWNER, frozenset({FREE})),
    (ADMIN, Operation.DELETE): Rule(Scope.ANY, ALL_STATUSES),
}

CANCEL_EFFECTS = {
    (PATIENT, BOOKED): CancelEffect.RELEASED,
    (DOCTOR, BOOKED): CancelEffect.RELEASED,
    (DOCTOR, FREE): CancelEffect.DELETED,
    (ADMIN, FREE): CancelEffect.DELETED,
    (ADMIN, BOOKED): CancelEffect.DELETED,
    (ADMIN, OCCUPIED): CancelEffect.DELETED,
}

# Status changes reachable through a plain slot update.
STATUS_TRANSITIONS = {
    (DOCTOR, FREE, BOOKED),
    (ADMIN, FREE, BOOKED),
    (DOCTOR, BOOKED, OCCUPIED),
    (ADMIN, BOOKED, OCCUPIED),
    (PATIENT, BOOKED, FREE),
    (DOCTOR, BOOKED, FREE),
    (ADMIN, BOOKED, FREE),
}


def _in_scope(caller: Caller, scope: Scope, slot: AppointmentSlot) -> bool:
    if scope is Scope.ANY:
        return True
    if scope is Scope.DOCTOR_OWNER:
        return slot.doctor_id == caller.id
    return slot.patient_id is not None and slot.patient_id == caller.id


def authorize(caller: Caller, operation: Operation, slot: AppointmentSlot) -> Rule:
    rule = PERMISSIONS.get((caller.role, operation))
    if rule is None:
        raise Unauthorized(f"Role {caller.role.value} may not {operation.value} appointments")
    if not _in_scope(caller, rule.scope, slot):
        raise Unauthorized(f"Not authorized to {operation.value} this appointment")
    if SlotStatus(slot.status) not in rule.statuses:
        raise InvalidState(f"Cannot {operation.value} an appointment that is {slot.status}")
    return rule


def cancel_effect(caller: Caller, slot: AppointmentSlot) -> CancelEffect:
    return CANCEL_EFFECTS[(caller.role, SlotStatus(slot.status))]


def check_transition(caller: Caller, current: SlotStatus, requested: SlotStatus) -> None:
    if current == requested:
        return
    if (caller.role, current, requested) not in STATUS_TRANSITIONS:
        raise InvalidTransition(
            f"Role {caller.role.value} may not change an appointment from {current.value} to {requested.value}"
        )


def authorize_create(caller: Caller, doctor_id: str, patient_id):
    """Return the patient the new slot is booked for, if any.

    Patients can only book for themselves; doctors only create slots on
    their own timeline.
    """
    if caller.role == PATIENT:
        if patient_id is not None and patient_id != caller.id:
            raise Unauthorized("Patients can only book appointments for themselves")
        return caller.id
    if caller.role == DOCTOR and doctor_id != caller.id:
        raise Unauthorized("Doctors can only create slots on their own schedule")
    return patient_id


def scope_listing(caller: Caller, doctor_id, patient_id):
    """Narrow list filters to what the caller may see."""
    if caller.role == PATIENT:
        return doctor_id, caller.id
    if caller.role == DOCTOR:
        return caller.id, patient_id
    return doctor_id, patient_id


def authorize_medical_records(caller: Caller, patient_id: str, treated_by_caller: bool) -> None:
    if caller.role == ADMIN:
        raise Unauthorized("Administrators cannot access medical records")
    if caller.role == PATIENT and patient_id != caller.id:
        raise Unauthorized("Unauthorized to view these medical records")
    if caller.role == DOCTOR and not treated_by_caller:
        raise Unauthorized("Unauthorized to view these medical records")
