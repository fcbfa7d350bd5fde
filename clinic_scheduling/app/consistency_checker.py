# consistency_checker.py
import logging

from .models import SlotStatus
from .store import slot_store
from .utils import intervals_overlap


def find_overlaps(slots):
    """Pairs of non-free slots on one timeline whose intervals intersect."""
    busy = sorted((slot for slot in slots if slot.status != SlotStatus.FREE.value),
                  key=lambda slot: slot.start_time)
    overlaps = []
    for i, slot in enumerate(busy):
        for other in busy[i + 1:]:
            if other.start_time >= slot.end_time:
                break
            if intervals_overlap(slot.start_time, slot.end_time, other.start_time, other.end_time):
                overlaps.append((slot.id, other.id))
    return overlaps


def find_patient_mismatches(slots):
    """Slots whose patient attachment disagrees with their status."""
    mismatches = []
    for slot in slots:
        has_patient = slot.patient_id is not None
        if has_patient != (slot.status in (SlotStatus.BOOKED.value, SlotStatus.OCCUPIED.value)):
            mismatches.append(slot.id)
    return mismatches


def check_timeline(store, doctor_id):
    slots = store.list_by_range(doctor_id=doctor_id)
    discrepancies = []
    for first, second in find_overlaps(slots):
        discrepancies.append(f"Overlapping appointments: {first} and {second}")
        logging.info(f"Doctor {doctor_id}: overlapping appointments {first} and {second}")
    for slot_id in find_patient_mismatches(slots):
        discrepancies.append(f"Patient attachment does not match status: {slot_id}")
        logging.info(f"Doctor {doctor_id}: patient attachment does not match status on {slot_id}")
    return discrepancies


def check_timelines(session_factory, locks):
    """Re-verify every doctor's timeline; returns discrepancies keyed by doctor id.

    Timelines whose lock is held by a running request are skipped.
    """
    report = {}
    with slot_store(session_factory) as store:
        doctor_ids = store.doctor_ids()

    for doctor_id in doctor_ids:
        held = locks.try_hold(doctor_id)
        if held is None:
            print(f"Timeline check skipped for doctor {doctor_id} because another process is running.")
            continue
        with held:
            with slot_store(session_factory) as store:
                discrepancies = check_timeline(store, doctor_id)
        if discrepancies:
            print(f"Discrepancy found for doctor {doctor_id}:")
            print(discrepancies)
            report[doctor_id] = discrepancies
        else:
            print(f"Timeline is consistent for doctor {doctor_id}.")
    return report
