from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from .auth import get_current_caller
from .dependencies import get_scheduling_engine
from .models import SlotStatus
from .permissions import Caller
from .scheduling import SchedulingEngine

router = APIRouter()


class CreateAppointmentRequest(BaseModel):
    doctor_id: str
    start_time: datetime
    duration: int
    patient_id: Optional[str] = None
    title: Optional[str] = None
    symptoms: Optional[str] = None


class UpdateAppointmentRequest(BaseModel):
    start_time: Optional[datetime] = None
    duration: Optional[int] = None
    title: Optional[str] = None
    symptoms: Optional[str] = None
    status: Optional[SlotStatus] = None
    patient_id: Optional[str] = None


class ReserveAppointmentRequest(BaseModel):
    patient_id: Optional[str] = None
    title: Optional[str] = None
    symptoms: Optional[str] = None


class CompleteAppointmentRequest(BaseModel):
    doctor_notes: str


@router.get('/appointments')
def list_appointments(
        doctor_id: Optional[str] = Query(None),
        patient_id: Optional[str] = Query(None),
        start_date: Optional[datetime] = Query(None),
        end_date: Optional[datetime] = Query(None),
        caller: Caller = Depends(get_current_caller),
        engine: SchedulingEngine = Depends(get_scheduling_engine),
):
    return engine.list_slots(caller, doctor_id=doctor_id, patient_id=patient_id,
                             start_date=start_date, end_date=end_date)


@router.post('/appointments', status_code=status.HTTP_201_CREATED)
def create_appointment(
        request: CreateAppointmentRequest,
        caller: Caller = Depends(get_current_caller),
        engine: SchedulingEngine = Depends(get_scheduling_engine),
):
    return engine.create_slot(
        caller,
        doctor_id=request.doctor_id,
        start_time=request.start_time,
        duration=request.duration,
        patient_id=request.patient_id,
        title=request.title,
        symptoms=request.symptoms,
    )


@router.get('/appointments/{slot_id}')
def get_appointment(
        slot_id: str,
        caller: Caller = Depends(get_current_caller),
        engine: SchedulingEngine = Depends(get_scheduling_engine),
):
    return engine.get_slot(caller, slot_id)


@router.put('/appointments/{slot_id}')
def update_appointment(
        slot_id: str,
        request: UpdateAppointmentRequest,
        caller: Caller = Depends(get_current_caller),
        engine: SchedulingEngine = Depends(get_scheduling_engine),
):
    return engine.update_slot(
        caller,
        slot_id,
        start_time=request.start_time,
        duration=request.duration,
        title=request.title,
        symptoms=request.symptoms,
        status=request.status,
        patient_id=request.patient_id,
    )


@router.delete('/appointments/{slot_id}')
def cancel_appointment(
        slot_id: str,
        caller: Caller = Depends(get_current_caller),
        engine: SchedulingEngine = Depends(get_scheduling_engine),
):
    result = engine.cancel_slot(caller, slot_id)
    if result["outcome"] == "deleted":
        message = "Appointment deleted successfully"
    else:
        message = "Appointment cancelled successfully"
    return {"message": message, **result}


@router.post('/appointments/{slot_id}/reserve')
def reserve_appointment(
        slot_id: str,
        request: Optional[ReserveAppointmentRequest] = None,
        caller: Caller = Depends(get_current_caller),
        engine: SchedulingEngine = Depends(get_scheduling_engine),
):
    request = request or ReserveAppointmentRequest()
    return engine.reserve_slot(caller, slot_id, patient_id=request.patient_id,
                               title=request.title, symptoms=request.symptoms)


@router.put('/appointments/{slot_id}/confirm')
def confirm_arrival(
        slot_id: str,
        caller: Caller = Depends(get_current_caller),
        engine: SchedulingEngine = Depends(get_scheduling_engine),
):
    return engine.confirm_arrival(caller, slot_id)


@router.put('/appointments/{slot_id}/complete')
def complete_appointment(
        slot_id: str,
        request: CompleteAppointmentRequest,
        caller: Caller = Depends(get_current_caller),
        engine: SchedulingEngine = Depends(get_scheduling_engine),
):
    return engine.complete_appointment(caller, slot_id, request.doctor_notes)


@router.put('/appointments/{slot_id}/no-show')
def mark_no_show(
        slot_id: str,
        caller: Caller = Depends(get_current_caller),
        engine: SchedulingEngine = Depends(get_scheduling_engine),
):
    return engine.mark_no_show(caller, slot_id)


@router.get('/patients/{patient_id}/medical-records')
def list_medical_records(
        patient_id: str,
        caller: Caller = Depends(get_current_caller),
        engine: SchedulingEngine = Depends(get_scheduling_engine),
):
    return engine.list_medical_records(caller, patient_id)
