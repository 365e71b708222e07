# crm/routers/appointments.py
import uuid
from datetime import timedelta
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlmodel import Session, select

from crm.db import get_session
from crm.deps import get_current_user
from crm.models import Appointment, Lead, User
from crm.schemas import AppointmentIn, AppointmentUpdate
from crm.services import ics

router = APIRouter(prefix="/api/appointments", tags=["appointments"])

DEFAULT_MINUTES = 60


def get_appointment_or_404(session: Session, appointment_id: int) -> Appointment:
    appt = session.get(Appointment, appointment_id)
    if not appt:
        raise HTTPException(status_code=404, detail="Appointment not found")
    return appt


@router.get("", response_model=List[Appointment])
def list_appointments(
    lead_id: Optional[int] = Query(None, alias="leadId"),
    session: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    q = select(Appointment).order_by(Appointment.start_time)
    if lead_id is not None:
        q = q.where(Appointment.lead_id == lead_id)
    return session.exec(q).all()


@router.post("", response_model=Appointment, status_code=status.HTTP_201_CREATED)
def create_appointment(
    payload: AppointmentIn,
    session: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    if not session.get(Lead, payload.lead_id):
        raise HTTPException(status_code=404, detail="Lead not found")

    end = payload.end_time or payload.start_time + timedelta(minutes=DEFAULT_MINUTES)
    if end <= payload.start_time:
        raise HTTPException(status_code=400, detail="end_time must be after start_time")

    appt = Appointment(
        lead_id=payload.lead_id,
        start_time=payload.start_time,
        end_time=end,
        location=payload.location,
        status=payload.status,
        notes=payload.notes,
        ics_uid=f"{uuid.uuid4()}@crm",
    )
    session.add(appt)
    session.commit()
    session.refresh(appt)
    return appt


@router.put("/{appointment_id}", response_model=Appointment)
def update_appointment(
    appointment_id: int,
    payload: AppointmentUpdate,
    session: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    appt = get_appointment_or_404(session, appointment_id)
    for k, v in payload.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(appt, k, v)
    if appt.end_time <= appt.start_time:
        raise HTTPException(status_code=400, detail="end_time must be after start_time")
    session.add(appt)
    session.commit()
    session.refresh(appt)
    return appt


@router.get("/{appointment_id}/ics")
def appointment_ics(
    appointment_id: int,
    session: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    appt = get_appointment_or_404(session, appointment_id)
    lead = session.get(Lead, appt.lead_id)
    return Response(
        content=ics.appointment_ics(appt, lead),
        media_type="text/calendar",
        headers={"Content-Disposition": f'attachment; filename="rendez-vous-{appt.id}.ics"'},
    )
