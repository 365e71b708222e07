# crm/routers/leads.py
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlmodel import Session, or_, select

from crm.db import get_session
from crm.deps import require_operator, require_permission
from crm.models import Appointment, Delivery, Interaction, Lead, RuleExecution, User, utcnow
from crm.schemas import AssignIn, LeadIn, LeadUpdate, OutcomeIn
from crm.services import kpi
from crm.services.outcomes import process_outcome
from crm.services.scoring import contact_block, is_ready_to_sell, score_prospect
from crm.utils.phone import require_phone

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/leads", tags=["leads"])

CLOSED_STATUSES = ("Sent to Agent", "Sold", "Bad Contact", "Disqualified", "Do Not Contact")
NON_NULL_FIELDS = {"budget", "estimated_price", "consent", "status", "is_hot_lead", "bad_number", "do_not_contact", "cost"}


def get_lead_or_404(session: Session, lead_id: int) -> Lead:
    lead = session.get(Lead, lead_id)
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")
    return lead


def _has_live_touch(session: Session, lead_id: int) -> bool:
    row = session.exec(
        select(Interaction.id)
        .where(Interaction.lead_id == lead_id)
        .where(or_(
            Interaction.direction == "inbound",
            Interaction.outcome.in_(("connected", "booked", "not_seller")),
        ))
        .limit(1)
    ).first()
    return row is not None


@router.get("", response_model=List[Lead])
def list_leads(
    owner_id: Optional[int] = Query(None, alias="ownerId"),
    session: Session = Depends(get_session),
    user: User = Depends(require_permission("view_all_leads")),
):
    q = select(Lead).order_by(Lead.created_at.desc())
    if owner_id is not None:
        q = q.where(Lead.owner_user_id == owner_id)
    return session.exec(q).all()


@router.post("", response_model=Lead, status_code=status.HTTP_201_CREATED)
def create_lead(
    payload: LeadIn,
    session: Session = Depends(get_session),
    user: User = Depends(require_operator),
):
    data = payload.model_dump(exclude_none=True)
    if data.get("phone"):
        data["phone"] = require_phone(data["phone"])
    lead = Lead(owner_user_id=user.id, **data)
    lead.score = score_prospect(lead)
    session.add(lead)
    session.commit()
    session.refresh(lead)
    log.info("Lead %s created by operator %s", lead.id, user.id)
    return lead


@router.get("/queue", response_model=List[Lead])
def lead_queue(
    session: Session = Depends(get_session),
    user: User = Depends(require_operator),
):
    """Callable leads in dialing order."""
    now = utcnow()
    rows = session.exec(
        select(Lead)
        .where(Lead.status.not_in(CLOSED_STATUSES))
        .where(Lead.bad_number == False)  # noqa: E712
        .where(Lead.do_not_contact == False)  # noqa: E712
        .where(or_(Lead.next_action == None, Lead.next_action <= now))  # noqa: E711
    ).all()
    return kpi.queue_order(rows)


@router.get("/duplicates", response_model=List[Lead])
def lead_duplicates(
    phone: Optional[str] = Query(None),
    email: Optional[str] = Query(None),
    session: Session = Depends(get_session),
    user: User = Depends(require_operator),
):
    return kpi.find_duplicate_leads(session, phone=phone, email=email)


@router.get("/{lead_id}", response_model=Lead)
def get_lead(
    lead_id: int,
    session: Session = Depends(get_session),
    user: User = Depends(require_operator),
):
    return get_lead_or_404(session, lead_id)


@router.put("/{lead_id}", response_model=Lead)
def update_lead(
    lead_id: int,
    payload: LeadUpdate,
    session: Session = Depends(get_session),
    user: User = Depends(require_operator),
):
    lead = get_lead_or_404(session, lead_id)
    changes = {
        k: v for k, v in payload.model_dump(exclude_unset=True).items()
        if v is not None or k not in NON_NULL_FIELDS
    }
    if changes.get("phone"):
        changes["phone"] = require_phone(changes["phone"])
    for k, v in changes.items():
        setattr(lead, k, v)
    lead.score = score_prospect(lead)
    session.add(lead)
    session.commit()
    session.refresh(lead)
    return lead


@router.delete("/{lead_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_lead(
    lead_id: int,
    session: Session = Depends(get_session),
    user: User = Depends(require_operator),
):
    """Removes the lead with its call log, appointments and automation markers."""
    lead = get_lead_or_404(session, lead_id)
    delivered = session.exec(select(Delivery.id).where(Delivery.lead_id == lead.id).limit(1)).first()
    if delivered is not None:
        raise HTTPException(status_code=409, detail="Lead has deliveries and cannot be deleted")

    for model in (Interaction, Appointment, RuleExecution):
        for row in session.exec(select(model).where(model.lead_id == lead.id)).all():
            session.delete(row)
    session.flush()
    session.delete(lead)
    session.commit()
    log.info("Lead %s deleted by %s", lead_id, user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{lead_id}/assign", response_model=Lead)
def assign_lead(
    lead_id: int,
    payload: AssignIn,
    session: Session = Depends(get_session),
    user: User = Depends(require_permission("assign_leads")),
):
    lead = get_lead_or_404(session, lead_id)
    agent = session.get(User, payload.agent_id)
    if not agent or agent.role not in ("agent", "admin") or not agent.is_active:
        raise HTTPException(status_code=404, detail="Agent not found")

    lead.assigned_agent_id = agent.id
    lead.status = "Sent to Agent"
    session.add(lead)
    session.commit()
    session.refresh(lead)
    log.info("Lead %s assigned to agent %s by %s", lead.id, agent.id, user.id)
    return lead


@router.post("/{lead_id}/outcome")
def log_outcome(
    lead_id: int,
    payload: OutcomeIn,
    session: Session = Depends(get_session),
    user: User = Depends(require_operator),
):
    lead = get_lead_or_404(session, lead_id)
    blocked, reason = contact_block(lead)
    if blocked and payload.outcome not in ("bad_number", "dnc"):
        raise HTTPException(status_code=409, detail=f"Contact blocked: {reason}")

    return process_outcome(
        session,
        lead,
        payload.outcome,
        user,
        notes=payload.notes,
        start_time=payload.start_time,
        end_time=payload.end_time,
        location=payload.location,
    )


@router.get("/{lead_id}/ready")
def lead_ready(
    lead_id: int,
    session: Session = Depends(get_session),
    user: User = Depends(require_operator),
):
    lead = get_lead_or_404(session, lead_id)
    return {"lead_id": lead.id, "ready": is_ready_to_sell(lead, _has_live_touch(session, lead.id))}


@router.get("/{lead_id}/blocked")
def lead_blocked(
    lead_id: int,
    session: Session = Depends(get_session),
    user: User = Depends(require_operator),
):
    lead = get_lead_or_404(session, lead_id)
    blocked, reason = contact_block(lead)
    return {"lead_id": lead.id, "blocked": blocked, "reason": reason}
