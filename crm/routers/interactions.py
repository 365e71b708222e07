# crm/routers/interactions.py
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlmodel import Session, select

from crm.db import get_session
from crm.deps import get_current_user
from crm.models import Interaction, Lead, User, utcnow
from crm.schemas import InteractionIn

router = APIRouter(prefix="/api/interactions", tags=["interactions"])

LIVE_OUTCOMES = ("connected", "booked", "not_seller")


@router.get("", response_model=List[Interaction])
def list_interactions(
    lead_id: Optional[int] = Query(None, alias="leadId"),
    session: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    q = select(Interaction).order_by(Interaction.timestamp.desc(), Interaction.id.desc())
    if lead_id is not None:
        q = q.where(Interaction.lead_id == lead_id)
    return session.exec(q).all()


@router.post("", response_model=Interaction, status_code=status.HTTP_201_CREATED)
def create_interaction(
    payload: InteractionIn,
    session: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    lead = session.get(Lead, payload.lead_id)
    if not lead:
        raise HTTPException(status_code=404, detail="Lead not found")

    data = payload.model_dump(exclude_none=True)
    data.setdefault("timestamp", utcnow())
    it = Interaction(user_id=user.id, **data)
    session.add(it)

    # a live conversation counts as contact
    if it.direction == "inbound" or it.outcome in LIVE_OUTCOMES:
        lead.last_contact = it.timestamp
        session.add(lead)

    session.commit()
    session.refresh(it)
    return it
