# crm/routers/deliveries.py
import logging
import secrets
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlmodel import Session, select

from crm.db import get_session
from crm.deps import require_operator, require_permission
from crm.models import Delivery, Lead, User
from crm.schemas import DeliveryIn, DeliveryStatusIn

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["deliveries"])


def _new_token() -> str:
    return secrets.token_urlsafe(9)


def _public_lead(lead: Optional[Lead]) -> dict:
    if lead is None:
        return {}
    return {
        "full_name": lead.full_name,
        "phone": lead.phone,
        "city": lead.city,
        "property_type": lead.property_type,
        "estimated_price": lead.estimated_price,
        "timeline": lead.timeline,
        "intention": lead.intention,
    }


def _by_token_or_404(session: Session, token: str) -> Delivery:
    d = session.exec(select(Delivery).where(Delivery.token == token)).first()
    if not d:
        raise HTTPException(status_code=404, detail="Delivery not found")
    return d


@router.get("/deliveries", response_model=List[Delivery])
def list_deliveries(
    agent_id: Optional[int] = Query(None, alias="agentId"),
    session: Session = Depends(get_session),
    user: User = Depends(require_operator),
):
    q = select(Delivery).order_by(Delivery.created_at.desc())
    if agent_id is not None:
        q = q.where(Delivery.agent_id == agent_id)
    return session.exec(q).all()


@router.post("/deliveries", status_code=status.HTTP_201_CREATED)
def create_delivery(
    payload: DeliveryIn,
    session: Session = Depends(get_session),
    user: User = Depends(require_permission("create_deliveries")),
):
    if not session.get(Lead, payload.lead_id):
        raise HTTPException(status_code=404, detail="Lead not found")
    agent = session.get(User, payload.agent_id)
    if not agent or agent.role not in ("agent", "admin"):
        raise HTTPException(status_code=404, detail="Agent not found")

    token = _new_token()
    d = Delivery(
        lead_id=payload.lead_id,
        agent_id=agent.id,
        price=payload.price,
        token=token,
        delivery_url=f"/delivery/{token}",
        pdf_path=f"/pdfs/delivery-{token}.pdf",
    )
    session.add(d)
    session.commit()
    session.refresh(d)
    log.info("Delivery %s created for lead %s -> agent %s", d.id, d.lead_id, d.agent_id)
    return {"delivery": d, "delivery_url": d.delivery_url, "pdf_url": d.pdf_path}


@router.put("/deliveries/{delivery_id}/status", response_model=Delivery)
def update_delivery_status(
    delivery_id: int,
    payload: DeliveryStatusIn,
    session: Session = Depends(get_session),
    user: User = Depends(require_operator),
):
    d = session.get(Delivery, delivery_id)
    if not d:
        raise HTTPException(status_code=404, detail="Delivery not found")
    d.status = payload.status
    session.add(d)
    session.commit()
    session.refresh(d)
    return d


# ---------- public (token) ----------

@router.get("/public/deliveries/{token}")
def public_delivery(token: str, session: Session = Depends(get_session)):
    d = _by_token_or_404(session, token)
    return {
        "id": d.id,
        "status": d.status,
        "price": d.price,
        "pdf_url": d.pdf_path,
        "created_at": d.created_at,
        "lead": _public_lead(session.get(Lead, d.lead_id)),
    }


@router.post("/public/deliveries/{token}/accept")
def accept_delivery(token: str, session: Session = Depends(get_session)):
    d = _by_token_or_404(session, token)
    if d.status == "rejected":
        raise HTTPException(status_code=409, detail="Delivery was rejected")
    if d.status != "accepted":
        d.status = "accepted"
        session.add(d)
        session.commit()
        session.refresh(d)
        log.info("Delivery %s accepted", d.id)
    return {"id": d.id, "status": d.status}
