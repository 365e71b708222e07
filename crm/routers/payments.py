# crm/routers/payments.py
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlmodel import Session, select

from crm.db import get_session
from crm.deps import require_operator, require_permission
from crm.models import Delivery, Payment, User
from crm.schemas import PaymentIn

router = APIRouter(prefix="/api/payments", tags=["payments"])


@router.get("", response_model=List[Payment])
def list_payments(
    agent_id: Optional[int] = Query(None, alias="agentId"),
    session: Session = Depends(get_session),
    user: User = Depends(require_permission("view_payments")),
):
    q = select(Payment).order_by(Payment.created_at.desc())
    if agent_id is not None:
        q = q.where(Payment.agent_id == agent_id)
    return session.exec(q).all()


@router.post("", response_model=Payment, status_code=status.HTTP_201_CREATED)
def create_payment(
    payload: PaymentIn,
    session: Session = Depends(get_session),
    user: User = Depends(require_operator),
):
    if not session.get(User, payload.agent_id):
        raise HTTPException(status_code=404, detail="Agent not found")
    if payload.delivery_id is not None and not session.get(Delivery, payload.delivery_id):
        raise HTTPException(status_code=404, detail="Delivery not found")

    p = Payment(**payload.model_dump())
    session.add(p)
    session.commit()
    session.refresh(p)
    return p
