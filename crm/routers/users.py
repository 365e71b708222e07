# crm/routers/users.py
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlmodel import Session, select

from crm.db import get_session
from crm.deps import require_operator
from crm.models import User
from crm.schemas import UserOut
from crm.services import kpi

router = APIRouter(prefix="/api", tags=["users"])


@router.get("/users", response_model=List[UserOut])
def list_users(
    role: Optional[str] = Query(None),
    session: Session = Depends(get_session),
    user: User = Depends(require_operator),
):
    q = select(User).where(User.is_active == True).order_by(User.name)  # noqa: E712
    if role:
        q = q.where(User.role == role)
    return [UserOut.model_validate(u, from_attributes=True) for u in session.exec(q).all()]


@router.get("/operator/stats")
def operator_stats(
    days: int = Query(30, alias="range"),
    session: Session = Depends(get_session),
    user: User = Depends(require_operator),
):
    return kpi.operator_stats(session, user.id, days=days)
