# crm/routers/templates.py
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlmodel import Session, select

from crm.db import get_session
from crm.deps import require_operator
from crm.models import Template, User
from crm.schemas import TemplateIn, TemplateUpdate

router = APIRouter(prefix="/api/templates", tags=["templates"])


@router.get("", response_model=List[Template])
def list_templates(
    type: Optional[str] = Query(None),
    session: Session = Depends(get_session),
    user: User = Depends(require_operator),
):
    q = select(Template).order_by(Template.name)
    if type:
        q = q.where(Template.type == type)
    return session.exec(q).all()


@router.post("", response_model=Template, status_code=status.HTTP_201_CREATED)
def create_template(payload: TemplateIn, session: Session = Depends(get_session), user: User = Depends(require_operator)):
    t = Template(**payload.model_dump())
    session.add(t)
    session.commit()
    session.refresh(t)
    return t


@router.put("/{template_id}", response_model=Template)
def update_template(
    template_id: int,
    payload: TemplateUpdate,
    session: Session = Depends(get_session),
    user: User = Depends(require_operator),
):
    t = session.get(Template, template_id)
    if not t:
        raise HTTPException(status_code=404, detail="Template not found")
    for k, v in payload.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(t, k, v)
    session.add(t)
    session.commit()
    session.refresh(t)
    return t
