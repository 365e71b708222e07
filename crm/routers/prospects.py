# crm/routers/prospects.py
import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Response, UploadFile, status
from fastapi.responses import StreamingResponse
from sqlmodel import Session, select

from crm.db import get_session
from crm.deps import get_current_user
from crm.models import Prospect, User, utcnow
from crm.schemas import ProspectIn, ProspectUpdate
from crm.services import exports, ics
from crm.services.scoring import score_prospect
from crm.utils.phone import normalize_phone

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api/prospects", tags=["prospects"])

NON_NULL_FIELDS = {"budget", "estimated_price", "fee_rate", "exclusive", "consent", "status"}


def visible_prospects(session: Session, user: User, agent_id: Optional[int] = None) -> List[Prospect]:
    """Agents only ever see their own rows; operators and admins may filter by agent."""
    q = select(Prospect).order_by(Prospect.created_at.desc())
    if user.role == "agent":
        q = q.where(Prospect.agent_id == user.id)
    elif agent_id is not None:
        q = q.where(Prospect.agent_id == agent_id)
    return list(session.exec(q).all())


def get_prospect_or_404(session: Session, prospect_id: int, user: User) -> Prospect:
    p = session.get(Prospect, prospect_id)
    # another agent's prospect reads as missing
    if not p or (user.role == "agent" and p.agent_id != user.id):
        raise HTTPException(status_code=404, detail="Prospect not found")
    return p


def _clean_phone(raw: Optional[str]) -> Optional[str]:
    if not raw:
        return raw
    return normalize_phone(raw) or raw.strip()


@router.get("", response_model=List[Prospect])
def list_prospects(
    agent_id: Optional[int] = Query(None, alias="agentId"),
    session: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    return visible_prospects(session, user, agent_id)


@router.post("", response_model=Prospect, status_code=status.HTTP_201_CREATED)
def create_prospect(
    payload: ProspectIn,
    session: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    data = payload.model_dump(exclude_none=True)
    data["phone"] = _clean_phone(data.get("phone"))
    if user.role == "agent" or not data.get("agent_id"):
        data["agent_id"] = user.id

    p = Prospect(**data)
    p.score = score_prospect(p)
    session.add(p)
    session.commit()
    session.refresh(p)
    log.info("Prospect %s created by user %s (score=%s)", p.id, user.id, p.score)
    return p


@router.get("/export.csv")
def export_csv(
    agent_id: Optional[int] = Query(None, alias="agentId"),
    session: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    body = exports.prospects_to_csv(visible_prospects(session, user, agent_id))
    filename = f"prospects_{utcnow().strftime('%Y-%m-%d')}.csv"
    return StreamingResponse(
        iter([body]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/import", status_code=status.HTTP_201_CREATED)
async def import_csv(
    file: UploadFile = File(...),
    session: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    raw = await file.read()
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="CSV must be UTF-8 encoded")

    try:
        rows = exports.parse_prospects_csv(text)
    except exports.CsvImportError as e:
        raise HTTPException(status_code=400, detail=str(e))

    created = []
    for row in rows:
        if user.role == "agent" or not row.get("agent_id"):
            row["agent_id"] = user.id
        row["phone"] = _clean_phone(row.get("phone"))
        p = Prospect(**row)
        session.add(p)
        created.append(p)
    session.commit()

    log.info("Imported %s prospects for user %s", len(created), user.id)
    return {"imported": len(created), "ids": [p.id for p in created]}


@router.get("/{prospect_id}", response_model=Prospect)
def get_prospect(
    prospect_id: int,
    session: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    return get_prospect_or_404(session, prospect_id, user)


@router.put("/{prospect_id}", response_model=Prospect)
def update_prospect(
    prospect_id: int,
    payload: ProspectUpdate,
    session: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    p = get_prospect_or_404(session, prospect_id, user)
    changes = {
        k: v for k, v in payload.model_dump(exclude_unset=True).items()
        if v is not None or k not in NON_NULL_FIELDS
    }
    if user.role == "agent":
        changes.pop("agent_id", None)
    if "phone" in changes:
        changes["phone"] = _clean_phone(changes["phone"])

    for k, v in changes.items():
        setattr(p, k, v)
    # score always follows the merged record
    p.score = score_prospect(p)

    session.add(p)
    session.commit()
    session.refresh(p)
    return p


@router.delete("/{prospect_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_prospect(
    prospect_id: int,
    session: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    p = get_prospect_or_404(session, prospect_id, user)
    session.delete(p)
    session.commit()
    log.info("Prospect %s deleted by user %s", prospect_id, user.id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{prospect_id}/ics")
def prospect_ics(
    prospect_id: int,
    session: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    p = get_prospect_or_404(session, prospect_id, user)
    return Response(
        content=ics.prospect_meeting_ics(p),
        media_type="text/calendar",
        headers={"Content-Disposition": f'attachment; filename="RDV_{p.id}.ics"'},
    )
