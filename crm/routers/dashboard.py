# crm/routers/dashboard.py
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response
from sqlmodel import Session

from crm.db import get_session
from crm.deps import get_current_user
from crm.models import User, utcnow
from crm.routers.prospects import visible_prospects
from crm.services import exports, kpi

router = APIRouter(prefix="/api", tags=["dashboard"])


@router.get("/dashboard/kpi")
def dashboard_kpi(
    agent_id: Optional[int] = Query(None, alias="agentId"),
    session: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    return kpi.compute_kpi(visible_prospects(session, user, agent_id))


@router.get("/dashboard/opportunities")
def dashboard_opportunities(
    agent_id: Optional[int] = Query(None, alias="agentId"),
    session: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    return kpi.opportunities(visible_prospects(session, user, agent_id))


@router.get("/dashboard/pipeline")
def dashboard_pipeline(
    agent_id: Optional[int] = Query(None, alias="agentId"),
    session: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    board = kpi.pipeline(visible_prospects(session, user, agent_id))
    return [{"status": status, "count": len(rows), "prospects": rows} for status, rows in board.items()]


@router.get("/dashboard/activity")
def dashboard_activity(
    agent_id: Optional[int] = Query(None, alias="agentId"),
    session: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    return kpi.activity(visible_prospects(session, user, agent_id))


@router.get("/dashboard/duplicates")
def dashboard_duplicates(
    session: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    groups = kpi.duplicate_prospect_groups(visible_prospects(session, user))
    return [{"phone": g[0].phone, "prospects": g} for g in groups]


@router.get("/reports/pdf")
def report_pdf(
    agent_id: Optional[int] = Query(None, alias="agentId"),
    session: Session = Depends(get_session),
    user: User = Depends(get_current_user),
):
    pdf = exports.prospects_report_pdf(visible_prospects(session, user, agent_id))
    filename = f"rapport_crm_{utcnow().strftime('%Y-%m-%d')}.pdf"
    return Response(
        content=pdf,
        media_type="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
