# crm/routers/rules.py
import logging
from typing import List

from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlmodel import Session, select

from crm import config
from crm.db import get_session
from crm.deps import require_permission
from crm.models import Rule, RuleExecution, User
from crm.schemas import RuleIn, RuleUpdate
from crm.services.automation import AutomationRunner

log = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["automation"])

can_manage_automation = require_permission("manage_automation")


@router.get("/rules", response_model=List[Rule])
def list_rules(session: Session = Depends(get_session), user: User = Depends(can_manage_automation)):
    return session.exec(select(Rule).order_by(Rule.id)).all()


@router.post("/rules", response_model=Rule, status_code=status.HTTP_201_CREATED)
def create_rule(payload: RuleIn, session: Session = Depends(get_session), user: User = Depends(can_manage_automation)):
    rule = Rule(**payload.model_dump())
    session.add(rule)
    session.commit()
    session.refresh(rule)
    log.info("Rule %s (%s) created by %s", rule.id, rule.trigger, user.id)
    return rule


@router.put("/rules/{rule_id}", response_model=Rule)
def update_rule(
    rule_id: int,
    payload: RuleUpdate,
    session: Session = Depends(get_session),
    user: User = Depends(can_manage_automation),
):
    rule = session.get(Rule, rule_id)
    if not rule:
        raise HTTPException(status_code=404, detail="Rule not found")
    for k, v in payload.model_dump(exclude_unset=True, exclude_none=True).items():
        setattr(rule, k, v)
    session.add(rule)
    session.commit()
    session.refresh(rule)
    return rule


@router.post("/automation/run")
def run_automation(session: Session = Depends(get_session), user: User = Depends(can_manage_automation)):
    """Run one cycle now, in the request's session."""
    summary = AutomationRunner.for_session(session).run_cycle()
    log.info("Manual automation run by %s: %s", user.id, summary)
    return summary


@router.get("/automation/status")
def automation_status(
    request: Request,
    session: Session = Depends(get_session),
    user: User = Depends(can_manage_automation),
):
    runner = getattr(request.app.state, "runner", None)
    recent = session.exec(
        select(RuleExecution).order_by(RuleExecution.handled_at.desc(), RuleExecution.id.desc()).limit(20)
    ).all()
    return {
        "enabled": config.settings.AUTOMATION_ENABLED,
        "running": bool(runner and runner.is_running),
        "interval_seconds": config.settings.AUTOMATION_INTERVAL_SECONDS,
        "last_run_at": runner.last_run_at if runner else None,
        "last_summary": runner.last_summary if runner else None,
        "recent_executions": recent,
    }
