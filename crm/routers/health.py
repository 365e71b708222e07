# crm/routers/health.py
import logging

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlmodel import Session

from crm import config
from crm.db import get_session

log = logging.getLogger(__name__)

router = APIRouter(tags=["health"])


@router.get("/health")
def health(session: Session = Depends(get_session)):
    db_ok = True
    try:
        session.exec(text("SELECT 1"))
    except Exception as e:
        log.error("Health check DB error: %s", e)
        db_ok = False
    return {"ok": db_ok, "env": config.settings.ENV, "db": "ok" if db_ok else "error"}
