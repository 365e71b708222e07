# crm/main.py
import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlmodel import Session

from crm import config
from crm.alerts import format_error_alert, send_error_alert
from crm.db import create_db_and_tables, engine
from crm.logging_config import setup_logging
from crm.seed import seed_defaults, seed_demo_data
from crm.services.automation import AutomationRunner

# Routers
from crm.routers.appointments import router as appointments_router
from crm.routers.auth import router as auth_router
from crm.routers.dashboard import router as dashboard_router
from crm.routers.deliveries import router as deliveries_router
from crm.routers.health import router as health_router
from crm.routers.interactions import router as interactions_router
from crm.routers.leads import router as leads_router
from crm.routers.payments import router as payments_router
from crm.routers.prospects import router as prospects_router
from crm.routers.rules import router as rules_router
from crm.routers.templates import router as templates_router
from crm.routers.users import router as users_router

log = logging.getLogger(__name__)

app = FastAPI(title="Redweyne CRM", version="0.1.0")
app.state.runner = None


# ---------- Errors ----------
@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    log.exception("Unhandled error on %s %s", request.method, request.url.path)
    send_error_alert(format_error_alert(request.method, request.url.path, exc))
    return JSONResponse({"detail": "Internal server error"}, status_code=500)


# ---------- Routers ----------
app.include_router(health_router)
app.include_router(auth_router)
app.include_router(prospects_router)
app.include_router(dashboard_router)
app.include_router(leads_router)
app.include_router(interactions_router)
app.include_router(appointments_router)
app.include_router(deliveries_router)
app.include_router(payments_router)
app.include_router(rules_router)
app.include_router(templates_router)
app.include_router(users_router)


@app.get("/")
def root():
    return {"ok": True, "msg": "root alive"}


# ---------- Startup / shutdown ----------
@app.on_event("startup")
def on_startup():
    setup_logging()
    create_db_and_tables()

    with Session(engine) as session:
        seed_defaults(session)
        if config.settings.SEED_DEMO_DATA:
            seed_demo_data(session)

    if config.settings.AUTOMATION_ENABLED:
        runner = AutomationRunner()
        runner.start()
        app.state.runner = runner
    else:
        log.info("Automation runner disabled (AUTOMATION_ENABLED=false)")


@app.on_event("shutdown")
def on_shutdown():
    runner = app.state.runner
    if runner is not None:
        runner.stop()
        app.state.runner = None


def run() -> None:
    """Console entry point: serve the app on HOST:PORT."""
    import uvicorn

    # log_config=None keeps the dictConfig installed at startup
    uvicorn.run("crm.main:app", host=config.settings.HOST, port=config.settings.PORT, log_config=None)


if __name__ == "__main__":
    run()
