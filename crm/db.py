from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine, Session
from pathlib import Path

from crm import config
from crm import models  # ensures tables are registered before create_all()

DATABASE_URL = config.settings.DATABASE_URL

# SQLite needs this connect arg and a real folder
connect_args = {"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {}
if DATABASE_URL.startswith("sqlite:///") and DATABASE_URL != "sqlite:///:memory:":
    Path(DATABASE_URL[len("sqlite:///"):]).parent.mkdir(parents=True, exist_ok=True)


def enable_sqlite_foreign_keys(target: Engine) -> Engine:
    """SQLite ignores REFERENCES unless PRAGMA foreign_keys is set per connection."""
    if target.dialect.name == "sqlite":
        @event.listens_for(target, "connect")
        def _fk_pragma(dbapi_conn, _record):
            cur = dbapi_conn.cursor()
            cur.execute("PRAGMA foreign_keys = ON")
            cur.close()
    return target


engine = enable_sqlite_foreign_keys(create_engine(DATABASE_URL, connect_args=connect_args))


def create_db_and_tables() -> None:
    SQLModel.metadata.create_all(engine)


def get_session():
    with Session(engine) as session:
        yield session


def session_factory() -> Session:
    """Plain session for code running outside a request (automation runner, scripts)."""
    return Session(engine)
