# crm/models.py
from datetime import datetime, timezone
from typing import Optional, Any, Dict

from sqlalchemy import UniqueConstraint, JSON, Column
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    # stored naive: SQLite drops tzinfo, so everything is kept as naive UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ---------- Pipeline vocabularies ----------

PROSPECT_STATUSES = [
    "Nouveau",
    "Contacté",
    "Qualifié",
    "RDV fixé",
    "Mandat signé",
    "Gagné",
    "Perdu",
    "Pas de réponse",
]

LEAD_STATUSES = [
    "New",
    "Contacted",
    "Follow-up",
    "Booked",
    "Sent to Agent",
    "Sold",
    "Bad Contact",
    "Disqualified",
    "Do Not Contact",
]

ROLES = ("admin", "operator", "agent")


# ---------- Core tables ----------


class User(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    username: str = Field(index=True, unique=True)
    password_hash: str
    name: str
    email: str
    role: str = Field(default="agent", index=True)  # admin | operator | agent
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow)


class Prospect(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=utcnow, index=True)

    full_name: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    prospect_type: Optional[str] = None  # Vendeur | Acheteur
    city: Optional[str] = None
    property_type: Optional[str] = None

    # qualification
    budget: int = Field(default=0)
    estimated_price: int = Field(default=0)
    fee_rate: float = Field(default=0.04)
    exclusive: bool = Field(default=False)
    motivation: Optional[str] = None
    timeline: Optional[str] = None
    intention: Optional[str] = None
    source: Optional[str] = None
    consent: bool = Field(default=False)

    status: str = Field(default="Nouveau", index=True)
    last_contact: Optional[datetime] = None
    next_action: Optional[datetime] = None
    agent_id: Optional[int] = Field(default=None, foreign_key="user.id", index=True)
    address: Optional[str] = None
    notes: Optional[str] = None
    score: int = Field(default=50)


class Lead(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    created_at: datetime = Field(default_factory=utcnow, index=True)

    full_name: Optional[str] = None
    phone: Optional[str] = Field(default=None, index=True)
    email: Optional[str] = Field(default=None, index=True)
    prospect_type: Optional[str] = None
    city: Optional[str] = None
    property_type: Optional[str] = None
    budget: int = Field(default=0)
    estimated_price: int = Field(default=0)
    intention: Optional[str] = None
    timeline: Optional[str] = None
    motivation: Optional[str] = None
    source: Optional[str] = None
    consent: bool = Field(default=False)

    status: str = Field(default="New", index=True)
    score: int = Field(default=50)
    is_hot_lead: bool = Field(default=False)

    # contact hygiene
    bad_number: bool = Field(default=False)
    do_not_contact: bool = Field(default=False)

    owner_user_id: Optional[int] = Field(default=None, foreign_key="user.id", index=True)
    assigned_agent_id: Optional[int] = Field(default=None, foreign_key="user.id", index=True)
    last_contact: Optional[datetime] = None
    next_action: Optional[datetime] = None
    cost: float = Field(default=0)
    notes: Optional[str] = None


class Interaction(SQLModel, table=True):
    """Append-only contact log. Never updated once written."""
    id: Optional[int] = Field(default=None, primary_key=True)
    lead_id: int = Field(foreign_key="lead.id", index=True)
    user_id: Optional[int] = Field(default=None, foreign_key="user.id")  # None = automation
    kind: str = Field(index=True)             # call | sms | email | meeting | reminder
    direction: str = Field(default="outbound")  # inbound | outbound
    outcome: Optional[str] = Field(default=None, index=True)
    template: Optional[str] = None            # SMS template code for automated sends
    summary: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow, index=True)


class Appointment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    lead_id: int = Field(foreign_key="lead.id", index=True)
    start_time: datetime = Field(index=True)
    end_time: datetime
    location: Optional[str] = None
    ics_uid: Optional[str] = None
    status: str = Field(default="scheduled")
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)


class Delivery(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    lead_id: int = Field(foreign_key="lead.id", index=True)
    agent_id: int = Field(foreign_key="user.id", index=True)
    price: float = Field(default=0)
    status: str = Field(default="pending")  # pending | sent | accepted | rejected
    token: Optional[str] = Field(default=None, index=True, unique=True)
    delivery_url: Optional[str] = None
    pdf_path: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow, index=True)


class Payment(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    agent_id: int = Field(foreign_key="user.id", index=True)
    delivery_id: Optional[int] = Field(default=None, foreign_key="delivery.id")
    amount: float = Field(default=0)
    method: Optional[str] = None
    status: str = Field(default="pending")
    created_at: datetime = Field(default_factory=utcnow, index=True)


class Rule(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    trigger: str = Field(index=True)
    action: str = Field(default="")  # e.g. "send_sms:A,create_task:2d"
    payload: Dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    is_active: bool = Field(default=True, index=True)
    created_at: datetime = Field(default_factory=utcnow)


class Template(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    type: str = Field(default="sms", index=True)  # sms | email
    body: str
    is_active: bool = Field(default=True)
    created_at: datetime = Field(default_factory=utcnow)


# ---------- Idempotency marker for the automation runner ----------


class RuleExecution(SQLModel, table=True):
    __tablename__ = "rule_execution"
    __table_args__ = (
        UniqueConstraint("rule_id", "subject_type", "subject_id", name="uq_rule_subject"),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    rule_id: int = Field(foreign_key="rule.id", index=True)
    subject_type: str  # interaction | lead | delivery
    subject_id: int = Field(index=True)
    lead_id: Optional[int] = Field(default=None, index=True)
    outcome: str = Field(default="done")  # done | skipped
    handled_at: datetime = Field(default_factory=utcnow)
