# crm/schemas.py
from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from crm.models import LEAD_STATUSES, PROSPECT_STATUSES
from crm.utils.dates import parse_dt

SELF_REGISTER_ROLES = ("agent", "operator")
INTERACTION_KINDS = ("call", "sms", "email", "meeting", "reminder")
DELIVERY_STATUSES = ("pending", "sent", "accepted", "rejected")


# ---------- auth ----------

class RegisterIn(BaseModel):
    username: str = Field(min_length=3)
    password: str = Field(min_length=6)
    name: str
    email: EmailStr
    role: str = "agent"

    @field_validator("role")
    @classmethod
    def check_role(cls, v: str) -> str:
        if v not in SELF_REGISTER_ROLES:
            raise ValueError(f"role must be one of {', '.join(SELF_REGISTER_ROLES)}")
        return v


class LoginIn(BaseModel):
    username: str
    password: str


class UserOut(BaseModel):
    id: int
    username: str
    name: str
    email: str
    role: str
    is_active: bool


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserOut


# ---------- prospects ----------

class ProspectBase(BaseModel):
    full_name: str | None = None
    phone: str | None = None
    email: EmailStr | None = None
    prospect_type: str | None = None
    city: str | None = None
    property_type: str | None = None
    budget: int | None = None
    estimated_price: int | None = None
    fee_rate: float | None = None
    exclusive: bool | None = None
    motivation: str | None = None
    timeline: str | None = None
    intention: str | None = None
    source: str | None = None
    consent: bool | None = None
    status: str | None = None
    last_contact: datetime | None = None
    next_action: datetime | None = None
    agent_id: int | None = None
    address: str | None = None
    notes: str | None = None

    @field_validator("last_contact", "next_action", mode="before")
    @classmethod
    def check_dates(cls, v):
        return parse_dt(v)

    @field_validator("email", mode="before")
    @classmethod
    def check_blank_email(cls, v):
        return v or None

    @field_validator("status")
    @classmethod
    def check_status(cls, v):
        if v is not None and v not in PROSPECT_STATUSES:
            raise ValueError(f"unknown status {v!r}")
        return v


class ProspectIn(ProspectBase):
    full_name: str = Field(min_length=1)


class ProspectUpdate(ProspectBase):
    pass


# ---------- leads ----------

class LeadBase(BaseModel):
    full_name: str | None = None
    phone: str | None = None
    email: EmailStr | None = None
    prospect_type: str | None = None
    city: str | None = None
    property_type: str | None = None
    budget: int | None = None
    estimated_price: int | None = None
    intention: str | None = None
    timeline: str | None = None
    motivation: str | None = None
    source: str | None = None
    consent: bool | None = None
    status: str | None = None
    is_hot_lead: bool | None = None
    bad_number: bool | None = None
    do_not_contact: bool | None = None
    assigned_agent_id: int | None = None
    next_action: datetime | None = None
    cost: float | None = None
    notes: str | None = None

    @field_validator("next_action", mode="before")
    @classmethod
    def check_dates(cls, v):
        return parse_dt(v)

    @field_validator("email", mode="before")
    @classmethod
    def check_blank_email(cls, v):
        return v or None

    @field_validator("status")
    @classmethod
    def check_status(cls, v):
        if v is not None and v not in LEAD_STATUSES:
            raise ValueError(f"unknown status {v!r}")
        return v


class LeadIn(LeadBase):
    full_name: str = Field(min_length=1)


class LeadUpdate(LeadBase):
    pass


class AssignIn(BaseModel):
    agent_id: int


class OutcomeIn(BaseModel):
    outcome: str
    notes: str | None = None
    start_time: datetime | None = None
    end_time: datetime | None = None
    location: str | None = None

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def check_dates(cls, v):
        return parse_dt(v)

    @field_validator("outcome")
    @classmethod
    def check_outcome(cls, v: str) -> str:
        # unknown outcomes are rejected by process_outcome with a 400
        return (v or "").strip().lower()


# ---------- interactions / appointments ----------

class InteractionIn(BaseModel):
    lead_id: int
    kind: str
    direction: str = "outbound"
    outcome: str | None = None
    summary: str | None = None
    timestamp: datetime | None = None

    @field_validator("timestamp", mode="before")
    @classmethod
    def check_dates(cls, v):
        return parse_dt(v)

    @field_validator("kind")
    @classmethod
    def check_kind(cls, v: str) -> str:
        if v not in INTERACTION_KINDS:
            raise ValueError(f"kind must be one of {', '.join(INTERACTION_KINDS)}")
        return v

    @field_validator("direction")
    @classmethod
    def check_direction(cls, v: str) -> str:
        if v not in ("inbound", "outbound"):
            raise ValueError("direction must be inbound or outbound")
        return v


class AppointmentIn(BaseModel):
    lead_id: int
    start_time: datetime
    end_time: datetime | None = None
    location: str | None = None
    status: str = "scheduled"
    notes: str | None = None

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def check_dates(cls, v):
        return parse_dt(v)


class AppointmentUpdate(BaseModel):
    start_time: datetime | None = None
    end_time: datetime | None = None
    location: str | None = None
    status: str | None = None
    notes: str | None = None

    @field_validator("start_time", "end_time", mode="before")
    @classmethod
    def check_dates(cls, v):
        return parse_dt(v)


# ---------- deliveries / payments ----------

class DeliveryIn(BaseModel):
    lead_id: int
    agent_id: int
    price: float = 0


class DeliveryStatusIn(BaseModel):
    status: str

    @field_validator("status")
    @classmethod
    def check_status(cls, v: str) -> str:
        if v not in DELIVERY_STATUSES:
            raise ValueError(f"status must be one of {', '.join(DELIVERY_STATUSES)}")
        return v


class PaymentIn(BaseModel):
    agent_id: int
    delivery_id: int | None = None
    amount: float = Field(ge=0)
    method: str | None = None
    status: str = "pending"


# ---------- rules / templates ----------

def _check_rule(trigger: Optional[str], action: Optional[str]) -> None:
    from crm.services.automation import DEFAULT_ACTIONS, parse_actions

    if trigger is not None and trigger not in DEFAULT_ACTIONS:
        raise ValueError(f"unknown trigger {trigger!r}")
    if action:
        parse_actions(action)  # raises ValueError


class RuleIn(BaseModel):
    name: str = Field(min_length=1)
    trigger: str
    action: str = ""
    payload: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True

    @field_validator("trigger")
    @classmethod
    def check_trigger(cls, v: str) -> str:
        _check_rule(v, None)
        return v

    @field_validator("action")
    @classmethod
    def check_action(cls, v: str) -> str:
        _check_rule(None, v)
        return v


class RuleUpdate(BaseModel):
    name: str | None = None
    trigger: str | None = None
    action: str | None = None
    payload: Dict[str, Any] | None = None
    is_active: bool | None = None

    @field_validator("trigger")
    @classmethod
    def check_trigger(cls, v):
        _check_rule(v, None)
        return v

    @field_validator("action")
    @classmethod
    def check_action(cls, v):
        _check_rule(None, v)
        return v


class TemplateIn(BaseModel):
    name: str = Field(min_length=1)
    type: str = "sms"
    body: str = Field(min_length=1)
    is_active: bool = True


class TemplateUpdate(BaseModel):
    name: str | None = None
    type: str | None = None
    body: str | None = None
    is_active: bool | None = None
