# crm/services/kpi.py
"""
Dashboard figures for agents (prospects) and operators (leads).

Everything here reads rows already loaded by the routers, except
operator_stats which needs interactions, deliveries and payments too.
"""
from datetime import datetime, timedelta
from functools import cmp_to_key
from typing import Any, Dict, Iterable, List, Optional, Sequence

from sqlmodel import Session, select

from crm import config
from crm.models import (
    Delivery,
    Interaction,
    Lead,
    Payment,
    Prospect,
    PROSPECT_STATUSES,
    utcnow,
)
from crm.services.scoring import expected_value
from crm.utils.dates import local_date
from crm.utils.phone import phone_key

PIPELINE_VALUE_STATUSES = ("Qualifié", "RDV fixé", "Mandat signé", "Gagné")
OPPORTUNITY_STATUSES = ("RDV fixé", "Mandat signé")

SOURCE_WEIGHTS = {"facebook": 5, "google": 4, "direct": 3, "referral": 2}


def compute_kpi(prospects: Sequence[Prospect], now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    today = local_date(now)
    total = len(prospects)

    created_today = sum(1 for p in prospects if p.created_at and local_date(p.created_at) == today)
    rdv_count = sum(1 for p in prospects if p.status == "RDV fixé")
    won_count = sum(1 for p in prospects if p.status == "Gagné")
    conversion = round(won_count / total * 100) if total else 0

    # response time: first contact minus creation, positive deltas only
    deltas = [
        (p.last_contact - p.created_at).total_seconds()
        for p in prospects
        if p.last_contact and p.created_at and p.last_contact > p.created_at
    ]
    sla_minutes = round(sum(deltas) / len(deltas) / 60) if deltas else 0

    pipeline_value = sum(expected_value(p) for p in prospects if p.status in PIPELINE_VALUE_STATUSES)
    in_7d = now + timedelta(days=7)
    rdv_7d = sum(
        1 for p in prospects
        if p.status == "RDV fixé" and p.next_action and p.next_action <= in_7d
    )

    return {
        "created_today": created_today,
        "rdv_count": rdv_count,
        "won_count": won_count,
        "conversion_rate": conversion,
        "sla_avg_minutes": sla_minutes,
        "pipeline_value": round(pipeline_value, 2),
        "exclusives": sum(1 for p in prospects if p.exclusive),
        "rdv_7d": rdv_7d,
    }


def opportunities(prospects: Iterable[Prospect], now: Optional[datetime] = None) -> List[Dict[str, Any]]:
    now = now or utcnow()
    threshold = config.settings.OPPORTUNITY_MIN_VALUE_EUR
    in_3d = now + timedelta(days=3)

    out = []
    for p in prospects:
        value = expected_value(p)
        if (
            value >= threshold
            or (p.next_action is not None and p.next_action <= in_3d)
            or p.status in OPPORTUNITY_STATUSES
        ):
            out.append({**p.model_dump(), "expected_value": round(value, 2)})
    out.sort(key=lambda row: (row["expected_value"], row["score"] or 0), reverse=True)
    return out


def pipeline(prospects: Iterable[Prospect]) -> Dict[str, List[Prospect]]:
    board: Dict[str, List[Prospect]] = {s: [] for s in PROSPECT_STATUSES}
    for p in prospects:
        board.setdefault(p.status, []).append(p)
    return board


def activity(prospects: Sequence[Prospect], now: Optional[datetime] = None, days: int = 7) -> List[Dict[str, Any]]:
    now = now or utcnow()
    today = local_date(now)
    created_by_day: Dict[Any, int] = {}
    for p in prospects:
        if p.created_at:
            d = local_date(p.created_at)
            created_by_day[d] = created_by_day.get(d, 0) + 1

    contacted = sum(1 for p in prospects if p.status == "Contacté")
    rdv = sum(1 for p in prospects if p.status == "RDV fixé")
    buckets = []
    for i in range(days - 1, -1, -1):
        d = today - timedelta(days=i)
        buckets.append({
            "date": d.isoformat(),
            "created": created_by_day.get(d, 0),
            "contacted": contacted,
            "rdv": rdv,
        })
    return buckets


def top_by_value(prospects: Iterable[Prospect], limit: int = 10) -> List[Prospect]:
    return sorted(prospects, key=expected_value, reverse=True)[:limit]


# ---------- operator queue ----------

def _hot_priority(lead: Lead) -> int:
    return 100 if lead.is_hot_lead else (lead.score or 50)


def _source_weight(lead: Lead) -> int:
    return SOURCE_WEIGHTS.get((lead.source or "").strip().lower(), 1)


def queue_order(leads: Sequence[Lead]) -> List[Lead]:
    """
    Hot priority first, then older leads when the age gap exceeds an hour,
    then source weight.
    """
    def cmp(a: Lead, b: Lead) -> int:
        pa, pb = _hot_priority(a), _hot_priority(b)
        if pa != pb:
            return pb - pa
        gap = (a.created_at - b.created_at).total_seconds()
        if abs(gap) > 3600:
            return -1 if gap < 0 else 1
        return _source_weight(b) - _source_weight(a)

    return sorted(leads, key=cmp_to_key(cmp))


def find_duplicate_leads(session: Session, phone: Optional[str] = None, email: Optional[str] = None) -> List[Lead]:
    if not phone and not email:
        return []
    key = phone_key(phone) if phone else None
    email_l = (email or "").strip().lower() or None

    out = []
    for lead in session.exec(select(Lead).order_by(Lead.created_at)).all():
        if key and lead.phone and phone_key(lead.phone) == key:
            out.append(lead)
        elif email_l and (lead.email or "").strip().lower() == email_l:
            out.append(lead)
    return out


def duplicate_prospect_groups(prospects: Iterable[Prospect]) -> List[List[Prospect]]:
    """Prospects sharing a normalized phone number, groups of two or more."""
    groups: Dict[str, List[Prospect]] = {}
    for p in prospects:
        key = phone_key(p.phone)
        if key:
            groups.setdefault(key, []).append(p)
    return [g for g in groups.values() if len(g) > 1]


# ---------- operator stats ----------

def operator_stats(session: Session, operator_id: int, days: int = 30, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = now or utcnow()
    days = 7 if days == 7 else 30
    since = now - timedelta(days=days)

    calls = session.exec(
        select(Interaction)
        .where(Interaction.user_id == operator_id)
        .where(Interaction.kind == "call")
        .where(Interaction.timestamp >= since)
    ).all()
    leads = session.exec(
        select(Lead)
        .where(Lead.owner_user_id == operator_id)
        .where(Lead.created_at >= since)
    ).all()
    lead_ids = [l.id for l in leads]

    deliveries = []
    if lead_ids:
        deliveries = session.exec(
            select(Delivery)
            .where(Delivery.lead_id.in_(lead_ids))
            .where(Delivery.created_at >= since)
        ).all()
    delivery_ids = [d.id for d in deliveries]

    collected = 0.0
    if delivery_ids:
        collected = sum(
            p.amount for p in session.exec(
                select(Payment)
                .where(Payment.delivery_id.in_(delivery_ids))
                .where(Payment.status == "paid")
            ).all()
        )

    def count(status: str) -> int:
        return sum(1 for l in leads if l.status == status)

    return {
        "range": days,
        "activity": {
            "calls": len(calls),
            "connects": sum(1 for c in calls if c.outcome in ("connected", "booked", "not_seller")),
            "booked": sum(1 for c in calls if c.outcome == "booked"),
            "deliveries": len(deliveries),
            "collected": collected,
        },
        "funnel": {
            "created": len(leads),
            "contacted": count("Contacted"),
            "booked": count("Booked"),
            "delivered": count("Sent to Agent"),
            "won": count("Sold"),
        },
        "roi": {
            "revenue": float(sum(l.estimated_price or 0 for l in leads if l.status == "Sold")),
            "cost": float(sum(l.cost or 0 for l in leads)),
        },
    }
