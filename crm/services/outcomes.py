# crm/services/outcomes.py
"""
Call outcomes logged by operators from the lead queue.

Each outcome writes one `call` interaction and moves the lead; the planned
tasks returned to the caller describe what happens next (follow-up date,
appointment). SMS follow-ups are left to the automation rules so that a
no_answer / voicemail outcome is handled in exactly one place.
"""
import logging
import uuid
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import HTTPException
from sqlmodel import Session

from crm.models import Appointment, Interaction, Lead, User, utcnow

log = logging.getLogger(__name__)

FOLLOW_UP_DAYS = {"no_answer": 2, "voicemail": 1}
DEFAULT_MEETING_MINUTES = 60


def process_outcome(
    session: Session,
    lead: Lead,
    outcome: str,
    user: Optional[User],
    notes: Optional[str] = None,
    start_time: Optional[datetime] = None,
    end_time: Optional[datetime] = None,
    location: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    now = now or utcnow()
    tasks: List[Dict[str, Any]] = []
    appointment = None

    if outcome in FOLLOW_UP_DAYS:
        days = FOLLOW_UP_DAYS[outcome]
        lead.status = "Follow-up"
        lead.next_action = now + timedelta(days=days)
        tasks.append({"type": "follow_up", "due": lead.next_action.isoformat(), "days": days})
    elif outcome == "bad_number":
        lead.bad_number = True
        lead.status = "Bad Contact"
    elif outcome == "not_seller":
        lead.status = "Disqualified"
    elif outcome == "booked":
        lead.status = "Booked"
        lead.next_action = None
        if start_time is not None:
            appointment = Appointment(
                lead_id=lead.id,
                start_time=start_time,
                end_time=end_time or start_time + timedelta(minutes=DEFAULT_MEETING_MINUTES),
                location=location,
                ics_uid=f"{uuid.uuid4()}@crm",
                notes=notes,
            )
            session.add(appointment)
            tasks.append({"type": "appointment", "start": start_time.isoformat()})
        tasks.append({"type": "confirmation_sms"})
    elif outcome == "dnc":
        lead.do_not_contact = True
        lead.status = "Do Not Contact"
        lead.next_action = None
    elif outcome == "connected":
        lead.status = "Contacted"
    else:
        raise HTTPException(status_code=400, detail=f"Unknown outcome: {outcome}")

    lead.last_contact = now
    interaction = Interaction(
        lead_id=lead.id,
        user_id=user.id if user else None,
        kind="call",
        direction="outbound",
        outcome=outcome,
        summary=notes or f"Call outcome: {outcome}",
        timestamp=now,
    )
    session.add(lead)
    session.add(interaction)
    session.commit()
    session.refresh(lead)
    session.refresh(interaction)
    if appointment is not None:
        session.refresh(appointment)

    log.info("Lead %s outcome=%s -> status=%s", lead.id, outcome, lead.status)
    return {
        "lead": lead,
        "interaction": interaction,
        "appointment": appointment,
        "tasks": tasks,
    }
