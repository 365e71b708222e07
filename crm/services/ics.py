# crm/services/ics.py
"""Minimal RFC 5545 writer for single-event calendars."""
from datetime import datetime, timedelta
from typing import Any, Optional

from crm.models import utcnow

PRODID = "-//Redweyne//CRM//FR"


def _escape(text: Optional[str]) -> str:
    s = str(text or "")
    return (
        s.replace("\\", "\\\\")
        .replace(";", "\\;")
        .replace(",", "\\,")
        .replace("\r\n", "\\n")
        .replace("\n", "\\n")
    )


def _fmt(dt: datetime) -> str:
    # naive datetimes are UTC throughout the app
    return dt.strftime("%Y%m%dT%H%M%SZ")


def build_event(
    uid: str,
    start: datetime,
    end: datetime,
    summary: str,
    location: Optional[str] = None,
    description: Optional[str] = None,
    stamp: Optional[datetime] = None,
) -> str:
    lines = [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        f"PRODID:{PRODID}",
        "CALSCALE:GREGORIAN",
        "METHOD:PUBLISH",
        "BEGIN:VEVENT",
        f"UID:{_escape(uid)}",
        f"DTSTAMP:{_fmt(stamp or utcnow())}",
        f"DTSTART:{_fmt(start)}",
        f"DTEND:{_fmt(end)}",
        f"SUMMARY:{_escape(summary)}",
        f"LOCATION:{_escape(location or 'À définir')}",
    ]
    if description:
        lines.append(f"DESCRIPTION:{_escape(description)}")
    lines += [
        "STATUS:CONFIRMED",
        "END:VEVENT",
        "END:VCALENDAR",
    ]
    return "\r\n".join(lines) + "\r\n"


def appointment_ics(appointment: Any, lead: Any = None) -> str:
    name = (getattr(lead, "full_name", None) or "").strip() or "prospect"
    phone = getattr(lead, "phone", None)
    desc_parts = [f"Prospect: {name}"]
    if phone:
        desc_parts.append(f"Téléphone: {phone}")
    if appointment.notes:
        desc_parts.append(appointment.notes)
    return build_event(
        uid=appointment.ics_uid or f"appointment-{appointment.id}@crm",
        start=appointment.start_time,
        end=appointment.end_time,
        summary=f"Rendez-vous avec {name}",
        location=appointment.location,
        description="\n".join(desc_parts),
    )


def prospect_meeting_ics(prospect: Any, now: Optional[datetime] = None) -> str:
    """Quick 30-minute meeting one hour from now."""
    now = now or utcnow()
    start = now + timedelta(hours=1)
    name = (prospect.full_name or "").strip() or "prospect"
    location = prospect.address or prospect.city or "Téléphone"
    return build_event(
        uid=f"prospect-{prospect.id}-{int(start.timestamp())}@crm",
        start=start,
        end=start + timedelta(minutes=30),
        summary=f"RDV - {name}",
        location=location,
        description=f"Téléphone: {prospect.phone or ''}\nIntention: {prospect.intention or ''}\nNotes: {prospect.notes or ''}",
        stamp=now,
    )
