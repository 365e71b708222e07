# crm/services/sms.py
"""
Outbound SMS for lead follow-ups, booking confirmations and office alerts.

Everything goes through send_sms(to, body) -> bool: it never raises, so the
automation runner can log a failed send as an interaction and move on.
Twilio settings are read at call time; SMS_DRY_RUN (default on) only logs.
"""
import logging
import os
from typing import Any, Dict, Optional

from sqlmodel import Session, select
from twilio.rest import Client

from crm import config
from crm.models import Template
from crm.utils.phone import normalize_phone

log = logging.getLogger(__name__)

MAX_SMS_CHARS = 640  # four concatenated segments
TRUE_WORDS = ("1", "true", "yes", "y", "on")


def _setting(name: str) -> str:
    return (os.getenv(name) or getattr(config, name, "") or "").strip()


def is_dry_run() -> bool:
    raw = os.getenv("SMS_DRY_RUN")
    if raw is None:
        return bool(config.settings.SMS_DRY_RUN)
    return raw.strip().lower() in TRUE_WORDS


def fit_body(body: str) -> str:
    body = (body or "").strip()
    if len(body) <= MAX_SMS_CHARS:
        return body
    return body[: MAX_SMS_CHARS - 3].rstrip() + "..."


def _twilio() -> Client:
    # API key auth: Client(key_sid, key_secret, account_sid)
    key, secret, account = _setting("TWILIO_API_KEY"), _setting("TWILIO_AUTH_TOKEN"), _setting("TWILIO_ACCOUNT_SID")
    if not (key and secret and account):
        raise RuntimeError("Twilio credentials missing (TWILIO_API_KEY, TWILIO_AUTH_TOKEN, TWILIO_ACCOUNT_SID)")
    return Client(key, secret, account)


def _origin() -> Dict[str, str]:
    """Agency sender: the Messaging Service wins over a plain From number."""
    service = _setting("TWILIO_MESSAGING_SERVICE_SID")
    if service:
        return {"messaging_service_sid": service}
    number = _setting("TWILIO_FROM")
    if number:
        return {"from_": number}
    raise RuntimeError("No SMS sender configured (TWILIO_MESSAGING_SERVICE_SID or TWILIO_FROM)")


def send_sms(to: str, body: str) -> bool:
    phone = normalize_phone(to)
    if not phone:
        log.warning("SMS not sent: invalid phone %r", to)
        return False

    text = fit_body(body)
    if is_dry_run():
        log.info("[SMS DRY-RUN] to=%s chars=%s: %s", phone, len(text), text)
        return True

    try:
        msg = _twilio().messages.create(to=phone, body=text, **_origin())
    except Exception as e:
        log.error("SMS to %s failed: %s", phone, e)
        return False
    log.info("SMS sent to %s (sid=%s)", phone, msg.sid)
    return True


# ---------- templates ----------

DEFAULT_TEMPLATES = {
    "A": (
        "Bonjour {name}, nous n'avons pas pu vous joindre. "
        "Pouvez-vous nous rappeler au {agency_phone} ? Merci."
    ),
    "B": (
        "Bonjour {name}, nous avons laissé un message vocal. "
        "Merci de nous rappeler au {agency_phone}."
    ),
    "confirm": (
        "Bonjour {name}, votre rendez-vous est confirmé. "
        "Nous vous enverrons un rappel 24h et 1h avant."
    ),
}


class _SafeDict(dict):
    def __missing__(self, key):
        return "{" + key + "}"


def render_sms(code: str, lead: Any, session: Optional[Session] = None) -> str:
    """
    Body for template `code`. An active Template(type="sms", name=code) row
    overrides the built-in French text. Unknown codes fall back to template A.
    """
    body = None
    if session is not None:
        row = session.exec(
            select(Template)
            .where(Template.type == "sms")
            .where(Template.name == code)
            .where(Template.is_active == True)  # noqa: E712
            .order_by(Template.id.desc())
        ).first()
        if row:
            body = row.body
    if body is None:
        body = DEFAULT_TEMPLATES.get(code) or DEFAULT_TEMPLATES["A"]

    values = _SafeDict(
        name=(getattr(lead, "full_name", None) or "").strip() or "Madame, Monsieur",
        agency=config.AGENCY_NAME,
        agency_phone=config.AGENCY_PHONE,
        city=getattr(lead, "city", None) or "",
    )
    return body.format_map(values)


# ---------- operator notifications ----------

def notify_operator(message: str) -> bool:
    """
    SMS to the office (OFFICE_SMS_TO). Without a destination the notification
    is only logged, which is the default setup.
    """
    office_to = os.getenv("OFFICE_SMS_TO", config.OFFICE_SMS_TO).strip()
    log.warning("[OPERATOR] %s", message)
    if not office_to:
        return False
    body = f"[{config.AGENCY_NAME}] {message}"
    if len(body) > 320:
        body = body[:320]
    return send_sms(office_to, body)
