# crm/alerts.py
import logging
from typing import Optional

from crm import config
from crm.services import sms

logger = logging.getLogger(__name__)

MAX_ALERT_CHARS = 900


def format_error_alert(method: str, path: str, exc: Optional[BaseException] = None) -> str:
    msg = f"[{config.settings.ENV}] 500 on {method} {path}"
    if exc is not None:
        msg += f": {exc!r}"
    if len(msg) > MAX_ALERT_CHARS:
        msg = msg[:MAX_ALERT_CHARS] + "..."
    return msg


def send_error_alert(message: str) -> bool:
    """
    Text a crash alert to ALERT_SMS_TO through the regular SMS helper.
    Without a destination nothing is sent. Never raises.
    """
    dest = (config.ALERT_SMS_TO or "").strip()
    if not dest:
        return False

    try:
        ok = sms.send_sms(dest, message or "Server error (empty detail)")
    except Exception as e:
        logger.error("[alerts] failed to send SMS alert: %r", e)
        return False
    if not ok:
        logger.error("[alerts] send_sms returned False for %s", dest)
    return ok
