# crm/utils/phone.py
from typing import Optional

import phonenumbers
from fastapi import HTTPException

from crm import config


def normalize_phone(raw: Optional[str], region: Optional[str] = None) -> Optional[str]:
    """
    Normalize a phone number to E.164 (+33612345678).
    National numbers are read in DEFAULT_PHONE_REGION (FR unless configured).
    Returns None when the number can't be parsed or isn't valid.
    """
    if not raw or not str(raw).strip():
        return None
    try:
        pn = phonenumbers.parse(str(raw), region or config.settings.DEFAULT_PHONE_REGION)
    except phonenumbers.NumberParseException:
        return None
    if not phonenumbers.is_possible_number(pn) or not phonenumbers.is_valid_number(pn):
        return None
    return phonenumbers.format_number(pn, phonenumbers.PhoneNumberFormat.E164)


def require_phone(raw: str) -> str:
    """Like normalize_phone, but raise 422 so the API returns a clean error."""
    e164 = normalize_phone(raw)
    if not e164:
        raise HTTPException(status_code=422, detail="Invalid phone number. Use format like +33612345678.")
    return e164


def phone_key(raw: Optional[str]) -> str:
    """Key used for duplicate detection: E.164 when valid, else bare digits."""
    e164 = normalize_phone(raw)
    if e164:
        return e164
    return "".join(ch for ch in (raw or "") if ch.isdigit())
