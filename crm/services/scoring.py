# crm/services/scoring.py
"""
Prospect scoring and expected commission value.

Both functions are pure: they read the current field values of a prospect
(model instance or plain dict) and never touch the database.
"""
from typing import Any, Mapping, Tuple

# Probability of closing per pipeline status
STATUS_PROBABILITY = {
    "Nouveau": 0.05,
    "Contacté": 0.1,
    "Qualifié": 0.25,
    "RDV fixé": 0.5,
    "Mandat signé": 0.9,
    "Gagné": 1.0,
    "Perdu": 0.0,
    "Pas de réponse": 0.02,
}

STATUS_SCORE_DELTA = {
    "RDV fixé": 8,
    "Mandat signé": 15,
    "Gagné": 10,
    "Perdu": -15,
    "Pas de réponse": -15,
}

BASE_SCORE = 50
EXCLUSIVE_MULTIPLIER = 1.1


def _get(p: Any, name: str, default=None):
    if isinstance(p, Mapping):
        val = p.get(name, default)
    else:
        val = getattr(p, name, default)
    return default if val is None else val


def _clamp(n: int, lo: int, hi: int) -> int:
    return max(lo, min(hi, n))


def _number(val) -> float:
    try:
        return float(val or 0)
    except (TypeError, ValueError):
        return 0.0


def score_prospect(p: Any) -> int:
    score = BASE_SCORE
    if _get(p, "prospect_type") == "Vendeur":
        score += 10
    if "<" in str(_get(p, "timeline", "")):
        score += 10
    if len(str(_get(p, "motivation", ""))) > 20:
        score += 5
    if _get(p, "consent", False):
        score += 5
    score += STATUS_SCORE_DELTA.get(_get(p, "status"), 0)
    score += _clamp(int(_number(_get(p, "budget", 0)) // 100000), 0, 10)
    return _clamp(score, 0, 100)


def expected_value(p: Any) -> float:
    """Expected commission in EUR: price x fee rate x close probability (x1.1 if exclusive)."""
    price = _number(_get(p, "estimated_price", 0))
    rate = _number(_get(p, "fee_rate", 0))
    proba = STATUS_PROBABILITY.get(_get(p, "status"), 0.0)
    factor = EXCLUSIVE_MULTIPLIER if _get(p, "exclusive", False) else 1
    return price * rate * proba * factor


def contact_block(lead: Any) -> Tuple[bool, str | None]:
    if _get(lead, "bad_number", False):
        return True, "Bad number"
    if _get(lead, "do_not_contact", False):
        return True, "Do not contact"
    return False, None


def is_ready_to_sell(lead: Any, has_live_touch: bool = False) -> bool:
    """
    Ready to sell: valid phone, consent, intention + timeline, an estimate or
    budget, a city, and at least one live touch.
    """
    has_valid_phone = bool(_get(lead, "phone")) and not _get(lead, "bad_number", False)
    has_consent = bool(_get(lead, "consent", False))
    has_intention_and_timeline = bool(_get(lead, "intention")) and bool(_get(lead, "timeline"))
    has_estimate_or_budget = bool(_get(lead, "estimated_price", 0) or _get(lead, "budget", 0))
    has_location = bool(_get(lead, "city"))
    touched = has_live_touch or bool(_get(lead, "last_contact"))
    return all((
        has_valid_phone,
        has_consent,
        has_intention_and_timeline,
        has_estimate_or_budget,
        has_location,
        touched,
    ))
