# crm/config.py
import os
from dotenv import load_dotenv
from pathlib import Path

# load .env into process env vars
ROOT = Path(__file__).resolve().parents[1]
load_dotenv(ROOT / ".env")


def _as_bool(name: str, default: bool = False) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return str(val).strip().lower() in ("1", "true", "yes", "y", "on")


def _as_int(name: str, default: int) -> int:
    try:
        return int(str(os.getenv(name, default)).strip())
    except Exception:
        return default


def _as_float(name: str, default: float) -> float:
    try:
        return float(str(os.getenv(name, default)).strip())
    except Exception:
        return default


class Settings:
    # App
    ENV: str = os.getenv("ENV", "dev")
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = _as_int("PORT", 8000)
    TZ: str = os.getenv("TZ", "Europe/Paris")
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///data/crm.db")
    LOG_DIR: str = os.getenv("LOG_DIR", str(ROOT / "logs"))

    # Auth
    JWT_SECRET: str = (os.getenv("JWT_SECRET") or "dev-secret").strip()
    ACCESS_TOKEN_EXPIRE_MINUTES: int = _as_int("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 7)

    # Branding
    AGENCY_NAME: str = os.getenv("AGENCY_NAME", "Redweyne Immobilier")
    AGENCY_PHONE: str = os.getenv("AGENCY_PHONE", "01 23 45 67 89")
    DEFAULT_PHONE_REGION: str = os.getenv("DEFAULT_PHONE_REGION", "FR")

    # Operator / alert destinations
    OFFICE_SMS_TO: str = os.getenv("OFFICE_SMS_TO", "").strip()
    ALERT_SMS_TO: str = os.getenv("ALERT_SMS_TO", "").strip()

    # Twilio (dry-run unless explicitly disabled)
    TWILIO_ACCOUNT_SID: str = os.getenv("TWILIO_ACCOUNT_SID", "").strip()
    TWILIO_API_KEY: str = os.getenv("TWILIO_API_KEY", "").strip()
    TWILIO_AUTH_TOKEN: str = os.getenv("TWILIO_AUTH_TOKEN", "").strip()
    TWILIO_MESSAGING_SERVICE_SID: str = os.getenv("TWILIO_MESSAGING_SERVICE_SID", "").strip()
    TWILIO_FROM: str = os.getenv("TWILIO_FROM", "").strip()
    SMS_DRY_RUN: bool = _as_bool("SMS_DRY_RUN", True)

    # Automation runner
    AUTOMATION_ENABLED: bool = _as_bool("AUTOMATION_ENABLED", True)
    AUTOMATION_INTERVAL_SECONDS: int = _as_int("AUTOMATION_INTERVAL_SECONDS", 300)
    AUTOMATION_COOLDOWN_MINUTES: int = _as_int("AUTOMATION_COOLDOWN_MINUTES", 5)
    AUTOMATION_LOOKBACK_HOURS: int = _as_int("AUTOMATION_LOOKBACK_HOURS", 72)

    # Dashboards
    OPPORTUNITY_MIN_VALUE_EUR: float = _as_float("OPPORTUNITY_MIN_VALUE_EUR", 3000.0)

    # Demo data
    SEED_DEMO_DATA: bool = _as_bool("SEED_DEMO_DATA", False)


# instantiate settings FIRST
settings = Settings()

# expose selected fields as module-level aliases (for older imports)
TZ = settings.TZ
AGENCY_NAME = settings.AGENCY_NAME
AGENCY_PHONE = settings.AGENCY_PHONE
OFFICE_SMS_TO = settings.OFFICE_SMS_TO
ALERT_SMS_TO = settings.ALERT_SMS_TO
SMS_DRY_RUN = settings.SMS_DRY_RUN
TWILIO_ACCOUNT_SID = settings.TWILIO_ACCOUNT_SID
TWILIO_API_KEY = settings.TWILIO_API_KEY
TWILIO_AUTH_TOKEN = settings.TWILIO_AUTH_TOKEN
TWILIO_MESSAGING_SERVICE_SID = settings.TWILIO_MESSAGING_SERVICE_SID
TWILIO_FROM = settings.TWILIO_FROM
JWT_SECRET = settings.JWT_SECRET
