from crm import alerts
from crm.models import Lead, Template
from crm.services import sms
from crm.utils.phone import normalize_phone, phone_key


def test_normalize_phone_reads_french_national_numbers():
    assert normalize_phone("06 12 34 56 78") == "+33612345678"
    assert normalize_phone("+33 6 12 34 56 78") == "+33612345678"
    assert normalize_phone("12") is None
    assert normalize_phone("") is None


def test_phone_key_falls_back_to_digits():
    assert phone_key("0612345678") == phone_key("+33612345678")
    assert phone_key("12-34") == "1234"


def test_render_sms_defaults_and_placeholders():
    lead = Lead(full_name="Marie Curie")
    body = sms.render_sms("B", lead)
    assert body.startswith("Bonjour Marie Curie")
    assert "message vocal" in body

    anonymous = sms.render_sms("unknown", Lead(full_name=" "))
    assert anonymous.startswith("Bonjour Madame, Monsieur")


def test_render_sms_prefers_active_template(session):
    session.add(Template(name="confirm", type="sms", body="RDV ok {name} {missing}", is_active=True))
    session.add(Template(name="A", type="sms", body="inactive", is_active=False))
    session.commit()

    lead = Lead(full_name="Paul")
    assert sms.render_sms("confirm", lead, session) == "RDV ok Paul {missing}"
    assert "pas pu vous joindre" in sms.render_sms("A", lead, session)


def test_send_sms_dry_run_and_invalid_phone(monkeypatch):
    monkeypatch.setenv("SMS_DRY_RUN", "true")
    assert sms.send_sms("06 12 34 56 78", "hello") is True
    assert sms.send_sms("not a phone", "hello") is False


def test_notify_operator_without_destination(monkeypatch):
    monkeypatch.setenv("OFFICE_SMS_TO", "")
    assert sms.notify_operator("Lead 3 idle") is False


def test_error_alert_is_trimmed_and_skipped_without_destination(monkeypatch):
    msg = alerts.format_error_alert("GET", "/api/leads", RuntimeError("x" * 2000))
    assert msg.startswith("[")
    assert "500 on GET /api/leads" in msg
    assert len(msg) == alerts.MAX_ALERT_CHARS + 3

    monkeypatch.setattr(alerts.config, "ALERT_SMS_TO", "")
    assert alerts.send_error_alert(msg) is False


def test_long_bodies_are_cut_to_four_segments():
    assert sms.fit_body("  court  ") == "court"
    cut = sms.fit_body("x" * 1000)
    assert len(cut) == sms.MAX_SMS_CHARS
    assert cut.endswith("...")


def test_messaging_service_wins_over_from_number(monkeypatch):
    monkeypatch.setenv("TWILIO_MESSAGING_SERVICE_SID", "MG123")
    monkeypatch.setenv("TWILIO_FROM", "+33100000000")
    assert sms._origin() == {"messaging_service_sid": "MG123"}

    monkeypatch.setenv("TWILIO_MESSAGING_SERVICE_SID", "")
    assert sms._origin() == {"from_": "+33100000000"}


def test_live_send_without_credentials_returns_false(monkeypatch):
    monkeypatch.setenv("SMS_DRY_RUN", "false")
    for name in ("TWILIO_API_KEY", "TWILIO_AUTH_TOKEN", "TWILIO_ACCOUNT_SID"):
        monkeypatch.setenv(name, "")
    assert sms.send_sms("+33612345678", "hello") is False
