from datetime import timedelta

import pytest
from sqlmodel import select

from crm.deps import has_permission
from crm.models import Interaction, Lead, utcnow


@pytest.fixture
def operator(make_user):
    return make_user("operator", role="operator")


@pytest.fixture
def agent(make_user):
    return make_user("agent1", role="agent")


@pytest.fixture
def lead(make_lead, operator):
    return make_lead(
        owner_user_id=operator.id,
        consent=True,
        intention="Vendre",
        timeline="< 3 mois",
        estimated_price=300000,
        city="Lyon",
    )


def test_agents_cannot_use_operator_routes(client, auth, agent):
    assert client.get("/api/leads", headers=auth(agent)).status_code == 403
    assert client.get("/api/rules", headers=auth(agent)).status_code == 403


def test_permission_table_guards_routes(client, auth, agent, operator):
    assert has_permission(operator, "manage_automation")
    assert has_permission(agent, "receive_leads")
    assert not has_permission(agent, "assign_leads")
    assert not has_permission(None, "view_all_leads")
    assert not has_permission(operator, "no_such_action")

    r = client.post("/api/automation/run", headers=auth(agent))
    assert r.status_code == 403
    assert r.json()["detail"] == "Missing permission: manage_automation"
    assert client.get("/api/payments", headers=auth(agent)).status_code == 403
    assert client.get("/api/payments", headers=auth(operator)).status_code == 200


def test_create_lead_normalizes_phone(client, auth, operator):
    r = client.post("/api/leads", json={"full_name": "Julie", "phone": "06 33 44 55 66"}, headers=auth(operator))
    assert r.status_code == 201
    assert r.json()["phone"] == "+33633445566"
    assert r.json()["owner_user_id"] == operator.id

    bad = client.post("/api/leads", json={"full_name": "Julie", "phone": "12"}, headers=auth(operator))
    assert bad.status_code == 422


def test_lead_score_follows_the_record(client, auth, operator):
    r = client.post(
        "/api/leads",
        json={
            "full_name": "Hugo Lambert",
            "prospect_type": "Vendeur",
            "timeline": "< 3 mois",
            "consent": True,
            "budget": 500000,
        },
        headers=auth(operator),
    )
    assert r.status_code == 201
    assert r.json()["score"] == 80

    lead_id = r.json()["id"]
    upd = client.put(f"/api/leads/{lead_id}", json={"score": 3, "consent": False}, headers=auth(operator))
    assert upd.status_code == 200
    assert upd.json()["score"] == 75


def test_delete_lead_with_call_history(client, auth, operator, lead, session):
    client.post(f"/api/leads/{lead.id}/outcome", json={"outcome": "connected"}, headers=auth(operator))

    r = client.delete(f"/api/leads/{lead.id}", headers=auth(operator))
    assert r.status_code == 204
    assert client.get(f"/api/leads/{lead.id}", headers=auth(operator)).status_code == 404
    assert session.exec(select(Interaction).where(Interaction.lead_id == lead.id)).all() == []


def test_delete_delivered_lead_conflicts(client, auth, operator, agent, lead):
    client.post("/api/deliveries", json={"lead_id": lead.id, "agent_id": agent.id, "price": 90}, headers=auth(operator))
    assert client.delete(f"/api/leads/{lead.id}", headers=auth(operator)).status_code == 409
    assert client.get(f"/api/leads/{lead.id}", headers=auth(operator)).status_code == 200


def test_no_answer_outcome(client, auth, operator, lead, session):
    r = client.post(f"/api/leads/{lead.id}/outcome", json={"outcome": "no_answer"}, headers=auth(operator))
    assert r.status_code == 200
    body = r.json()
    assert body["lead"]["status"] == "Follow-up"
    assert body["interaction"]["kind"] == "call"
    assert body["interaction"]["user_id"] == operator.id
    assert body["tasks"][0]["days"] == 2

    session.expire_all()
    fresh = session.get(Lead, lead.id)
    assert fresh.last_contact is not None
    assert fresh.next_action - fresh.last_contact == timedelta(days=2)


def test_bad_number_blocks_contact(client, auth, operator, lead):
    client.post(f"/api/leads/{lead.id}/outcome", json={"outcome": "bad_number"}, headers=auth(operator))

    blocked = client.get(f"/api/leads/{lead.id}/blocked", headers=auth(operator)).json()
    assert blocked == {"lead_id": lead.id, "blocked": True, "reason": "Bad number"}

    again = client.post(f"/api/leads/{lead.id}/outcome", json={"outcome": "connected"}, headers=auth(operator))
    assert again.status_code == 409


def test_unknown_outcome_is_400(client, auth, operator, lead):
    r = client.post(f"/api/leads/{lead.id}/outcome", json={"outcome": "maybe"}, headers=auth(operator))
    assert r.status_code == 400


def test_booked_outcome_creates_appointment(client, auth, operator, lead):
    start = (utcnow() + timedelta(days=2)).replace(microsecond=0)
    r = client.post(
        f"/api/leads/{lead.id}/outcome",
        json={"outcome": "booked", "start_time": start.isoformat() + "Z", "location": "Agence Lyon"},
        headers=auth(operator),
    )
    assert r.status_code == 200
    assert r.json()["lead"]["status"] == "Booked"
    appt_id = r.json()["appointment"]["id"]

    appts = client.get(f"/api/appointments?leadId={lead.id}", headers=auth(operator)).json()
    assert [a["id"] for a in appts] == [appt_id]
    assert appts[0]["end_time"] == (start + timedelta(hours=1)).isoformat()

    ics = client.get(f"/api/appointments/{appt_id}/ics", headers=auth(operator))
    assert "SUMMARY:Rendez-vous avec Jean Dupont\r\n" in ics.text
    assert "LOCATION:Agence Lyon\r\n" in ics.text


def test_ready_to_sell_needs_live_touch(client, auth, operator, lead):
    assert client.get(f"/api/leads/{lead.id}/ready", headers=auth(operator)).json()["ready"] is False
    client.post(f"/api/leads/{lead.id}/outcome", json={"outcome": "connected"}, headers=auth(operator))
    assert client.get(f"/api/leads/{lead.id}/ready", headers=auth(operator)).json()["ready"] is True


def test_assign_lead(client, auth, operator, agent, lead):
    r = client.post(f"/api/leads/{lead.id}/assign", json={"agent_id": agent.id}, headers=auth(operator))
    assert r.status_code == 200
    assert r.json()["assigned_agent_id"] == agent.id
    assert r.json()["status"] == "Sent to Agent"

    nope = client.post(f"/api/leads/{lead.id}/assign", json={"agent_id": operator.id}, headers=auth(operator))
    assert nope.status_code == 404


def test_queue_order(client, auth, operator, make_lead):
    now = utcnow()
    old = make_lead(full_name="Old", created_at=now - timedelta(hours=5), source="referral")
    make_lead(full_name="New-referral", created_at=now - timedelta(minutes=30), source="referral")
    make_lead(full_name="New-facebook", created_at=now - timedelta(minutes=20), source="facebook")
    make_lead(full_name="Hot", created_at=now - timedelta(minutes=5), is_hot_lead=True)
    make_lead(full_name="Blocked", created_at=now - timedelta(days=1), do_not_contact=True)
    make_lead(full_name="Later", created_at=now - timedelta(days=1), next_action=now + timedelta(days=1))

    names = [l["full_name"] for l in client.get("/api/leads/queue", headers=auth(operator)).json()]
    assert names == ["Hot", "Old", "New-facebook", "New-referral"]
    assert old.id is not None


def test_duplicates_match_formatted_phone(client, auth, operator, make_lead):
    make_lead(full_name="A", phone="+33612345678")
    make_lead(full_name="B", phone="+33699999999", email="b@example.fr")

    by_phone = client.get("/api/leads/duplicates", params={"phone": "06 12 34 56 78"}, headers=auth(operator)).json()
    assert [l["full_name"] for l in by_phone] == ["A"]

    by_email = client.get("/api/leads/duplicates", params={"email": "B@Example.fr"}, headers=auth(operator)).json()
    assert [l["full_name"] for l in by_email] == ["B"]


def test_delivery_flow(client, auth, operator, agent, lead):
    r = client.post(
        "/api/deliveries",
        json={"lead_id": lead.id, "agent_id": agent.id, "price": 150},
        headers=auth(operator),
    )
    assert r.status_code == 201
    body = r.json()
    token = body["delivery"]["token"]
    assert body["delivery_url"] == f"/delivery/{token}"
    assert body["pdf_url"] == f"/pdfs/delivery-{token}.pdf"

    public = client.get(f"/api/public/deliveries/{token}")
    assert public.status_code == 200
    assert public.json()["lead"]["city"] == "Lyon"

    accepted = client.post(f"/api/public/deliveries/{token}/accept")
    assert accepted.json()["status"] == "accepted"
    assert client.get("/api/public/deliveries/nope").status_code == 404

    pay = client.post(
        "/api/payments",
        json={"agent_id": agent.id, "delivery_id": body["delivery"]["id"], "amount": 150, "status": "paid"},
        headers=auth(operator),
    )
    assert pay.status_code == 201
    listed = client.get(f"/api/payments?agentId={agent.id}", headers=auth(operator)).json()
    assert [p["amount"] for p in listed] == [150]


def test_rules_validation_and_manual_run(client, auth, operator, lead, session):
    bad = client.post(
        "/api/rules",
        json={"name": "x", "trigger": "outcome:no_answer", "action": "launch_rocket"},
        headers=auth(operator),
    )
    assert bad.status_code == 422

    created = client.post(
        "/api/rules",
        json={"name": "No answer", "trigger": "outcome:no_answer", "action": "send_sms:A,create_task:2d"},
        headers=auth(operator),
    )
    assert created.status_code == 201

    session.add(Interaction(lead_id=lead.id, kind="call", outcome="no_answer", timestamp=utcnow() - timedelta(minutes=10)))
    session.commit()

    summary = client.post("/api/automation/run", headers=auth(operator)).json()
    assert summary["actions"] == 1
    assert summary["errors"] == 0

    status = client.get("/api/automation/status", headers=auth(operator)).json()
    assert status["running"] is False
    assert len(status["recent_executions"]) == 1


def test_operator_stats(client, auth, operator, make_lead):
    lead = make_lead(owner_user_id=operator.id, created_at=utcnow() - timedelta(hours=1))
    client.post(f"/api/leads/{lead.id}/outcome", json={"outcome": "connected"}, headers=auth(operator))
    stats = client.get("/api/operator/stats?range=7", headers=auth(operator)).json()
    assert stats["range"] == 7
    assert stats["activity"]["calls"] == 1
    assert stats["activity"]["connects"] == 1
    assert stats["funnel"]["contacted"] == 1
