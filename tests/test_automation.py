from datetime import datetime, timedelta

import pytest
from sqlmodel import Session, select

from crm.models import Appointment, Delivery, Interaction, Lead, Rule, RuleExecution, Template
from crm.services.automation import (
    JOB_ID,
    TRIGGER_DELIVERY_UNCONTACTED,
    TRIGGER_NO_ANSWER,
    AutomationRunner,
    initialize_default_rules,
    parse_actions,
)

NOW = datetime(2026, 3, 2, 10, 0, 0)


class FakeSms:
    def __init__(self, ok=True, error=None):
        self.sent = []
        self.ok = ok
        self.error = error

    def __call__(self, to, body):
        if self.error:
            raise self.error
        self.sent.append((to, body))
        return self.ok


class FakeNotifier:
    def __init__(self):
        self.messages = []

    def __call__(self, message):
        self.messages.append(message)
        return True


class FakeScheduler:
    def __init__(self):
        self.jobs = {}
        self.running = False
        self.shutdown_called = False

    def add_job(self, func, trigger, **kw):
        self.jobs[kw["id"]] = (func, trigger, kw)
        return object()

    def remove_job(self, job_id):
        del self.jobs[job_id]

    def start(self):
        self.running = True

    def shutdown(self, wait=True):
        self.running = False
        self.shutdown_called = True


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def sms():
    return FakeSms()


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def clock():
    return Clock(NOW)


@pytest.fixture
def runner(engine, session, sms, notifier, clock):
    initialize_default_rules(session)
    return AutomationRunner(
        session_factory=lambda: Session(engine),
        clock=clock,
        sms_sender=sms,
        notifier=notifier,
        scheduler=FakeScheduler(),
    )


def _call(session, lead, outcome, at):
    it = Interaction(lead_id=lead.id, kind="call", outcome=outcome, timestamp=at)
    session.add(it)
    session.commit()
    return it


def _rule(session, trigger):
    return session.exec(select(Rule).where(Rule.trigger == trigger)).first()


# ---------- no_answer / voicemail ----------

def test_no_answer_sends_sms_a_once_and_schedules_follow_up(runner, session, make_lead, make_user, sms):
    owner = make_user("operator", role="operator")
    lead = make_lead(owner_user_id=owner.id)
    _call(session, lead, "no_answer", NOW - timedelta(minutes=10))

    summary = runner.run_cycle()
    assert summary["actions"] == 1
    assert len(sms.sent) == 1
    assert "pas pu vous joindre" in sms.sent[0][1]

    session.expire_all()
    lead = session.get(Lead, lead.id)
    assert lead.status == "Follow-up"
    assert lead.next_action == NOW + timedelta(days=2)

    logged = session.exec(
        select(Interaction).where(Interaction.lead_id == lead.id).where(Interaction.kind == "sms")
    ).all()
    assert [i.template for i in logged] == ["A"]
    assert logged[0].user_id is None

    # later cycles never fire again for the same interaction
    runner.run_cycle()
    runner.clock.now = NOW + timedelta(hours=2)
    runner.run_cycle()
    assert len(sms.sent) == 1


def test_no_answer_waits_for_cooldown(runner, session, make_lead, sms, clock):
    lead = make_lead()
    _call(session, lead, "no_answer", NOW - timedelta(minutes=2))

    runner.run_cycle()
    assert sms.sent == []

    clock.now = NOW + timedelta(minutes=10)
    runner.run_cycle()
    assert len(sms.sent) == 1


def test_older_outcome_superseded_by_later_call(runner, session, make_lead, sms):
    lead = make_lead()
    first = _call(session, lead, "no_answer", NOW - timedelta(minutes=30))
    _call(session, lead, "no_answer", NOW - timedelta(minutes=20))

    runner.run_cycle()
    assert len(sms.sent) == 1

    marker = session.exec(
        select(RuleExecution)
        .where(RuleExecution.subject_type == "interaction")
        .where(RuleExecution.subject_id == first.id)
    ).one()
    assert marker.outcome == "skipped"


def test_outcomes_older_than_lookback_are_ignored(runner, session, make_lead, sms):
    lead = make_lead(created_at=NOW - timedelta(days=5))
    _call(session, lead, "no_answer", NOW - timedelta(days=4))

    runner.run_cycle()
    assert sms.sent == []


def test_voicemail_sends_sms_b_and_one_day_follow_up(runner, session, make_lead, sms):
    lead = make_lead()
    _call(session, lead, "voicemail", NOW - timedelta(minutes=6))

    runner.run_cycle()
    assert len(sms.sent) == 1
    assert "message vocal" in sms.sent[0][1]

    session.expire_all()
    assert session.get(Lead, lead.id).next_action == NOW + timedelta(days=1)


def test_active_template_overrides_default_text(runner, session, make_lead, sms):
    session.add(Template(name="A", type="sms", body="Bonjour {name}, rappelez-nous !"))
    session.commit()
    lead = make_lead(full_name="Claire Moreau")
    _call(session, lead, "no_answer", NOW - timedelta(minutes=10))

    runner.run_cycle()
    assert sms.sent[0][1] == "Bonjour Claire Moreau, rappelez-nous !"


def test_blocked_lead_is_skipped_and_marked(runner, session, make_lead, sms):
    lead = make_lead(do_not_contact=True)
    _call(session, lead, "no_answer", NOW - timedelta(minutes=10))

    summary = runner.run_cycle()
    assert sms.sent == []
    assert summary["skipped"] == 1

    marker = session.exec(select(RuleExecution).where(RuleExecution.lead_id == lead.id)).one()
    assert marker.outcome == "skipped"


def test_inactive_rule_is_ignored(runner, session, make_lead, sms):
    rule = _rule(session, TRIGGER_NO_ANSWER)
    rule.is_active = False
    session.add(rule)
    session.commit()

    lead = make_lead()
    _call(session, lead, "no_answer", NOW - timedelta(minutes=10))

    runner.run_cycle()
    assert sms.sent == []


# ---------- booked ----------

def test_booked_lead_gets_one_confirmation_and_reminders(runner, session, make_lead, make_user, sms):
    owner = make_user("operator", role="operator")
    lead = make_lead(status="Booked", owner_user_id=owner.id)
    session.add(Appointment(
        lead_id=lead.id,
        start_time=NOW + timedelta(days=2),
        end_time=NOW + timedelta(days=2, hours=1),
    ))
    session.commit()

    runner.run_cycle()
    runner.run_cycle()

    assert len(sms.sent) == 1
    assert "confirmé" in sms.sent[0][1]

    reminders = session.exec(
        select(Interaction).where(Interaction.lead_id == lead.id).where(Interaction.kind == "reminder")
    ).all()
    assert sorted(r.template for r in reminders) == ["reminder_1h", "reminder_24h"]
    assert {r.user_id for r in reminders} == {None}
    assert {r.timestamp for r in reminders} == {
        NOW + timedelta(days=1),
        NOW + timedelta(days=2, hours=-1),
    }


def test_booked_lead_with_existing_confirmation_is_not_texted(runner, session, make_lead, sms):
    lead = make_lead(status="Booked")
    session.add(Interaction(lead_id=lead.id, kind="sms", template="confirm", timestamp=NOW - timedelta(hours=1)))
    session.commit()

    runner.run_cycle()
    assert sms.sent == []


# ---------- notifications ----------

def test_idle_lead_notifies_operator_once(runner, session, make_lead, notifier):
    make_lead(full_name="Antoine Roux", created_at=NOW - timedelta(days=8))
    make_lead(full_name="Fresh Lead", created_at=NOW - timedelta(days=1))

    runner.run_cycle()
    runner.run_cycle()

    assert len(notifier.messages) == 1
    assert "Antoine Roux" in notifier.messages[0]


def test_uncontacted_delivery_notifies_operator(runner, session, make_lead, make_user, notifier):
    rule = _rule(session, TRIGGER_DELIVERY_UNCONTACTED)
    rule.is_active = True
    session.add(rule)
    agent = make_user()

    quiet = make_lead(full_name="Quiet", status="Sent to Agent")
    touched = make_lead(full_name="Touched", status="Sent to Agent")
    session.add(Delivery(lead_id=quiet.id, agent_id=agent.id, created_at=NOW - timedelta(hours=25)))
    d2 = Delivery(lead_id=touched.id, agent_id=agent.id, created_at=NOW - timedelta(hours=25))
    session.add(d2)
    session.add(Interaction(lead_id=touched.id, kind="call", outcome="connected", timestamp=NOW - timedelta(hours=3)))
    session.commit()

    runner.run_cycle()
    runner.run_cycle()

    assert len(notifier.messages) == 1
    assert f"lead {quiet.id}" in notifier.messages[0]


# ---------- failure isolation ----------

def test_failing_row_is_isolated_and_retried_next_cycle(engine, session, make_lead, notifier, clock):
    initialize_default_rules(session)
    failing = FakeSms(error=RuntimeError("twilio down"))
    runner = AutomationRunner(
        session_factory=lambda: Session(engine),
        clock=clock,
        sms_sender=failing,
        notifier=notifier,
        scheduler=FakeScheduler(),
    )

    lead = make_lead()
    _call(session, lead, "no_answer", NOW - timedelta(minutes=10))
    make_lead(full_name="Idle", created_at=NOW - timedelta(days=9))

    summary = runner.run_cycle()
    assert summary["errors"] == 1
    assert len(notifier.messages) == 1  # other rules still ran
    assert session.exec(select(RuleExecution).where(RuleExecution.lead_id == lead.id)).all() == []

    session.expire_all()
    assert session.get(Lead, lead.id).status == "New"  # rolled back

    working = FakeSms()
    runner.sms_sender = working
    runner.run_cycle()
    assert len(working.sent) == 1


def test_malformed_rule_does_not_stop_the_cycle(runner, session, make_lead, notifier):
    session.add(Rule(name="Broken", trigger=TRIGGER_NO_ANSWER, action="explode:now"))
    session.commit()
    make_lead(created_at=NOW - timedelta(days=8))

    summary = runner.run_cycle()
    assert summary["errors"] == 1
    assert len(notifier.messages) == 1


# ---------- lifecycle ----------

def test_start_registers_one_job_and_stop_removes_it(runner):
    scheduler = runner.scheduler
    runner.start()
    runner.start()

    assert runner.is_running
    assert list(scheduler.jobs) == [JOB_ID]
    _, trigger, kw = scheduler.jobs[JOB_ID]
    assert trigger == "interval"
    assert kw["max_instances"] == 1
    assert kw["coalesce"] is True
    assert kw["next_run_time"] is not None
    assert scheduler.running

    runner.stop()
    assert not runner.is_running
    assert scheduler.jobs == {}
    assert scheduler.shutdown_called is False  # injected scheduler is left alone


def test_initialize_default_rules_only_on_empty_table(session):
    assert initialize_default_rules(session) == 5
    assert initialize_default_rules(session) == 0
    active = session.exec(select(Rule).where(Rule.is_active == True)).all()  # noqa: E712
    assert len(active) == 4


# ---------- action strings ----------

def test_parse_actions():
    specs = parse_actions("send_sms:A, create_task:2d")
    assert [(s.name, s.arg) for s in specs] == [("send_sms", "A"), ("create_task", "2d")]
    assert specs[1].days == 2


@pytest.mark.parametrize("bad", ["", "explode", "send_sms", "create_task:soon", "create_task:-1d"])
def test_parse_actions_rejects_malformed(bad):
    with pytest.raises(ValueError):
        parse_actions(bad)
