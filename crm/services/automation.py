# crm/services/automation.py
"""
Automation rule runner.

Every cycle the runner loads the active rules, finds the rows matching each
rule's trigger and runs the rule's actions on the lead behind each row:

  outcome:no_answer         call logged as no_answer, past the cool-down
  outcome:voicemail         call logged as voicemail, past the cool-down
  status:booked             lead Booked without a confirmation SMS yet
  delivery:uncontacted_24h  delivery older than 24h, lead untouched since
  lead:idle_7d              lead still New after 7 days

Each handled (rule, subject) pair is written to RuleExecution in the same
transaction as the action's own writes, so a row fires at most once no
matter how many cycles see it. Rows that fail are rolled back and left
unmarked; the next cycle evaluates them again.
"""
from __future__ import annotations

import logging
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, ContextManager, Dict, List, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from sqlmodel import Session, select

from crm import config
from crm.models import (
    Appointment,
    Delivery,
    Interaction,
    Lead,
    Rule,
    RuleExecution,
    utcnow,
)
from crm.services import sms as sms_service
from crm.services.scoring import contact_block

log = logging.getLogger(__name__)

JOB_ID = "automation_cycle"

TRIGGER_NO_ANSWER = "outcome:no_answer"
TRIGGER_VOICEMAIL = "outcome:voicemail"
TRIGGER_BOOKED = "status:booked"
TRIGGER_DELIVERY_UNCONTACTED = "delivery:uncontacted_24h"
TRIGGER_LEAD_IDLE = "lead:idle_7d"

# used when a rule row carries an empty action string
DEFAULT_ACTIONS = {
    TRIGGER_NO_ANSWER: "send_sms:A,create_task:2d",
    TRIGGER_VOICEMAIL: "send_sms:B,create_task:1d",
    TRIGGER_BOOKED: "send_confirmation_sms,schedule_reminders",
    TRIGGER_DELIVERY_UNCONTACTED: "notify_operator",
    TRIGGER_LEAD_IDLE: "notify_operator",
}

KNOWN_ACTIONS = {
    "send_sms",
    "create_task",
    "send_confirmation_sms",
    "schedule_reminders",
    "notify_operator",
}

REMINDER_OFFSETS = (("24h", timedelta(hours=24)), ("1h", timedelta(hours=1)))

DEFAULT_RULES: List[Dict[str, Any]] = [
    {
        "name": "No Answer Follow-up",
        "trigger": TRIGGER_NO_ANSWER,
        "action": "send_sms:A,create_task:2d",
        "payload": {"template": "A", "followUpDays": 2},
        "is_active": True,
    },
    {
        "name": "Voicemail Follow-up",
        "trigger": TRIGGER_VOICEMAIL,
        "action": "send_sms:B,create_task:1d",
        "payload": {"template": "B", "followUpDays": 1},
        "is_active": True,
    },
    {
        "name": "Booking Confirmation",
        "trigger": TRIGGER_BOOKED,
        "action": "send_confirmation_sms,schedule_reminders",
        "payload": {"scheduleReminders": True},
        "is_active": True,
    },
    {
        "name": "Uncontacted Lead Alert",
        "trigger": TRIGGER_LEAD_IDLE,
        "action": "notify_operator",
        "payload": {"notifyAfterDays": 7},
        "is_active": True,
    },
    {
        "name": "Delivery Reminder",
        "trigger": TRIGGER_DELIVERY_UNCONTACTED,
        "action": "notify_operator",
        "payload": {"notifyAfterHours": 24},
        "is_active": False,
    },
]


@dataclass
class ActionSpec:
    name: str
    arg: Optional[str] = None

    @property
    def days(self) -> int:
        raw = (self.arg or "").strip().lower()
        if raw.endswith("d"):
            raw = raw[:-1]
        return int(raw)


def parse_actions(action: str) -> List[ActionSpec]:
    """
    "send_sms:A,create_task:2d" -> [ActionSpec("send_sms", "A"), ActionSpec("create_task", "2d")]
    Raises ValueError on an unknown action or a malformed argument.
    """
    specs: List[ActionSpec] = []
    for part in (action or "").split(","):
        part = part.strip()
        if not part:
            continue
        name, _, arg = part.partition(":")
        name = name.strip()
        if name not in KNOWN_ACTIONS:
            raise ValueError(f"Unknown automation action: {name!r}")
        spec = ActionSpec(name=name, arg=arg.strip() or None)
        if name == "send_sms" and not spec.arg:
            raise ValueError("send_sms needs a template code, e.g. send_sms:A")
        if name == "create_task":
            try:
                if spec.days < 0:
                    raise ValueError
            except ValueError:
                raise ValueError(f"create_task needs a day count, e.g. create_task:2d (got {spec.arg!r})")
        specs.append(spec)
    if not specs:
        raise ValueError("Rule has no actions")
    return specs


@dataclass
class Candidate:
    subject_type: str  # interaction | lead | delivery
    subject_id: int
    lead_id: int
    skip_reason: Optional[str] = None
    context: Dict[str, Any] = field(default_factory=dict)


@dataclass
class CycleSummary:
    rules: int = 0
    actions: int = 0
    skipped: int = 0
    errors: int = 0

    def as_dict(self) -> Dict[str, int]:
        return {"rules": self.rules, "actions": self.actions, "skipped": self.skipped, "errors": self.errors}


def _default_session_factory() -> Session:
    from crm.db import session_factory

    return session_factory()


class AutomationRunner:
    """
    Poll-and-dispatch service. Collaborators are injected so tests can drive
    a cycle with a fixed clock, a fake SMS sender and a fake scheduler.
    """

    def __init__(
        self,
        session_factory: Optional[Callable[[], ContextManager[Session]]] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sms_sender: Optional[Callable[[str, str], bool]] = None,
        notifier: Optional[Callable[[str], bool]] = None,
        scheduler=None,
        interval_seconds: Optional[int] = None,
        cooldown_minutes: Optional[int] = None,
        lookback_hours: Optional[int] = None,
    ):
        s = config.settings
        self.session_factory = session_factory or _default_session_factory
        self.clock = clock or utcnow
        self.sms_sender = sms_sender or sms_service.send_sms
        self.notifier = notifier or sms_service.notify_operator
        self.scheduler = scheduler
        self._owns_scheduler = scheduler is None
        self.interval_seconds = interval_seconds or s.AUTOMATION_INTERVAL_SECONDS
        self.cooldown = timedelta(minutes=s.AUTOMATION_COOLDOWN_MINUTES if cooldown_minutes is None else cooldown_minutes)
        self.lookback = timedelta(hours=s.AUTOMATION_LOOKBACK_HOURS if lookback_hours is None else lookback_hours)
        self.last_run_at: Optional[datetime] = None
        self.last_summary: Optional[Dict[str, int]] = None
        self._job = None

        self._finders = {
            TRIGGER_NO_ANSWER: lambda session, rule, now: self._find_outcome(session, rule, now, "no_answer"),
            TRIGGER_VOICEMAIL: lambda session, rule, now: self._find_outcome(session, rule, now, "voicemail"),
            TRIGGER_BOOKED: self._find_booked,
            TRIGGER_DELIVERY_UNCONTACTED: self._find_uncontacted_deliveries,
            TRIGGER_LEAD_IDLE: self._find_idle_leads,
        }

    @classmethod
    def for_session(cls, session: Session, **kwargs) -> "AutomationRunner":
        """Runner bound to an existing session (request-scoped manual runs)."""
        return cls(session_factory=lambda: nullcontext(session), **kwargs)

    # ------------------------------ lifecycle ------------------------------

    @property
    def is_running(self) -> bool:
        return self._job is not None

    def start(self) -> None:
        if self._job is not None:
            return
        if self.scheduler is None:
            self.scheduler = BackgroundScheduler(timezone="UTC")
        self._job = self.scheduler.add_job(
            self._scheduled_cycle,
            "interval",
            seconds=self.interval_seconds,
            id=JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(timezone.utc),  # run immediately, then every interval
        )
        if not self.scheduler.running:
            self.scheduler.start()
        log.info("Automation runner started (every %ss)", self.interval_seconds)

    def stop(self) -> None:
        if self._job is None:
            return
        try:
            self.scheduler.remove_job(JOB_ID)
        except Exception as e:
            log.warning("Automation job already gone: %s", e)
        self._job = None
        if self._owns_scheduler and self.scheduler.running:
            self.scheduler.shutdown(wait=False)
            self.scheduler = None
        log.info("Automation runner stopped")

    def _scheduled_cycle(self) -> None:
        try:
            self.run_cycle()
        except Exception:
            log.exception("Automation cycle crashed")

    # -------------------------------- cycle --------------------------------

    def run_cycle(self) -> Dict[str, int]:
        summary = CycleSummary()
        now = self.clock()
        log.info("Processing automation rules...")

        with self.session_factory() as session:
            try:
                rules = session.exec(
                    select(Rule).where(Rule.is_active == True).order_by(Rule.id)  # noqa: E712
                ).all()
            except Exception:
                log.exception("Could not load automation rules")
                summary.errors += 1
                return self._finish(now, summary)

            for rule in rules:
                rule_id, rule_name = rule.id, rule.name
                summary.rules += 1
                try:
                    self._process_rule(session, rule, now, summary)
                except Exception:
                    session.rollback()
                    summary.errors += 1
                    log.exception("Error processing rule %s (id=%s)", rule_name, rule_id)

        log.info(
            "Processed %s automation rules: %s actions, %s skipped, %s errors",
            summary.rules, summary.actions, summary.skipped, summary.errors,
        )
        return self._finish(now, summary)

    def _finish(self, now: datetime, summary: CycleSummary) -> Dict[str, int]:
        self.last_run_at = now
        self.last_summary = summary.as_dict()
        return self.last_summary

    def _process_rule(self, session: Session, rule: Rule, now: datetime, summary: CycleSummary) -> None:
        finder = self._finders.get(rule.trigger)
        if finder is None:
            log.warning("Rule %s has unknown trigger %r; skipping", rule.name, rule.trigger)
            return

        actions = parse_actions(rule.action or DEFAULT_ACTIONS[rule.trigger])
        rule_id = rule.id
        fired_leads: set[int] = set()

        for cand in finder(session, rule, now):
            try:
                self._handle(session, rule_id, actions, cand, now, fired_leads, summary)
                session.commit()
            except Exception:
                session.rollback()
                summary.errors += 1
                log.exception(
                    "Failed to execute rule %s on %s %s (lead %s)",
                    rule_id, cand.subject_type, cand.subject_id, cand.lead_id,
                )

    def _handle(
        self,
        session: Session,
        rule_id: int,
        actions: List[ActionSpec],
        cand: Candidate,
        now: datetime,
        fired_leads: set,
        summary: CycleSummary,
    ) -> None:
        lead = session.get(Lead, cand.lead_id)
        if lead is None:
            self._mark(session, rule_id, cand, now, "skipped")
            summary.skipped += 1
            return

        if cand.skip_reason:
            log.info("Rule %s: lead %s skipped (%s)", rule_id, lead.id, cand.skip_reason)
            self._mark(session, rule_id, cand, now, "skipped")
            summary.skipped += 1
            return

        blocked, reason = contact_block(lead)
        if blocked:
            log.info("Skipping lead %s for rule %s - blocked contact (%s)", lead.id, rule_id, reason)
            self._mark(session, rule_id, cand, now, "skipped")
            summary.skipped += 1
            return

        # one action per lead per cycle; extra rows for the same lead are absorbed
        if lead.id in fired_leads:
            self._mark(session, rule_id, cand, now, "done")
            return

        log.info("Executing rule %s on lead %s", rule_id, lead.id)
        for spec in actions:
            self._execute(session, spec, lead, cand, now)
        self._mark(session, rule_id, cand, now, "done")
        fired_leads.add(lead.id)
        summary.actions += 1

    @staticmethod
    def _mark(session: Session, rule_id: int, cand: Candidate, now: datetime, outcome: str) -> None:
        session.add(RuleExecution(
            rule_id=rule_id,
            subject_type=cand.subject_type,
            subject_id=cand.subject_id,
            lead_id=cand.lead_id,
            outcome=outcome,
            handled_at=now,
        ))

    @staticmethod
    def _handled_ids(session: Session, rule_id: int, subject_type: str) -> set:
        return set(session.exec(
            select(RuleExecution.subject_id)
            .where(RuleExecution.rule_id == rule_id)
            .where(RuleExecution.subject_type == subject_type)
        ).all())

    # ------------------------------- finders -------------------------------

    def _find_outcome(self, session: Session, rule: Rule, now: datetime, outcome: str) -> List[Candidate]:
        cutoff = now - self.cooldown
        since = now - self.lookback
        handled = self._handled_ids(session, rule.id, "interaction")

        rows = session.exec(
            select(Interaction)
            .where(Interaction.outcome == outcome)
            .where(Interaction.timestamp <= cutoff)
            .where(Interaction.timestamp >= since)
            .order_by(Interaction.timestamp, Interaction.id)
        ).all()

        out: List[Candidate] = []
        for it in rows:
            if it.id in handled:
                continue
            later_call = session.exec(
                select(Interaction.id)
                .where(Interaction.lead_id == it.lead_id)
                .where(Interaction.kind == "call")
                .where(Interaction.timestamp > it.timestamp)
                .limit(1)
            ).first()
            out.append(Candidate(
                subject_type="interaction",
                subject_id=it.id,
                lead_id=it.lead_id,
                skip_reason="superseded by a later call" if later_call is not None else None,
            ))
        return out

    def _find_booked(self, session: Session, rule: Rule, now: datetime) -> List[Candidate]:
        handled = self._handled_ids(session, rule.id, "lead")
        leads = session.exec(select(Lead).where(Lead.status == "Booked").order_by(Lead.id)).all()

        out: List[Candidate] = []
        for lead in leads:
            if lead.id in handled:
                continue
            existing = session.exec(
                select(Interaction.id)
                .where(Interaction.lead_id == lead.id)
                .where(Interaction.kind == "sms")
                .where(Interaction.direction == "outbound")
                .where(Interaction.template == "confirm")
                .limit(1)
            ).first()
            out.append(Candidate(
                subject_type="lead",
                subject_id=lead.id,
                lead_id=lead.id,
                skip_reason="confirmation already sent" if existing is not None else None,
            ))
        return out

    def _find_uncontacted_deliveries(self, session: Session, rule: Rule, now: datetime) -> List[Candidate]:
        cutoff = now - timedelta(hours=24)
        handled = self._handled_ids(session, rule.id, "delivery")
        deliveries = session.exec(
            select(Delivery)
            .where(Delivery.created_at <= cutoff)
            .where(Delivery.status.in_(("pending", "sent")))
            .order_by(Delivery.created_at)
        ).all()

        out: List[Candidate] = []
        for d in deliveries:
            if d.id in handled:
                continue
            touched = session.exec(
                select(Interaction.id)
                .where(Interaction.lead_id == d.lead_id)
                .where(Interaction.timestamp >= d.created_at)
                .limit(1)
            ).first()
            if touched is not None:
                continue
            out.append(Candidate(
                subject_type="delivery",
                subject_id=d.id,
                lead_id=d.lead_id,
                context={"message": f"Delivery {d.id} (lead {d.lead_id}) uncontacted for 24h+"},
            ))
        return out

    def _find_idle_leads(self, session: Session, rule: Rule, now: datetime) -> List[Candidate]:
        cutoff = now - timedelta(days=7)
        handled = self._handled_ids(session, rule.id, "lead")
        leads = session.exec(
            select(Lead)
            .where(Lead.status == "New")
            .where(Lead.created_at < cutoff)
            .order_by(Lead.created_at)
        ).all()
        return [
            Candidate(
                subject_type="lead",
                subject_id=lead.id,
                lead_id=lead.id,
                context={"message": f"Lead {lead.full_name or lead.id} has been idle for 7+ days"},
            )
            for lead in leads
            if lead.id not in handled
        ]

    # ------------------------------- actions -------------------------------

    def _execute(self, session: Session, spec: ActionSpec, lead: Lead, cand: Candidate, now: datetime) -> None:
        if spec.name == "send_sms":
            self._send_sms(session, lead, spec.arg, now)
        elif spec.name == "send_confirmation_sms":
            self._send_sms(session, lead, "confirm", now)
        elif spec.name == "create_task":
            lead.next_action = now + timedelta(days=spec.days)
            lead.status = "Follow-up"
            session.add(lead)
            log.info("Created follow-up task for lead %s in %s days", lead.id, spec.days)
        elif spec.name == "schedule_reminders":
            self._schedule_reminders(session, lead, now)
        elif spec.name == "notify_operator":
            message = cand.context.get("message") or f"Lead {lead.full_name or lead.id} needs attention"
            self.notifier(message)

    def _send_sms(self, session: Session, lead: Lead, template: str, now: datetime) -> None:
        body = sms_service.render_sms(template, lead, session)
        ok = self.sms_sender(lead.phone or "", body)
        session.add(Interaction(
            lead_id=lead.id,
            user_id=None,
            kind="sms",
            direction="outbound",
            template=template,
            outcome=None if ok else "send_failed",
            summary=f"Automated SMS (template {template})",
            timestamp=now,
        ))
        if not ok:
            log.warning("SMS template %s to lead %s was not sent", template, lead.id)

    def _schedule_reminders(self, session: Session, lead: Lead, now: datetime) -> None:
        appt = session.exec(
            select(Appointment)
            .where(Appointment.lead_id == lead.id)
            .where(Appointment.start_time > now)
            .where(Appointment.status != "cancelled")
            .order_by(Appointment.start_time)
        ).first()
        if appt is None:
            log.info("No upcoming appointment for lead %s; no reminders scheduled", lead.id)
            return

        for label, offset in REMINDER_OFFSETS:
            at = appt.start_time - offset
            if at <= now:
                continue
            session.add(Interaction(
                lead_id=lead.id,
                user_id=None,
                kind="reminder",
                direction="outbound",
                template=f"reminder_{label}",
                summary=f"Rappel RDV {label} avant (rendez-vous {appt.id})",
                timestamp=at,
            ))
        log.info("Scheduled appointment reminders for lead %s", lead.id)


def initialize_default_rules(session: Session) -> int:
    """Create the default rule set when the rule table is empty. Returns rows created."""
    existing = session.exec(select(Rule.id).limit(1)).first()
    if existing is not None:
        return 0

    log.info("Creating default automation rules...")
    for data in DEFAULT_RULES:
        session.add(Rule(**data))
    session.commit()
    return len(DEFAULT_RULES)
