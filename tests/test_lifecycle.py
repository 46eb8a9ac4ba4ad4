"""Alert state machine: acknowledge, resolve, escalate and escalation candidates."""
from datetime import timedelta

import pytest

from conftest import BANK_B
from covenant_monitor.exceptions import AuthorizationError, InvalidTransitionError, NotFoundError, ValidationError
from covenant_monitor.lifecycle import (
    ALERT_TRANSITIONS, AlertLifecycleManager, alerts_for_escalation, can_transition, next_severity,
)
from covenant_monitor.models import AlertSeverity, AlertStatus

IMMUTABLE_FIELDS = (
    "covenant_id", "contract_id", "bank_id", "alert_type", "trigger_metric_value",
    "threshold_value", "triggered_at", "title", "description", "created_at",
)


@pytest.fixture
def manager(store, clock):
    return AlertLifecycleManager(store, clock=clock)


def assert_preserved(before, after, *extra):
    for field in IMMUTABLE_FIELDS + extra:
        assert getattr(after, field) == getattr(before, field), field


# ── State Machine ─────────────────────────────────────────────────────

def test_resolved_is_terminal():
    assert ALERT_TRANSITIONS[AlertStatus.RESOLVED] == frozenset()
    assert not any(can_transition(AlertStatus.RESOLVED, s) for s in AlertStatus)


def test_transition_table_is_read_only():
    with pytest.raises(TypeError):
        ALERT_TRANSITIONS[AlertStatus.RESOLVED] = frozenset({AlertStatus.NEW})


@pytest.mark.parametrize("severity,expected", [
    (AlertSeverity.LOW, AlertSeverity.MEDIUM),
    (AlertSeverity.MEDIUM, AlertSeverity.HIGH),
    (AlertSeverity.HIGH, AlertSeverity.CRITICAL),
    (AlertSeverity.CRITICAL, AlertSeverity.CRITICAL),
])
def test_next_severity_saturates(severity, expected):
    assert next_severity(severity) is expected


# ── Acknowledge ───────────────────────────────────────────────────────

class TestAcknowledge:
    def test_acknowledge_stamps_user_and_time(self, manager, make_alert, analyst, now):
        before = make_alert("a1")
        after = manager.acknowledge("a1", analyst)
        assert after.status is AlertStatus.ACKNOWLEDGED
        assert after.acknowledged_by == analyst.id
        assert after.acknowledged_at <= now
        assert after.severity is before.severity
        assert_preserved(before, after)

    def test_notes_attached_immediately(self, manager, make_alert, analyst):
        make_alert("a1")
        assert manager.acknowledge("a1", analyst, "Borrower called").resolution_notes == "Borrower called"

    def test_escalated_alert_can_be_acknowledged(self, manager, make_alert, analyst):
        make_alert("a1", status=AlertStatus.ESCALATED)
        assert manager.acknowledge("a1", analyst).status is AlertStatus.ACKNOWLEDGED

    def test_requires_user(self, manager, make_alert, store):
        make_alert("a1")
        with pytest.raises(AuthorizationError):
            manager.acknowledge("a1", None)
        assert store.get("alerts", {"id": "a1"})[0]["status"] == AlertStatus.NEW

    def test_viewer_cannot_acknowledge(self, manager, make_alert, viewer):
        make_alert("a1")
        with pytest.raises(AuthorizationError):
            manager.acknowledge("a1", viewer)

    def test_other_bank_cannot_acknowledge(self, manager, make_alert, other_bank_analyst, store):
        make_alert("a1")
        with pytest.raises(AuthorizationError):
            manager.acknowledge("a1", other_bank_analyst)
        assert store.get("alerts", {"id": "a1"})[0]["acknowledged_by"] is None

    def test_resolved_alert_cannot_be_acknowledged(self, manager, make_alert, analyst):
        make_alert("a1", status=AlertStatus.RESOLVED)
        with pytest.raises(InvalidTransitionError):
            manager.acknowledge("a1", analyst)

    def test_missing_alert(self, manager, analyst):
        with pytest.raises(NotFoundError):
            manager.acknowledge("nope", analyst)


# ── Resolve ───────────────────────────────────────────────────────────

class TestResolve:
    def test_resolve_acknowledged(self, manager, make_alert, admin, now):
        before = make_alert("a1", status=AlertStatus.ACKNOWLEDGED)
        after = manager.resolve("a1", admin, "Waiver signed")
        assert after.status is AlertStatus.RESOLVED
        assert after.resolution_notes == "Waiver signed"
        assert after.updated_at == now
        assert_preserved(before, after, "severity")

    def test_new_alert_cannot_be_resolved(self, manager, make_alert, admin):
        make_alert("a1")
        with pytest.raises(InvalidTransitionError) as exc:
            manager.resolve("a1", admin)
        assert isinstance(exc.value, ValidationError)
        assert exc.value.from_status == "new"

    def test_analyst_cannot_resolve(self, manager, make_alert, analyst):
        make_alert("a1", status=AlertStatus.ACKNOWLEDGED)
        with pytest.raises(AuthorizationError):
            manager.resolve("a1", analyst)

    def test_resolved_cannot_be_escalated(self, manager, make_alert):
        make_alert("a1", status=AlertStatus.RESOLVED)
        with pytest.raises(InvalidTransitionError):
            manager.escalate("a1", "stale")


# ── Escalate ──────────────────────────────────────────────────────────

class TestEscalate:
    def test_escalate_raises_one_level(self, manager, make_alert, now):
        before = make_alert("a1", severity=AlertSeverity.MEDIUM)
        result = manager.escalate("a1", "Unacknowledged for 60 minutes")
        assert result.previous_severity is AlertSeverity.MEDIUM
        assert result.new_severity is AlertSeverity.HIGH
        assert result.escalated_at == now
        assert result.alert.status is AlertStatus.ESCALATED
        assert result.alert.escalation_reason == "Unacknowledged for 60 minutes"
        assert_preserved(before, result.alert)

    def test_critical_saturates(self, manager, make_alert):
        make_alert("a1", severity=AlertSeverity.CRITICAL)
        result = manager.escalate("a1", "stale")
        assert result.new_severity is AlertSeverity.CRITICAL
        assert result.alert.severity is AlertSeverity.CRITICAL

    def test_acknowledged_can_escalate(self, manager, make_alert, analyst):
        make_alert("a1", status=AlertStatus.ACKNOWLEDGED)
        assert manager.escalate("a1", "no progress", analyst).alert.status is AlertStatus.ESCALATED

    def test_already_escalated_rejected(self, manager, make_alert):
        make_alert("a1", status=AlertStatus.ESCALATED)
        with pytest.raises(InvalidTransitionError):
            manager.escalate("a1", "again")

    def test_viewer_cannot_escalate(self, manager, make_alert, viewer):
        make_alert("a1")
        with pytest.raises(AuthorizationError):
            manager.escalate("a1", "manual", viewer)


# ── Reads & Escalation Candidates ─────────────────────────────────────

class TestReads:
    def test_foreign_alert_reads_as_missing(self, manager, make_alert, other_bank_analyst):
        make_alert("a1")
        with pytest.raises(NotFoundError):
            manager.get_alert("a1", other_bank_analyst)

    def test_list_is_bank_scoped(self, manager, make_alert, analyst):
        make_alert("a1")
        make_alert("a2", bank_id=BANK_B)
        assert [a.id for a in manager.list_alerts(analyst)] == ["a1"]

    def test_alerts_for_escalation_scenario(self, manager, make_alert):
        make_alert("recent", minutes_ago=30)
        make_alert("stale", minutes_ago=90)
        make_alert("stale_ack", minutes_ago=90, status=AlertStatus.ACKNOWLEDGED)
        assert [a.id for a in manager.alerts_for_escalation(60)] == ["stale"]

    def test_alerts_for_escalation_uses_config_default(self, manager, make_alert):
        make_alert("exactly", minutes_ago=60)
        make_alert("young", minutes_ago=59)
        assert [a.id for a in manager.alerts_for_escalation()] == ["exactly"]

    def test_alerts_for_escalation_is_pure(self, make_alert, now):
        alerts = [make_alert("a", minutes_ago=120), make_alert("b", minutes_ago=10)]
        snapshot = [a.model_copy() for a in alerts]
        assert [a.id for a in alerts_for_escalation(alerts, 60, now)] == ["a"]
        assert alerts == snapshot

    def test_bank_filter(self, manager, make_alert):
        make_alert("a1", minutes_ago=120)
        make_alert("b1", minutes_ago=120, bank_id=BANK_B)
        assert [a.id for a in manager.alerts_for_escalation(60, bank_id=BANK_B)] == ["b1"]
