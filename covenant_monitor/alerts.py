"""
Alert generation for covenant monitoring.

Translates covenant status transitions into prioritised Alert records.
This module is the only place Alert records are created.
"""
import logging
import pandas as pd
from datetime import datetime
from typing import Dict, List, Optional

from covenant_monitor.config import MonitoringConfig
from covenant_monitor.evaluator import headroom_percentage
from covenant_monitor.exceptions import ValidationError
from covenant_monitor.models import (
    Alert, AlertSeverity, AlertStatus, AlertType, ComplianceStatus, Covenant,
    CovenantHealth, SEVERITY_LEVELS, STATUS_RANK, StatusChangeEvent,
)
from covenant_monitor.utils import stable_id, utcnow

logger = logging.getLogger(__name__)

ALERTING_STATUSES = (ComplianceStatus.WARNING, ComplianceStatus.BREACHED)


# ── Alert Rule Helpers ────────────────────────────────────────────────

def _alert_id(event: StatusChangeEvent, triggered_at: datetime) -> str:
    """Deterministic alert id for one transition of one covenant."""
    return stable_id(event.bank_id, event.covenant_id, event.new_status.value, triggered_at.isoformat())


def is_degradation(previous: ComplianceStatus, new: ComplianceStatus) -> bool:
    return STATUS_RANK[new] > STATUS_RANK[previous]


def should_alert(event: StatusChangeEvent) -> bool:
    """Alert iff the new status is warning/breached and worse than before."""
    return event.new_status in ALERTING_STATUSES and is_degradation(event.previous_status, event.new_status)


def determine_severity(
    status: ComplianceStatus,
    current_value: float,
    threshold_value: float,
    config: Optional[MonitoringConfig] = None,
) -> AlertSeverity:
    """Breaches are always CRITICAL; warnings are graded by headroom and never are."""
    config = config or MonitoringConfig()
    if status is ComplianceStatus.BREACHED:
        return AlertSeverity.CRITICAL

    headroom = headroom_percentage(current_value, threshold_value)
    if headroom <= config.severity_high_max_pct:
        return AlertSeverity.HIGH
    if headroom <= config.severity_medium_max_pct:
        return AlertSeverity.MEDIUM
    return AlertSeverity.LOW


def _title(event: StatusChangeEvent) -> str:
    status_text = "BREACH" if event.new_status is ComplianceStatus.BREACHED else "WARNING"
    return f"Covenant {status_text}: {event.covenant_name} ({event.metric_name})"


def _description(event: StatusChangeEvent) -> str:
    return (
        f"{event.covenant_name} ({event.metric_name}) has moved from "
        f"{event.previous_status.value} to {event.new_status.value}. "
        f"Current value: {event.current_value:.2f}, Threshold: {event.threshold_value:.2f}."
    )


# ── Main Alert Generation ─────────────────────────────────────────────

def generate_from_status_change(
    event: StatusChangeEvent,
    config: Optional[MonitoringConfig] = None,
    now: Optional[datetime] = None,
) -> Optional[Alert]:
    """Build the alert for a status transition, or None when no alert is due.

    No alert for unchanged or improving status.
    """
    if not should_alert(event):
        return None

    now = now or utcnow()
    alert = Alert(
        id=_alert_id(event, now),
        covenant_id=event.covenant_id,
        contract_id=event.contract_id,
        bank_id=event.bank_id,
        alert_type=AlertType.BREACH if event.new_status is ComplianceStatus.BREACHED else AlertType.WARNING,
        severity=determine_severity(event.new_status, event.current_value, event.threshold_value, config),
        title=_title(event),
        description=_description(event),
        trigger_metric_value=event.current_value,
        threshold_value=event.threshold_value,
        status=AlertStatus.NEW,
        triggered_at=now,
        created_at=now,
        updated_at=now,
    )
    logger.info(
        "Generated %s alert %s for covenant %s (%s -> %s, severity=%s)",
        alert.alert_type.value, alert.id, event.covenant_id,
        event.previous_status.value, event.new_status.value, alert.severity.value,
    )
    return alert


def process_health_update(
    covenant: Covenant,
    previous_health: Optional[CovenantHealth],
    new_health: CovenantHealth,
    config: Optional[MonitoringConfig] = None,
    now: Optional[datetime] = None,
) -> Optional[Alert]:
    """Compare stored and freshly computed health and emit an alert if due.

    A covenant without previous health counts as previously compliant.
    """
    if new_health.bank_id != covenant.bank_id or new_health.covenant_id != covenant.id:
        raise ValidationError(
            f"Health record does not belong to covenant {covenant.id}",
            details={"bank_id": "covenant and health must share a bank"},
        )
    if previous_health is not None and previous_health.bank_id != covenant.bank_id:
        raise ValidationError(
            f"Previous health for covenant {covenant.id} belongs to another bank",
            details={"bank_id": "cross-bank health record"},
        )

    previous_status = previous_health.status if previous_health else ComplianceStatus.COMPLIANT
    if previous_status is new_health.status:
        return None

    event = StatusChangeEvent(
        covenant_id=covenant.id,
        contract_id=covenant.contract_id,
        bank_id=covenant.bank_id,
        previous_status=previous_status,
        new_status=new_health.status,
        current_value=new_health.last_reported_value or 0.0,
        threshold_value=covenant.threshold_value or 0.0,
        covenant_name=covenant.covenant_name,
        metric_name=covenant.metric_name or "unknown",
        operator=covenant.operator,
    )
    return generate_from_status_change(event, config, now)


# ── Ordering & Statistics ─────────────────────────────────────────────

def sort_alerts(alerts: List[Alert]) -> List[Alert]:
    """CRITICAL first, then HIGH, MEDIUM, LOW; oldest first within a severity."""
    severity_order = {s: i for i, s in enumerate(reversed(SEVERITY_LEVELS))}
    return sorted(alerts, key=lambda a: (severity_order.get(a.severity, 4), a.triggered_at))


def alert_stats(alerts: List[Alert]) -> Dict:
    """Counts by status and by severity."""
    result = {
        "total": len(alerts),
        "new": 0,
        "acknowledged": 0,
        "resolved": 0,
        "escalated": 0,
        "by_severity": {s.value: 0 for s in SEVERITY_LEVELS},
    }
    if not alerts:
        return result

    df = pd.DataFrame([{"status": a.status.value, "severity": a.severity.value} for a in alerts])
    for status, count in df["status"].value_counts().items():
        result[status] = int(count)
    for severity, count in df["severity"].value_counts().items():
        result["by_severity"][severity] = int(count)
    return result
