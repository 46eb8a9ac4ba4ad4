"""
Alert lifecycle: acknowledgment, resolution and escalation.

State machine:
    new          -> acknowledged | escalated
    acknowledged -> resolved | escalated
    escalated    -> acknowledged
    resolved     -> (terminal)

Every transition is applied to the data store as one put against the
alert id; fields outside the transition are never touched.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, FrozenSet, Iterable, List, Mapping, Optional
from types import MappingProxyType

from covenant_monitor.authorization import can_access_bank_resource, require_permission
from covenant_monitor.collaborators import DataStore, fetch_one
from covenant_monitor.config import MonitoringConfig
from covenant_monitor.exceptions import AuthorizationError, InvalidTransitionError, NotFoundError
from covenant_monitor.models import (
    Action, Alert, AlertSeverity, AlertStatus, AuthUser, EscalationResult, Resource, SEVERITY_LEVELS,
)
from covenant_monitor.utils import as_utc, utcnow

logger = logging.getLogger(__name__)

ALERT_TRANSITIONS: Mapping[AlertStatus, FrozenSet[AlertStatus]] = MappingProxyType({
    AlertStatus.NEW: frozenset({AlertStatus.ACKNOWLEDGED, AlertStatus.ESCALATED}),
    AlertStatus.ACKNOWLEDGED: frozenset({AlertStatus.RESOLVED, AlertStatus.ESCALATED}),
    AlertStatus.ESCALATED: frozenset({AlertStatus.ACKNOWLEDGED}),
    AlertStatus.RESOLVED: frozenset(),
})


def can_transition(current: AlertStatus, target: AlertStatus) -> bool:
    return target in ALERT_TRANSITIONS[current]


def next_severity(severity: AlertSeverity) -> AlertSeverity:
    """One level up, saturating at CRITICAL."""
    idx = SEVERITY_LEVELS.index(severity)
    return SEVERITY_LEVELS[min(idx + 1, len(SEVERITY_LEVELS) - 1)]


def alerts_for_escalation(
    alerts: Iterable[Alert],
    threshold_minutes: float,
    now: Optional[datetime] = None,
) -> List[Alert]:
    """NEW alerts triggered at least ``threshold_minutes`` ago. Pure filter."""
    now = as_utc(now or utcnow())
    cutoff = now - timedelta(minutes=threshold_minutes)
    return [
        a for a in alerts
        if a.status is AlertStatus.NEW and as_utc(a.triggered_at) <= cutoff
    ]


class AlertLifecycleManager:
    """Owns every mutation of an alert after it has been generated."""

    def __init__(
        self,
        store: DataStore,
        config: Optional[MonitoringConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.config = config or MonitoringConfig()
        self.clock = clock

    # ── Reads ─────────────────────────────────────────────────────────

    def _load(self, alert_id: str) -> Alert:
        return Alert.model_validate(fetch_one(self.store, "alerts", alert_id, "Alert"))

    def get_alert(self, alert_id: str, user: Optional[AuthUser]) -> Alert:
        """Alert visible to ``user``. Other banks' alerts read as missing."""
        alert = self._load(alert_id)
        if user is not None and not can_access_bank_resource(user, alert.bank_id):
            raise NotFoundError("Alert", alert_id, bank_id=user.bank_id)
        require_permission(user, Resource.ALERTS, Action.READ, alert.bank_id)
        return alert

    def list_alerts(self, user: Optional[AuthUser], status: Optional[AlertStatus] = None) -> List[Alert]:
        require_permission(user, Resource.ALERTS, Action.READ)
        filters: Dict[str, Any] = {"bank_id": user.bank_id}
        if status is not None:
            filters["status"] = status
        return [Alert.model_validate(r) for r in self.store.get("alerts", filters)]

    def alerts_for_escalation(
        self,
        threshold_minutes: Optional[float] = None,
        bank_id: Optional[str] = None,
    ) -> List[Alert]:
        """Unacknowledged alerts older than the threshold. Nothing is mutated."""
        if threshold_minutes is None:
            threshold_minutes = self.config.escalation_threshold_minutes
        filters: Dict[str, Any] = {"status": AlertStatus.NEW}
        if bank_id is not None:
            filters["bank_id"] = bank_id
        alerts = [Alert.model_validate(r) for r in self.store.get("alerts", filters)]
        return alerts_for_escalation(alerts, threshold_minutes, self.clock())

    # ── Transitions ───────────────────────────────────────────────────

    def _apply(self, alert: Alert, target: AlertStatus, changes: Dict[str, Any]) -> Alert:
        if not can_transition(alert.status, target):
            raise InvalidTransitionError(alert.id, alert.status.value, target.value)
        payload = {**changes, "status": target}
        record = self.store.put("alerts", alert.id, payload)
        return Alert.model_validate(record)

    def acknowledge(
        self,
        alert_id: str,
        user: Optional[AuthUser],
        resolution_notes: Optional[str] = None,
    ) -> Alert:
        """new/escalated -> acknowledged, stamped with who and when."""
        if user is None:
            raise AuthorizationError(None, Resource.ALERTS.value, Action.ACKNOWLEDGE.value)
        alert = self._load(alert_id)
        require_permission(user, Resource.ALERTS, Action.ACKNOWLEDGE, alert.bank_id)

        now = self.clock()
        changes: Dict[str, Any] = {
            "acknowledged_at": now,
            "acknowledged_by": user.id,
            "updated_at": now,
        }
        if resolution_notes is not None:
            changes["resolution_notes"] = resolution_notes
        updated = self._apply(alert, AlertStatus.ACKNOWLEDGED, changes)
        logger.info("Alert %s acknowledged by %s", alert_id, user.id)
        return updated

    def resolve(
        self,
        alert_id: str,
        user: Optional[AuthUser],
        resolution_notes: Optional[str] = None,
    ) -> Alert:
        """acknowledged -> resolved. Terminal."""
        alert = self._load(alert_id)
        require_permission(user, Resource.ALERTS, Action.RESOLVE, alert.bank_id)

        changes: Dict[str, Any] = {"updated_at": self.clock()}
        if resolution_notes is not None:
            changes["resolution_notes"] = resolution_notes
        updated = self._apply(alert, AlertStatus.RESOLVED, changes)
        logger.info("Alert %s resolved by %s", alert_id, user.id)
        return updated

    def escalate(
        self,
        alert_id: str,
        reason: str,
        user: Optional[AuthUser] = None,
    ) -> EscalationResult:
        """new/acknowledged -> escalated, raising severity one level.

        ``user`` is None when the escalation policy scheduler calls in;
        a user-initiated escalation needs the escalate permission.
        """
        alert = self._load(alert_id)
        if user is not None:
            require_permission(user, Resource.ALERTS, Action.ESCALATE, alert.bank_id)

        now = self.clock()
        new_sev = next_severity(alert.severity)
        updated = self._apply(alert, AlertStatus.ESCALATED, {
            "severity": new_sev,
            "escalated_at": now,
            "escalation_reason": reason,
            "updated_at": now,
        })
        logger.info(
            "Alert %s escalated %s -> %s: %s",
            alert_id, alert.severity.value, new_sev.value, reason,
        )
        return EscalationResult(
            alert_id=alert_id,
            previous_severity=alert.severity,
            new_severity=new_sev,
            escalated_at=now,
            reason=reason,
            alert=updated,
        )
