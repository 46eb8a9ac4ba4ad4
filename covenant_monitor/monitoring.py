"""
Recomputation pipeline: metrics -> health -> alert.

Run per covenant whenever new financials arrive:
    1. Load covenant, contract and the borrower's latest metric periods
    2. Read the stored health (before anything is overwritten)
    3. Evaluate the new health and upsert it
    4. Hand the transition to the alert generator and persist any alert
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple
from pydantic import BaseModel, Field

from covenant_monitor.alerts import process_health_update
from covenant_monitor.authorization import require_permission
from covenant_monitor.collaborators import DataStore, Summarizer, fetch_one
from covenant_monitor.config import MonitoringConfig
from covenant_monitor.evaluator import evaluate_covenant, metric_value
from covenant_monitor.exceptions import AuthorizationError, CollaboratorError, NotFoundError, ValidationError
from covenant_monitor.models import (
    Action, Alert, AuthUser, Contract, Covenant, CovenantHealth, CovenantType,
    FinancialMetrics, Resource,
)
from covenant_monitor.utils import as_utc, utcnow

logger = logging.getLogger(__name__)


class SweepResult(BaseModel):
    """Outcome of recomputing several covenants. Failures never abort the sweep."""
    borrower_id: str
    health: List[CovenantHealth] = Field(default_factory=list)
    alerts: List[Alert] = Field(default_factory=list)
    skipped: List[str] = Field(default_factory=list, description="Non-financial covenant ids")
    failures: Dict[str, str] = Field(default_factory=dict, description="covenant id -> error message")

    @property
    def succeeded(self) -> int:
        return len(self.health)


class CovenantMonitor:
    def __init__(
        self,
        store: DataStore,
        config: Optional[MonitoringConfig] = None,
        clock: Callable[[], datetime] = utcnow,
        summarizer: Optional[Summarizer] = None,
    ):
        self.store = store
        self.config = config or MonitoringConfig()
        self.clock = clock
        self.summarizer = summarizer

    # ── Reads ─────────────────────────────────────────────────────────

    def metric_history(self, covenant: Covenant, contract: Contract) -> List[FinancialMetrics]:
        """Latest ``trend_periods`` metric records for the borrower, oldest first."""
        rows = self.store.get("financial_metrics", {
            "borrower_id": contract.borrower_id,
            "bank_id": covenant.bank_id,
        })
        periods = sorted((FinancialMetrics.model_validate(r) for r in rows), key=lambda m: m.period_date)
        return periods[-self.config.trend_periods:]

    def current_health(self, covenant_id: str) -> Optional[CovenantHealth]:
        rows = self.store.get("covenant_health", {"covenant_id": covenant_id})
        if not rows:
            return None
        records = [CovenantHealth.model_validate(r) for r in rows]
        return max(records, key=lambda h: as_utc(h.last_calculated))

    # ── Recompute ─────────────────────────────────────────────────────

    def _risk_note(self, covenant: Covenant, health: CovenantHealth) -> Optional[str]:
        if self.summarizer is None:
            return None
        snapshot: Dict[str, Any] = {
            "covenant_name": covenant.covenant_name,
            "metric_name": covenant.metric_name,
            "operator": covenant.operator.value,
            "threshold_value": covenant.threshold_value,
            "current_value": health.last_reported_value,
            "status": health.status.value,
            "trend": health.trend.value,
            "days_to_breach": health.days_to_breach,
        }
        try:
            return self.summarizer.analyze_risk(snapshot).narrative_summary or None
        except Exception as exc:
            logger.warning("Risk summary unavailable for covenant %s: %s", covenant.id, exc)
            return None

    def _save_health(self, previous: Optional[CovenantHealth], health: CovenantHealth) -> CovenantHealth:
        payload = health.model_dump(exclude={"id"})
        if previous is not None and previous.id:
            record = self.store.put("covenant_health", previous.id, payload)
        else:
            record = self.store.post("covenant_health", payload)
        return CovenantHealth.model_validate(record)

    def recompute_covenant(
        self,
        covenant_id: str,
        user: Optional[AuthUser] = None,
    ) -> Tuple[CovenantHealth, Optional[Alert]]:
        """Re-evaluate one covenant from stored financials.

        ``user`` is None for scheduler-driven runs. Returns the stored
        health and the alert raised by the transition, if any.
        """
        covenant = Covenant.model_validate(fetch_one(self.store, "covenants", covenant_id, "Covenant"))
        if user is not None:
            require_permission(user, Resource.COVENANTS, Action.UPDATE, covenant.bank_id)
        contract = Contract.model_validate(fetch_one(self.store, "contracts", covenant.contract_id, "Contract"))
        if contract.bank_id != covenant.bank_id:
            raise ValidationError(
                f"Covenant {covenant.id} and contract {contract.id} belong to different banks",
                details={"bank_id": "tenant mismatch"},
            )

        periods = self.metric_history(covenant, contract)
        history = [metric_value(m, covenant.metric_name) for m in periods]
        confidences = [m.data_confidence for m in periods]

        previous = self.current_health(covenant.id)
        now = self.clock()
        health = evaluate_covenant(covenant, history, self.config, now, confidences)
        health.risk_assessment = self._risk_note(covenant, health)

        # Alert is posted before the health write; a failed post leaves the
        # previous status stored.
        alert = process_health_update(covenant, previous, health, self.config, now)
        if alert is not None:
            self.store.post("alerts", alert.model_dump())
        stored = self._save_health(previous, health)

        logger.info(
            "Covenant %s recomputed: %s -> %s (trend=%s, buffer=%.2f%%)",
            covenant.id,
            previous.status.value if previous else "none",
            stored.status.value, stored.trend.value, stored.buffer_percentage,
        )
        return stored, alert

    def recompute_for_borrower(self, borrower_id: str, user: Optional[AuthUser] = None) -> SweepResult:
        """Recompute every financial covenant on a borrower's contracts."""
        result = SweepResult(borrower_id=borrower_id)
        filters: Dict[str, Any] = {"borrower_id": borrower_id}
        if user is not None:
            filters["bank_id"] = user.bank_id

        for contract_row in self.store.get("contracts", filters):
            for row in self.store.get("covenants", {"contract_id": contract_row["id"]}):
                covenant = Covenant.model_validate(row)
                if covenant.covenant_type is not CovenantType.FINANCIAL:
                    result.skipped.append(covenant.id)
                    continue
                try:
                    health, alert = self.recompute_covenant(covenant.id, user)
                except (ValidationError, NotFoundError, AuthorizationError, CollaboratorError) as exc:
                    logger.exception("Recompute failed for covenant %s", covenant.id)
                    result.failures[covenant.id] = str(exc)
                    continue
                result.health.append(health)
                if alert is not None:
                    result.alerts.append(alert)

        logger.info(
            "Borrower %s sweep: %d recomputed, %d alerts, %d failed, %d skipped",
            borrower_id, result.succeeded, len(result.alerts), len(result.failures), len(result.skipped),
        )
        return result
