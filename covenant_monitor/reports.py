"""
Portfolio risk reports: aggregation, validation and Excel export using openpyxl.

Reads contracts, covenant health and alerts for one bank from the data
store, rolls them up with pandas and persists the result as a report
record. The summarizer only contributes an optional narrative.
"""
import io
import logging
import pandas as pd
from openpyxl import Workbook
from openpyxl.styles import Font, PatternFill, Alignment
from openpyxl.utils.dataframe import dataframe_to_rows
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, Union
from pydantic import BaseModel, Field

from covenant_monitor.alerts import sort_alerts
from covenant_monitor.authorization import require_permission
from covenant_monitor.collaborators import DataStore, Summarizer
from covenant_monitor.config import MonitoringConfig
from covenant_monitor.exceptions import NotFoundError
from covenant_monitor.models import (
    Action, Alert, AlertType, AlertStatus, AuthUser, Borrower, ComplianceStatus, Contract,
    CovenantHealth, ReportType, Resource, RiskAssessment, Trend,
)
from covenant_monitor.utils import as_utc, records_frame, utcnow
from covenant_monitor.validation import check_report_request, ensure_valid

logger = logging.getLogger(__name__)

# Risk score weights per covenant
BREACHED_WEIGHT = 10
WARNING_WEIGHT = 5
DETERIORATING_WEIGHT = 2
MAX_RISK_SCORE = 10.0

AT_RISK_CONTRACT_SHARE = 0.2
DETERIORATING_COVENANT_SHARE = 0.3


# ── Report Models ─────────────────────────────────────────────────────

class ReportRequest(BaseModel):
    report_type: ReportType
    start_date: date
    end_date: date
    borrower_id: Optional[str] = None
    include_summary: bool = True


class BreachStatistics(BaseModel):
    new_breaches: int = 0
    resolved_breaches: int = 0
    ongoing_breaches: int = 0
    breach_rate: float = Field(0.0, description="Ongoing breaches as % of covenants")


class BorrowerRiskProfile(BaseModel):
    borrower_id: str
    borrower_name: str
    risk_score: float
    covenant_status: ComplianceStatus
    principal_at_risk: float = 0.0


class TrendAnalysis(BaseModel):
    improving_covenants: int = 0
    stable_covenants: int = 0
    deteriorating_covenants: int = 0
    overall_trend: Trend = Trend.STABLE


class ReportData(BaseModel):
    total_contracts: int = 0
    contracts_at_risk: int = 0
    total_principal: float = 0.0

    total_covenants: int = 0
    covenants_breached: int = 0
    covenants_warning: int = 0
    covenants_compliant: int = 0

    breach_statistics: BreachStatistics = Field(default_factory=BreachStatistics)
    borrower_risk_profiles: List[BorrowerRiskProfile] = Field(default_factory=list)
    trend_analysis: TrendAnalysis = Field(default_factory=TrendAnalysis)

    executive_summary: Optional[str] = None
    key_risks: List[str] = Field(default_factory=list)
    recommendations: List[str] = Field(default_factory=list)


class GeneratedReport(BaseModel):
    id: str
    bank_id: str
    report_type: ReportType
    report_date: datetime
    period_start: date
    period_end: date
    borrower_id: Optional[str] = None
    generated_by: Optional[str] = None
    narrative_available: bool = False
    created_at: datetime
    report_data: ReportData


class ReportValidation(BaseModel):
    is_valid: bool
    errors: List[str] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


# ── Aggregation Helpers ───────────────────────────────────────────────

def borrower_risk_score(health_df: pd.DataFrame) -> float:
    """Weighted 0-10 score: breached 10, warning 5, deteriorating trend 2, per covenant."""
    if health_df.empty:
        return 0.0
    breached = (health_df["status"] == ComplianceStatus.BREACHED.value).sum()
    warning = (health_df["status"] == ComplianceStatus.WARNING.value).sum()
    deteriorating = (health_df["trend"] == Trend.DETERIORATING.value).sum()
    raw = (breached * BREACHED_WEIGHT + warning * WARNING_WEIGHT + deteriorating * DETERIORATING_WEIGHT) / len(health_df)
    return min(MAX_RISK_SCORE, round(float(raw), 2))


def worst_status(statuses) -> ComplianceStatus:
    statuses = set(statuses)
    if ComplianceStatus.BREACHED.value in statuses:
        return ComplianceStatus.BREACHED
    if ComplianceStatus.WARNING.value in statuses:
        return ComplianceStatus.WARNING
    return ComplianceStatus.COMPLIANT


def trend_analysis(health_df: pd.DataFrame) -> TrendAnalysis:
    counts = health_df["trend"].value_counts() if not health_df.empty else pd.Series(dtype=int)
    improving = int(counts.get(Trend.IMPROVING.value, 0))
    stable = int(counts.get(Trend.STABLE.value, 0))
    deteriorating = int(counts.get(Trend.DETERIORATING.value, 0))

    # Strict plurality, otherwise stable
    overall = Trend.STABLE
    if deteriorating > improving and deteriorating > stable:
        overall = Trend.DETERIORATING
    elif improving > deteriorating and improving > stable:
        overall = Trend.IMPROVING
    return TrendAnalysis(
        improving_covenants=improving,
        stable_covenants=stable,
        deteriorating_covenants=deteriorating,
        overall_trend=overall,
    )


def breach_statistics(alerts_df: pd.DataFrame, health_df: pd.DataFrame) -> BreachStatistics:
    breaches = alerts_df[alerts_df["alert_type"] == AlertType.BREACH.value] if not alerts_df.empty else alerts_df
    ongoing = int((health_df["status"] == ComplianceStatus.BREACHED.value).sum()) if not health_df.empty else 0
    total = len(health_df)
    return BreachStatistics(
        new_breaches=int((breaches["status"] == AlertStatus.NEW.value).sum()) if not breaches.empty else 0,
        resolved_breaches=int((breaches["status"] == AlertStatus.RESOLVED.value).sum()) if not breaches.empty else 0,
        ongoing_breaches=ongoing,
        breach_rate=round(ongoing / total * 100, 2) if total else 0.0,
    )


def executive_summary(data: ReportData, narrative: Optional[str] = None) -> str:
    at_risk_pct = data.contracts_at_risk / max(data.total_contracts, 1) * 100
    summary = (
        f"Portfolio contains {data.total_contracts} contracts with total principal of "
        f"${data.total_principal:,.0f}. "
        f"{data.contracts_at_risk} contracts ({at_risk_pct:.1f}%) are currently at risk. "
        f"Of {data.total_covenants} covenants monitored, {data.covenants_breached} are breached "
        f"and {data.covenants_warning} are at warning status. "
        f"Overall portfolio trend is {data.trend_analysis.overall_trend.value}."
    )
    if narrative:
        summary += f"\n\nRisk Analysis: {narrative}"
    return summary


def basic_risks(data: ReportData, config: Optional[MonitoringConfig] = None) -> List[str]:
    config = config or MonitoringConfig()
    risks = []
    if data.breach_statistics.breach_rate > config.breach_rate_alert_pct:
        risks.append(f"High breach rate of {data.breach_statistics.breach_rate}%")
    if data.contracts_at_risk > data.total_contracts * AT_RISK_CONTRACT_SHARE:
        risks.append(f"{data.contracts_at_risk} contracts at risk (>{AT_RISK_CONTRACT_SHARE:.0%} of portfolio)")
    if data.trend_analysis.overall_trend is Trend.DETERIORATING:
        risks.append("Overall portfolio trend is deteriorating")
    if data.trend_analysis.deteriorating_covenants > data.total_covenants * DETERIORATING_COVENANT_SHARE:
        risks.append(f"{data.trend_analysis.deteriorating_covenants} covenants showing deteriorating trends")
    high_risk = [b for b in data.borrower_risk_profiles if b.risk_score > config.high_risk_score]
    if high_risk:
        risks.append(f"{len(high_risk)} borrowers with high risk scores (>{config.high_risk_score:g})")
    return risks or ["No significant risks identified"]


def basic_recommendations(data: ReportData, config: Optional[MonitoringConfig] = None) -> List[str]:
    config = config or MonitoringConfig()
    actions = []
    if data.covenants_breached > 0:
        actions.append("Review and address all breached covenants immediately")
    if data.covenants_warning > 0:
        actions.append("Monitor warning-status covenants closely for potential breaches")
    if data.trend_analysis.deteriorating_covenants > 0:
        actions.append("Investigate root causes of deteriorating covenant trends")
    high_risk = [b for b in data.borrower_risk_profiles if b.risk_score > config.high_risk_score]
    if high_risk:
        actions.append(f"Conduct detailed review of {len(high_risk)} high-risk borrowers")
    if data.breach_statistics.new_breaches > 0:
        actions.append(f"Address {data.breach_statistics.new_breaches} new breach alerts")
    return actions or ["Continue regular monitoring"]


# ── Aggregator ────────────────────────────────────────────────────────

class ReportAggregator:
    def __init__(
        self,
        store: DataStore,
        summarizer: Optional[Summarizer] = None,
        config: Optional[MonitoringConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.summarizer = summarizer
        self.config = config or MonitoringConfig()
        self.clock = clock

    def _frames(self, bank_id: str, request: ReportRequest) -> Tuple[pd.DataFrame, pd.DataFrame, pd.DataFrame, List[Borrower]]:
        contract_filters: Dict[str, Any] = {"bank_id": bank_id}
        borrower_filters: Dict[str, Any] = {"bank_id": bank_id}
        if request.borrower_id:
            contract_filters["borrower_id"] = request.borrower_id
            borrower_filters["id"] = request.borrower_id

        borrowers = [Borrower.model_validate(r) for r in self.store.get("borrowers", borrower_filters)]
        if request.borrower_id and not borrowers:
            raise NotFoundError("Borrower", request.borrower_id, bank_id=bank_id)

        contracts = [Contract.model_validate(r) for r in self.store.get("contracts", contract_filters)]
        contract_ids = {c.id for c in contracts}
        health = [
            CovenantHealth.model_validate(r)
            for r in self.store.get("covenant_health", {"bank_id": bank_id})
            if r.get("contract_id") in contract_ids
        ]
        alerts = [
            Alert.model_validate(r)
            for r in self.store.get("alerts", {"bank_id": bank_id})
            if r.get("contract_id") in contract_ids
        ]
        alerts = [a for a in alerts if request.start_date <= as_utc(a.triggered_at).date() <= request.end_date]

        contracts_df = records_frame(
            ({"id": c.id, "borrower_id": c.borrower_id, "principal_amount": c.principal_amount,
              "status": c.status.value} for c in contracts),
            ["id", "borrower_id", "principal_amount", "status"],
        )
        health_df = records_frame(
            ({"covenant_id": h.covenant_id, "contract_id": h.contract_id, "status": h.status.value,
              "trend": h.trend.value} for h in health),
            ["covenant_id", "contract_id", "status", "trend"],
        )
        alerts_df = records_frame(
            ({"id": a.id, "alert_type": a.alert_type.value, "status": a.status.value,
              "severity": a.severity.value} for a in alerts),
            ["id", "alert_type", "status", "severity"],
        )
        return contracts_df, health_df, alerts_df, borrowers

    def gather(self, bank_id: str, request: ReportRequest) -> ReportData:
        contracts_df, health_df, alerts_df, borrowers = self._frames(bank_id, request)
        at_risk_mask = contracts_df["status"].isin(self.config.contract_at_risk_statuses)
        status_counts = health_df["status"].value_counts()

        profiles = []
        for borrower in borrowers:
            b_contracts = contracts_df[contracts_df["borrower_id"] == borrower.id]
            b_health = health_df[health_df["contract_id"].isin(b_contracts["id"])]
            b_at_risk = b_contracts[b_contracts["status"].isin(self.config.contract_at_risk_statuses)]
            profiles.append(BorrowerRiskProfile(
                borrower_id=borrower.id,
                borrower_name=borrower.legal_name,
                risk_score=borrower_risk_score(b_health),
                covenant_status=worst_status(b_health["status"]),
                principal_at_risk=float(b_at_risk["principal_amount"].fillna(0).sum()),
            ))

        return ReportData(
            total_contracts=len(contracts_df),
            contracts_at_risk=int(at_risk_mask.sum()),
            total_principal=float(contracts_df["principal_amount"].fillna(0).sum()),
            total_covenants=len(health_df),
            covenants_breached=int(status_counts.get(ComplianceStatus.BREACHED.value, 0)),
            covenants_warning=int(status_counts.get(ComplianceStatus.WARNING.value, 0)),
            covenants_compliant=int(status_counts.get(ComplianceStatus.COMPLIANT.value, 0)),
            breach_statistics=breach_statistics(alerts_df, health_df),
            borrower_risk_profiles=profiles,
            trend_analysis=trend_analysis(health_df),
        )

    def _assess(self, data: ReportData, request: ReportRequest) -> Optional[RiskAssessment]:
        """Summarizer output, or None when unavailable. Never raises."""
        if self.summarizer is None or not request.include_summary:
            return None
        snapshot = data.model_dump(
            mode="json",
            exclude={"executive_summary", "key_risks", "recommendations", "borrower_risk_profiles"},
        )
        context = {
            "report_type": request.report_type.value,
            "period": f"{request.start_date.isoformat()} to {request.end_date.isoformat()}",
        }
        try:
            return self.summarizer.analyze_risk(snapshot, context)
        except Exception as exc:
            logger.warning("Summarizer failed, report generated without narrative: %s", exc)
            return None

    def generate_report(
        self,
        user: Optional[AuthUser],
        request: Union[ReportRequest, Dict[str, Any]],
    ) -> GeneratedReport:
        """Aggregate, summarize and persist a report for the user's bank.

        ``borrower_deep_dive`` narrows every figure to one borrower.
        ``covenant_analysis`` uses the same portfolio-wide aggregation as
        ``portfolio_summary``; only the stored report type differs.
        """
        require_permission(user, Resource.REPORTS, Action.CREATE)
        if not isinstance(request, ReportRequest):
            ensure_valid(check_report_request(request))
            request = ReportRequest.model_validate(request)
        else:
            ensure_valid(check_report_request(request.model_dump()))

        data = self.gather(user.bank_id, request)
        assessment = self._assess(data, request)
        narrative = assessment.narrative_summary if assessment else None
        data.executive_summary = executive_summary(data, narrative)
        data.key_risks = (assessment.risk_factors if assessment else None) or basic_risks(data, self.config)
        data.recommendations = (
            (assessment.recommended_actions if assessment else None) or basic_recommendations(data, self.config)
        )

        now = self.clock()
        record = self.store.post("reports", {
            "bank_id": user.bank_id,
            "report_type": request.report_type,
            "report_date": now,
            "period_start": request.start_date,
            "period_end": request.end_date,
            "borrower_id": request.borrower_id,
            "generated_by": user.id,
            "narrative_available": bool(narrative),
            "created_at": now,
            "report_data": data.model_dump(),
        })
        report = GeneratedReport.model_validate(record)
        logger.info(
            "Report %s (%s) generated for bank %s by %s: %d contracts, %d covenants",
            report.id, request.report_type.value, user.bank_id, user.id,
            data.total_contracts, data.total_covenants,
        )
        return report


# ── Report Checks ─────────────────────────────────────────────────────

def validate_report_accuracy(report: GeneratedReport) -> ReportValidation:
    """Internal consistency of a generated report."""
    errors, warnings = [], []
    data = report.report_data

    for field in ("total_contracts", "contracts_at_risk", "total_principal", "total_covenants"):
        if getattr(data, field) < 0:
            errors.append(f"{field} cannot be negative")
    if data.contracts_at_risk > data.total_contracts:
        errors.append("Contracts at risk exceeds total contracts")
    if data.covenants_breached + data.covenants_warning + data.covenants_compliant != data.total_covenants:
        warnings.append("Covenant status counts do not sum to total covenants")
    if not 0 <= data.breach_statistics.breach_rate <= 100:
        errors.append("Breach rate must be between 0 and 100")
    for idx, profile in enumerate(data.borrower_risk_profiles, start=1):
        if not 0 <= profile.risk_score <= MAX_RISK_SCORE:
            errors.append(f"Borrower {idx} has invalid risk score (must be 0-10)")
    if not data.executive_summary:
        warnings.append("Executive summary is missing")
    return ReportValidation(is_valid=not errors, errors=errors, warnings=warnings)


REQUIRED_REPORT_FIELDS = (
    "id", "report_type", "report_date", "created_at",
    "report_data.total_contracts", "report_data.contracts_at_risk", "report_data.total_principal",
    "report_data.breach_statistics.new_breaches", "report_data.breach_statistics.resolved_breaches",
    "report_data.breach_statistics.ongoing_breaches", "report_data.breach_statistics.breach_rate",
    "report_data.borrower_risk_profiles",
    "report_data.trend_analysis.improving_covenants", "report_data.trend_analysis.stable_covenants",
    "report_data.trend_analysis.deteriorating_covenants", "report_data.trend_analysis.overall_trend",
)


def validate_report_completeness(report: Union[GeneratedReport, Dict[str, Any]]) -> Tuple[bool, List[str]]:
    """(is_complete, missing dotted field paths)."""
    raw = report.model_dump() if isinstance(report, GeneratedReport) else report
    missing = []
    for path in REQUIRED_REPORT_FIELDS:
        node: Any = raw
        for part in path.split("."):
            node = node.get(part) if isinstance(node, dict) else None
        if node is None or node == "":
            missing.append(path)
    return not missing, missing


# ── Excel Export ──────────────────────────────────────────────────────

HEADER_FONT = Font(bold=True, color="FFFFFF", size=11)
HEADER_FILL = PatternFill(start_color="1F4E79", end_color="1F4E79", fill_type="solid")
TITLE_FONT = Font(bold=True, size=14)
SUBTITLE_FONT = Font(bold=True, size=12)


def _style_header_row(ws, row_num, max_col):
    for col in range(1, max_col + 1):
        cell = ws.cell(row=row_num, column=col)
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center")


def _write_df_to_sheet(ws, df, start_row=1):
    """Write a DataFrame with a styled header; returns the next free row."""
    for r_idx, row in enumerate(dataframe_to_rows(df, index=False, header=True), start=start_row):
        for c_idx, value in enumerate(row, start=1):
            ws.cell(row=r_idx, column=c_idx, value=value)
    _style_header_row(ws, start_row, len(df.columns))
    for col_idx, col_name in enumerate(df.columns, start=1):
        ws.column_dimensions[ws.cell(row=start_row, column=col_idx).column_letter].width = max(
            len(str(col_name)) + 4, 14
        )
    return start_row + len(df) + 1


def _write_metric(ws, row, label, value):
    ws.cell(row=row, column=1, value=label).font = Font(bold=True)
    ws.cell(row=row, column=2, value=value)


def _write_list(ws, row, title, items) -> int:
    ws.cell(row=row, column=1, value=title).font = SUBTITLE_FONT
    row += 1
    for item in items:
        ws.cell(row=row, column=1, value=f"- {item}")
        row += 1
    return row + 1


def export_report_workbook(report: GeneratedReport, alerts: Optional[List[Alert]] = None) -> bytes:
    """
    Render a generated report as an Excel workbook.

    Sheets: Summary, Borrower Risk, and Alerts when ``alerts`` is given.
    """
    data = report.report_data
    wb = Workbook()

    ws = wb.active
    ws.title = "Summary"
    ws.cell(row=1, column=1, value=f"Covenant Risk Report: {report.report_type.value}").font = TITLE_FONT
    ws.cell(row=2, column=1, value=f"Period: {report.period_start:%Y-%m-%d} to {report.period_end:%Y-%m-%d}")
    ws.cell(row=3, column=1, value=f"Generated: {report.report_date:%Y-%m-%d %H:%M}")

    row_num = 5
    _write_metric(ws, row_num, "Total Contracts", data.total_contracts); row_num += 1
    _write_metric(ws, row_num, "Contracts at Risk", data.contracts_at_risk); row_num += 1
    _write_metric(ws, row_num, "Total Principal", data.total_principal); row_num += 1
    _write_metric(ws, row_num, "Covenants Monitored", data.total_covenants); row_num += 1
    _write_metric(ws, row_num, "Breached", data.covenants_breached); row_num += 1
    _write_metric(ws, row_num, "Warning", data.covenants_warning); row_num += 1
    _write_metric(ws, row_num, "Compliant", data.covenants_compliant); row_num += 1
    _write_metric(ws, row_num, "Breach Rate (%)", data.breach_statistics.breach_rate); row_num += 1
    _write_metric(ws, row_num, "New Breaches", data.breach_statistics.new_breaches); row_num += 1
    _write_metric(ws, row_num, "Overall Trend", data.trend_analysis.overall_trend.value); row_num += 2

    if data.executive_summary:
        ws.cell(row=row_num, column=1, value="Executive Summary").font = SUBTITLE_FONT; row_num += 1
        ws.cell(row=row_num, column=1, value=data.executive_summary); row_num += 2
    row_num = _write_list(ws, row_num, "Key Risks", data.key_risks)
    _write_list(ws, row_num, "Recommendations", data.recommendations)

    ws_risk = wb.create_sheet("Borrower Risk")
    risk_rows = [{
        "Borrower": p.borrower_name,
        "Borrower ID": p.borrower_id,
        "Risk Score": p.risk_score,
        "Covenant Status": p.covenant_status.value,
        "Principal at Risk": p.principal_at_risk,
    } for p in sorted(data.borrower_risk_profiles, key=lambda p: -p.risk_score)]
    df_risk = pd.DataFrame(risk_rows, columns=["Borrower", "Borrower ID", "Risk Score", "Covenant Status", "Principal at Risk"])
    _write_df_to_sheet(ws_risk, df_risk)

    if alerts:
        ws_alerts = wb.create_sheet("Alerts")
        alert_rows = [{
            "Severity": a.severity.value,
            "Type": a.alert_type.value,
            "Status": a.status.value,
            "Alert": a.title,
            "Current Value": a.trigger_metric_value,
            "Threshold": a.threshold_value,
            "Triggered": as_utc(a.triggered_at).strftime("%Y-%m-%d %H:%M"),
        } for a in sort_alerts(alerts)]
        _write_df_to_sheet(ws_alerts, pd.DataFrame(alert_rows))

    buffer = io.BytesIO()
    wb.save(buffer)
    return buffer.getvalue()
