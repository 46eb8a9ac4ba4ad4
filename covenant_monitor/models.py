from datetime import date, datetime
from typing import Optional, List, Dict, Any
from enum import Enum
from pydantic import BaseModel, Field, field_validator


# ── Enumerations ──────────────────────────────────────────────────────

class Operator(str, Enum):
    LT = "<"
    LE = "<="
    GT = ">"
    GE = ">="
    EQ = "="
    NE = "!="

    @property
    def is_ordered(self) -> bool:
        return self in (Operator.LT, Operator.LE, Operator.GT, Operator.GE)

    @property
    def is_upper_bound(self) -> bool:
        """True when the covenant caps the metric (value must stay below)."""
        return self in (Operator.LT, Operator.LE)


class CovenantType(str, Enum):
    FINANCIAL = "financial"
    OPERATIONAL = "operational"
    REPORTING = "reporting"
    OTHER = "other"


class CheckFrequency(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUALLY = "annually"
    ON_DEMAND = "on_demand"


class ComplianceStatus(str, Enum):
    COMPLIANT = "compliant"
    WARNING = "warning"
    BREACHED = "breached"


class Trend(str, Enum):
    IMPROVING = "improving"
    STABLE = "stable"
    DETERIORATING = "deteriorating"


class AlertType(str, Enum):
    WARNING = "warning"
    BREACH = "breach"
    REPORTING_DUE = "reporting_due"


class AlertSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class AlertStatus(str, Enum):
    NEW = "new"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    ESCALATED = "escalated"


class ContractStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"
    DEFAULT = "default"
    WATCH = "watch"


class UserRole(str, Enum):
    VIEWER = "viewer"
    ANALYST = "analyst"
    ADMIN = "admin"


class Resource(str, Enum):
    CONTRACTS = "contracts"
    COVENANTS = "covenants"
    ALERTS = "alerts"
    REPORTS = "reports"
    DASHBOARD = "dashboard"
    BORROWERS = "borrowers"
    FINANCIAL_METRICS = "financial-metrics"
    USERS = "users"
    AUDIT_LOGS = "audit-logs"
    SYSTEM_SETTINGS = "system-settings"


class Action(str, Enum):
    READ = "read"
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"
    ACKNOWLEDGE = "acknowledge"
    RESOLVE = "resolve"
    ESCALATE = "escalate"


class ReportType(str, Enum):
    PORTFOLIO_SUMMARY = "portfolio_summary"
    BORROWER_DEEP_DIVE = "borrower_deep_dive"
    COVENANT_ANALYSIS = "covenant_analysis"


# Orderings used by the alert rules
STATUS_RANK: Dict[ComplianceStatus, int] = {
    ComplianceStatus.COMPLIANT: 0,
    ComplianceStatus.WARNING: 1,
    ComplianceStatus.BREACHED: 2,
}

SEVERITY_LEVELS: List[AlertSeverity] = [
    AlertSeverity.LOW, AlertSeverity.MEDIUM, AlertSeverity.HIGH, AlertSeverity.CRITICAL,
]


# ── Portfolio Records ─────────────────────────────────────────────────

class Borrower(BaseModel):
    id: str
    bank_id: str
    legal_name: str
    industry: Optional[str] = None
    country: Optional[str] = None
    credit_rating: Optional[str] = None


class Contract(BaseModel):
    """
    A loan agreement. The core only needs its keys and a few display fields.
    """
    id: str
    bank_id: str
    borrower_id: str
    contract_name: str
    principal_amount: float = 0.0
    currency: str = "USD"
    origination_date: Optional[date] = None
    maturity_date: Optional[date] = None
    interest_rate: Optional[float] = None
    status: ContractStatus = ContractStatus.ACTIVE


class Covenant(BaseModel):
    """
    A contractual condition on a borrower metric, owned by a contract.
    """
    id: str
    contract_id: str
    bank_id: str
    covenant_name: str
    covenant_type: CovenantType = CovenantType.FINANCIAL
    metric_name: Optional[str] = Field(None, description="FinancialMetrics field the covenant tests")
    operator: Operator
    threshold_value: Optional[float] = None
    threshold_unit: Optional[str] = Field(None, description="ratio, percent, USD, ...")
    check_frequency: CheckFrequency = CheckFrequency.QUARTERLY
    reporting_deadline_days: int = 30


class FinancialMetrics(BaseModel):
    """One reporting period of borrower financials."""
    id: Optional[str] = None
    borrower_id: str
    bank_id: str
    period_date: date
    period_type: str = "quarterly"
    source: str = "manual"

    debt_total: Optional[float] = None
    ebitda: Optional[float] = None
    revenue: Optional[float] = None
    net_income: Optional[float] = None
    interest_expense: Optional[float] = None
    equity_total: Optional[float] = None
    current_assets: Optional[float] = None
    current_liabilities: Optional[float] = None

    debt_to_ebitda: Optional[float] = None
    debt_to_equity: Optional[float] = None
    current_ratio: Optional[float] = None
    interest_coverage: Optional[float] = None
    roe: Optional[float] = None
    roa: Optional[float] = None

    data_confidence: Optional[float] = Field(None, ge=0.0, le=1.0)


class CovenantHealth(BaseModel):
    """
    Latest evaluated state of a covenant. Superseded on every recomputation.
    """
    id: Optional[str] = None
    covenant_id: str
    contract_id: str
    bank_id: str
    status: ComplianceStatus
    trend: Trend = Trend.STABLE
    buffer_percentage: float = 0.0
    last_reported_value: Optional[float] = None
    threshold_value: Optional[float] = None
    days_to_breach: Optional[int] = None
    confidence_level: float = 0.0
    risk_assessment: Optional[str] = None
    last_calculated: datetime


# ── Identity ──────────────────────────────────────────────────────────

class AuthUser(BaseModel):
    """Validated user/role/bank triple supplied by the identity provider."""
    id: str
    role: UserRole
    bank_id: str
    email: Optional[str] = None


# ── Alert Records ─────────────────────────────────────────────────────

class Alert(BaseModel):
    """A single alert instance."""
    id: str
    covenant_id: str
    contract_id: str
    bank_id: str
    alert_type: AlertType
    severity: AlertSeverity
    title: str
    description: str
    trigger_metric_value: Optional[float] = None
    threshold_value: Optional[float] = None
    status: AlertStatus = AlertStatus.NEW
    triggered_at: datetime
    acknowledged_at: Optional[datetime] = None
    acknowledged_by: Optional[str] = None
    resolution_notes: Optional[str] = None
    escalated_at: Optional[datetime] = None
    escalation_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class StatusChangeEvent(BaseModel):
    """A covenant moving between compliance states."""
    covenant_id: str
    contract_id: str
    bank_id: str
    previous_status: ComplianceStatus = ComplianceStatus.COMPLIANT
    new_status: ComplianceStatus
    current_value: float
    threshold_value: float
    covenant_name: str
    metric_name: str = "unknown"
    operator: Optional[Operator] = None

    @field_validator("previous_status", mode="before")
    def missing_previous_is_compliant(cls, v):
        if v is None:
            return ComplianceStatus.COMPLIANT
        return v


class EscalationResult(BaseModel):
    alert_id: str
    previous_severity: AlertSeverity
    new_severity: AlertSeverity
    escalated_at: datetime
    reason: str
    alert: Alert


# ── Summarizer Output ─────────────────────────────────────────────────

class RiskAssessment(BaseModel):
    risk_score: float = Field(..., ge=0.0, le=10.0)
    risk_factors: List[str] = Field(default_factory=list)
    recommended_actions: List[str] = Field(default_factory=list)
    narrative_summary: str = ""
    confidence: float = Field(0.5, ge=0.0, le=1.0)

    # Extension
    attributes: Dict[str, Any] = Field(default_factory=dict, description="Extension bag for extra fields")


class ValidationIssue(BaseModel):
    severity: str  # "HARD", "SOFT"
    message: str
    field: Optional[str] = None
    value: Any = None
