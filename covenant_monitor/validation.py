import re
from datetime import date
from typing import Any, Dict, List, Optional
from covenant_monitor.config import MonitoringConfig
from covenant_monitor.exceptions import ValidationError
from covenant_monitor.models import CheckFrequency, CovenantType, Operator, ReportType, ValidationIssue

CURRENCY_RE = re.compile(r"^[A-Z]{3}$")


def _hard(message: str, field: Optional[str] = None, value: Any = None) -> ValidationIssue:
    return ValidationIssue(severity="HARD", message=message, field=field, value=value)


def _as_date(value) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _is_number(value) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def check_required(data: Dict[str, Any], required: Dict[str, str]) -> List[ValidationIssue]:
    issues = []
    for field, message in required.items():
        value = data.get(field)
        if value is None or (isinstance(value, str) and not value.strip()):
            issues.append(_hard(message, field))
    return issues


def check_enum(data: Dict[str, Any], field: str, enum_cls, label: str) -> List[ValidationIssue]:
    value = data.get(field)
    if value is None:
        return []
    try:
        enum_cls(value)
    except ValueError:
        return [_hard(f"Invalid {label}: {value}", field, value)]
    return []


# ── Contracts ─────────────────────────────────────────────────────────

def check_contract(data: Dict[str, Any], config: Optional[MonitoringConfig] = None) -> List[ValidationIssue]:
    config = config or MonitoringConfig()
    issues = check_required(data, {
        "contract_name": "Contract name is required",
        "borrower_id": "Borrower ID is required",
        "principal_amount": "Principal amount is required",
        "currency": "Currency is required",
        "origination_date": "Origination date is required",
        "maturity_date": "Maturity date is required",
    })

    principal = data.get("principal_amount")
    if principal is not None:
        if not _is_number(principal):
            issues.append(_hard("Principal amount must be numeric", "principal_amount", principal))
        elif principal <= 0:
            issues.append(_hard("Principal amount must be greater than 0", "principal_amount", principal))
        elif principal > config.max_principal_amount:
            issues.append(_hard("Principal amount exceeds maximum allowed value", "principal_amount", principal))

    currency = data.get("currency")
    if currency and not CURRENCY_RE.match(str(currency)):
        issues.append(_hard("Currency must be a valid 3-letter ISO code (e.g., USD, EUR)", "currency", currency))

    origination = _as_date(data.get("origination_date"))
    maturity = _as_date(data.get("maturity_date"))
    if data.get("origination_date") is not None and origination is None:
        issues.append(_hard("Origination date is not a valid date", "origination_date"))
    if data.get("maturity_date") is not None and maturity is None:
        issues.append(_hard("Maturity date is not a valid date", "maturity_date"))
    if origination and maturity and maturity <= origination:
        issues.append(_hard("Maturity date must be after origination date", "maturity_date"))

    rate = data.get("interest_rate")
    if rate is not None and not _is_number(rate):
        issues.append(_hard("Interest rate must be numeric", "interest_rate", rate))
    elif rate is not None and not 0 <= rate <= 100:
        issues.append(_hard("Interest rate must be between 0 and 100", "interest_rate", rate))
    return issues


# ── Covenants ─────────────────────────────────────────────────────────

def check_covenant(data: Dict[str, Any]) -> List[ValidationIssue]:
    issues = check_required(data, {
        "contract_id": "Contract ID is required",
        "covenant_name": "Covenant name is required",
        "operator": "Operator is required",
    })
    issues.extend(check_enum(data, "operator", Operator, "operator"))
    issues.extend(check_enum(data, "covenant_type", CovenantType, "covenant type"))
    issues.extend(check_enum(data, "check_frequency", CheckFrequency, "check frequency"))

    if data.get("covenant_type", CovenantType.FINANCIAL) == CovenantType.FINANCIAL:
        issues.extend(check_required(data, {
            "metric_name": "Metric name is required for financial covenants",
            "threshold_value": "Threshold value is required for financial covenants",
        }))

    threshold = data.get("threshold_value")
    if threshold is not None and not _is_number(threshold):
        issues.append(_hard("Threshold value must be numeric", "threshold_value", threshold))

    deadline = data.get("reporting_deadline_days")
    if deadline is not None and not _is_number(deadline):
        issues.append(_hard("Reporting deadline days must be numeric", "reporting_deadline_days", deadline))
    elif deadline is not None and deadline < 0:
        issues.append(_hard("Reporting deadline days cannot be negative", "reporting_deadline_days", deadline))
    return issues


# ── Financial Metrics ─────────────────────────────────────────────────

NON_NEGATIVE_FIELDS = (
    "debt_total", "ebitda", "revenue", "equity_total",
    "current_assets", "current_liabilities",
)


def check_financial_metrics(data: Dict[str, Any]) -> List[ValidationIssue]:
    issues = check_required(data, {
        "borrower_id": "Borrower ID is required",
        "period_date": "Period date is required",
        "period_type": "Period type is required",
        "source": "Data source is required",
    })
    for field in NON_NEGATIVE_FIELDS:
        value = data.get(field)
        if value is None:
            continue
        if not _is_number(value):
            issues.append(_hard(f"{field} must be numeric", field, value))
        elif value < 0:
            issues.append(_hard(f"{field} cannot be negative", field, value))
    return issues


# ── Reports ───────────────────────────────────────────────────────────

def check_report_request(data: Dict[str, Any]) -> List[ValidationIssue]:
    issues = check_required(data, {
        "report_type": "Report type is required",
        "start_date": "Start date is required",
        "end_date": "End date is required",
    })
    issues.extend(check_enum(data, "report_type", ReportType, "report type"))

    start = _as_date(data.get("start_date"))
    end = _as_date(data.get("end_date"))
    if (data.get("start_date") and start is None) or (data.get("end_date") and end is None):
        issues.append(_hard("Invalid date format", "start_date"))
    if start and end and start > end:
        issues.append(_hard("Start date must be before end date", "start_date"))

    if data.get("report_type") == ReportType.BORROWER_DEEP_DIVE and not data.get("borrower_id"):
        issues.append(_hard("Borrower ID is required for borrower deep dive reports", "borrower_id"))
    return issues


# ── Enforcement ───────────────────────────────────────────────────────

def ensure_valid(issues: List[ValidationIssue]) -> None:
    """Raise ValidationError listing every HARD issue; SOFT issues pass."""
    hard_errors = [i for i in issues if i.severity == "HARD"]
    if not hard_errors:
        return
    details = {}
    for issue in hard_errors:
        details.setdefault(issue.field or "_", issue.message)
    raise ValidationError(
        "Validation failed: " + ", ".join(i.message for i in hard_errors),
        details=details,
    )
