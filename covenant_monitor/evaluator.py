"""
Compliance calculations for covenant monitoring.

Turns a metric value, a threshold and a comparison operator into a
compliance status, a buffer percentage and a breach flag; derives the
trend of a metric history and an estimated time to breach.
"""
import math
import numpy as np
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Union

from covenant_monitor.config import MonitoringConfig
from covenant_monitor.exceptions import ValidationError
from covenant_monitor.models import (
    ComplianceStatus, Covenant, CovenantHealth, FinancialMetrics, Operator, Trend,
)
from covenant_monitor.utils import utcnow


DEFAULT_WARNING_MARGIN = 0.10
DEFAULT_TOLERANCE = 0.01
DEFAULT_STABILITY_THRESHOLD = 0.01
DAYS_PER_YEAR = 365

# Covenant metric_name -> FinancialMetrics field
METRIC_FIELDS = (
    "debt_to_ebitda", "debt_to_equity", "current_ratio", "interest_coverage",
    "roe", "roa", "debt_total", "ebitda", "revenue", "net_income",
    "equity_total", "current_assets", "current_liabilities",
)


# ── Operators ─────────────────────────────────────────────────────────

def parse_operator(operator: Union[Operator, str]) -> Operator:
    """Coerce a raw operator symbol, rejecting anything outside the six supported."""
    if isinstance(operator, Operator):
        return operator
    try:
        return Operator(operator)
    except ValueError:
        raise ValidationError(
            f"Unsupported operator: {operator!r}",
            details={"operator": f"must be one of {[o.value for o in Operator]}"},
        ) from None


def evaluate_condition(
    current: float,
    threshold: float,
    operator: Union[Operator, str],
    check_for_breach: bool = False,
    tolerance: float = DEFAULT_TOLERANCE,
) -> bool:
    """Evaluate ``current <op> threshold``.

    With ``check_for_breach`` the negation is returned, i.e. True means
    the covenant is breached. ``=`` and ``!=`` compare within ``tolerance``.
    """
    op = parse_operator(operator)
    if op is Operator.LT:
        satisfied = current < threshold
    elif op is Operator.LE:
        satisfied = current <= threshold
    elif op is Operator.GT:
        satisfied = current > threshold
    elif op is Operator.GE:
        satisfied = current >= threshold
    elif op is Operator.EQ:
        satisfied = abs(current - threshold) < tolerance
    else:
        satisfied = abs(current - threshold) >= tolerance
    return not satisfied if check_for_breach else satisfied


# ── Buffer & Distance ─────────────────────────────────────────────────

def distance_fraction(current: float, threshold: float) -> float:
    """|current - threshold| relative to |threshold|.

    A zero threshold has no scale, so the absolute distance is used.
    """
    if threshold == 0:
        return abs(current - threshold)
    return abs(current - threshold) / abs(threshold)


def headroom_percentage(current: float, threshold: float) -> float:
    """Distance to the threshold as a percentage of the threshold."""
    return distance_fraction(current, threshold) * 100


def buffer_percentage(
    current: float,
    threshold: float,
    operator: Union[Operator, str],
    tolerance: float = DEFAULT_TOLERANCE,
) -> float:
    """How far past the threshold a breached covenant is, in % of threshold.

    0.0 whenever the covenant is satisfied. ``=`` and ``!=`` are binary
    (0 or 100), as is any breach of a zero threshold.
    """
    op = parse_operator(operator)
    if evaluate_condition(current, threshold, op, tolerance=tolerance):
        return 0.0
    if not op.is_ordered or threshold == 0:
        return 100.0
    return abs(current - threshold) / abs(threshold) * 100


def determine_status(
    current: float,
    threshold: float,
    operator: Union[Operator, str],
    warning_margin: float = DEFAULT_WARNING_MARGIN,
    tolerance: float = DEFAULT_TOLERANCE,
) -> ComplianceStatus:
    """Classify a value as compliant, warning or breached.

    Breach is checked first. A satisfied ordered or ``=`` covenant is a
    warning when it sits within ``warning_margin`` (fraction of threshold)
    of the threshold. ``!=`` has no warning zone.
    """
    op = parse_operator(operator)
    if evaluate_condition(current, threshold, op, check_for_breach=True, tolerance=tolerance):
        return ComplianceStatus.BREACHED
    if op is Operator.NE:
        return ComplianceStatus.COMPLIANT
    if distance_fraction(current, threshold) <= warning_margin:
        return ComplianceStatus.WARNING
    return ComplianceStatus.COMPLIANT


# ── Trend ─────────────────────────────────────────────────────────────

def _clean(history: Iterable[Optional[float]]) -> List[float]:
    values = []
    for v in history:
        if v is None:
            continue
        v = float(v)
        if math.isnan(v):
            continue
        values.append(v)
    return values


def trend_slope(history: Sequence[Optional[float]]) -> float:
    """Ordinary least-squares slope of the values against their index.

    History is ordered oldest first; missing values are skipped.
    """
    values = _clean(history)
    if len(values) < 2:
        return 0.0
    y = np.asarray(values, dtype=float)
    x = np.arange(len(y), dtype=float)
    x_dev = x - x.mean()
    return float((x_dev * (y - y.mean())).sum() / (x_dev ** 2).sum())


def trend(
    history: Sequence[Optional[float]],
    stability_threshold: float = DEFAULT_STABILITY_THRESHOLD,
) -> Trend:
    """Direction of a metric history.

    A rising series is ``improving`` whatever the covenant operator.
    """
    if len(_clean(history)) < 2:
        return Trend.STABLE
    slope = trend_slope(history)
    if abs(slope) < stability_threshold:
        return Trend.STABLE
    return Trend.IMPROVING if slope > 0 else Trend.DETERIORATING


def trend_confidence(
    history: Sequence[Optional[float]],
    data_confidences: Optional[Sequence[Optional[float]]] = None,
) -> float:
    """Confidence in a trend from the number of points and source data quality."""
    values = _clean(history)
    if len(values) < 2:
        return 0.0
    confidence = 0.5
    confidence += min(0.3, (len(values) - 2) * 0.1)
    if data_confidences:
        scores = [0.5 if c is None else c for c in data_confidences]
        confidence += (sum(scores) / len(scores)) * 0.2
    else:
        confidence += 0.5 * 0.2
    return min(1.0, max(0.0, confidence))


def days_to_breach(
    current: float,
    threshold: float,
    operator: Union[Operator, str],
    slope: float,
    periods_per_year: int = 4,
    tolerance: float = DEFAULT_TOLERANCE,
) -> Optional[int]:
    """Days until ``threshold`` is crossed if ``slope`` (per period) continues.

    None when the slope is flat or moves the value away from the threshold,
    and for equality operators. 0 when already breached.
    """
    op = parse_operator(operator)
    if not op.is_ordered:
        return None
    if periods_per_year <= 0:
        raise ValidationError("periods_per_year must be positive")
    if evaluate_condition(current, threshold, op, check_for_breach=True, tolerance=tolerance):
        return 0
    if slope == 0:
        return None
    # Upper-bound covenants breach on a rise, lower-bound ones on a fall
    if op.is_upper_bound and slope < 0:
        return None
    if not op.is_upper_bound and slope > 0:
        return None

    periods = abs(threshold - current) / abs(slope)
    return int(round(periods * DAYS_PER_YEAR / periods_per_year))


# ── Metric Extraction ─────────────────────────────────────────────────

def metric_value(metrics: Union[FinancialMetrics, Dict], metric_name: Optional[str]) -> Optional[float]:
    """Read the covenant metric from one period of financials."""
    if metric_name not in METRIC_FIELDS:
        raise ValidationError(f"Unknown metric: {metric_name}", details={"metric_name": "unknown metric"})
    if isinstance(metrics, FinancialMetrics):
        value = getattr(metrics, metric_name)
    else:
        value = metrics.get(metric_name)
    return None if value is None else float(value)


# ── Covenant Health ───────────────────────────────────────────────────

def evaluate_covenant(
    covenant: Covenant,
    history: Sequence[Optional[float]],
    config: Optional[MonitoringConfig] = None,
    now: Optional[datetime] = None,
    data_confidences: Optional[Sequence[Optional[float]]] = None,
) -> CovenantHealth:
    """Compute the full health record for a covenant.

    ``history`` is ordered oldest first; its last value is the current one.
    """
    config = config or MonitoringConfig()
    if covenant.threshold_value is None:
        raise ValidationError(
            f"Covenant {covenant.id} has no threshold value",
            details={"threshold_value": "required"},
        )
    values = _clean(history)
    if not values:
        raise ValidationError(
            f"Covenant {covenant.id} has no metric values to evaluate",
            details={"history": "empty"},
        )

    current = values[-1]
    threshold = covenant.threshold_value
    op = covenant.operator
    tol = config.equality_tolerance
    slope = trend_slope(values)

    return CovenantHealth(
        covenant_id=covenant.id,
        contract_id=covenant.contract_id,
        bank_id=covenant.bank_id,
        status=determine_status(current, threshold, op, config.warning_margin, tol),
        trend=trend(values, config.trend_stability_threshold),
        buffer_percentage=buffer_percentage(current, threshold, op, tol),
        last_reported_value=current,
        threshold_value=threshold,
        days_to_breach=days_to_breach(current, threshold, op, slope, config.periods_per_year, tol),
        confidence_level=trend_confidence(values, data_confidences),
        last_calculated=now or utcnow(),
    )
