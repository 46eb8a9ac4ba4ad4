"""
Shared pytest fixtures for the covenant monitor test suite.

Provides:
    - now / clock: fixed UTC instant injected wherever "now" matters
    - viewer, analyst, admin, other_bank_analyst: AuthUser per role
    - store: InMemoryDataStore seeded with one borrower, contract and
      Debt/EBITDA covenant for BANK_A plus a foreign-bank contract
    - make_alert: factory persisting an Alert in the store
"""
from datetime import date, datetime, timedelta, timezone

import pytest

from covenant_monitor.collaborators import InMemoryDataStore
from covenant_monitor.config import MonitoringConfig
from covenant_monitor.models import (
    Alert, AlertSeverity, AlertStatus, AlertType, AuthUser, UserRole,
)

BANK_A = "bank_a"
BANK_B = "bank_b"
NOW = datetime(2026, 3, 31, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def clock():
    return lambda: NOW


@pytest.fixture
def config():
    return MonitoringConfig()


# ── Users ─────────────────────────────────────────────────────────────

@pytest.fixture
def viewer():
    return AuthUser(id="u_viewer", role=UserRole.VIEWER, bank_id=BANK_A)


@pytest.fixture
def analyst():
    return AuthUser(id="u_analyst", role=UserRole.ANALYST, bank_id=BANK_A)


@pytest.fixture
def admin():
    return AuthUser(id="u_admin", role=UserRole.ADMIN, bank_id=BANK_A)


@pytest.fixture
def other_bank_analyst():
    return AuthUser(id="u_foreign", role=UserRole.ANALYST, bank_id=BANK_B)


# ── Store ─────────────────────────────────────────────────────────────

def quarterly_metrics(borrower_id, bank_id, leverage_values, start=date(2025, 3, 31)):
    """One financial_metrics row per value, 91 days apart, oldest first."""
    return [
        {
            "borrower_id": borrower_id,
            "bank_id": bank_id,
            "period_date": start + timedelta(days=91 * i),
            "period_type": "quarterly",
            "source": "test",
            "debt_to_ebitda": value,
            "interest_coverage": 4.0,
            "data_confidence": 0.9,
        }
        for i, value in enumerate(leverage_values)
    ]


@pytest.fixture
def store():
    return InMemoryDataStore({
        "borrowers": [
            {"id": "b1", "bank_id": BANK_A, "legal_name": "Acme Holdings", "industry": "Chemicals"},
            {"id": "b2", "bank_id": BANK_B, "legal_name": "Foreign Co"},
        ],
        "contracts": [
            {
                "id": "c1", "bank_id": BANK_A, "borrower_id": "b1", "contract_name": "Acme Term Loan",
                "principal_amount": 10_000_000.0, "currency": "USD",
                "origination_date": date(2024, 1, 1), "maturity_date": date(2029, 1, 1),
                "status": "active",
            },
            {
                "id": "c2", "bank_id": BANK_B, "borrower_id": "b2", "contract_name": "Foreign Loan",
                "principal_amount": 5_000_000.0, "currency": "EUR",
                "origination_date": date(2024, 1, 1), "maturity_date": date(2028, 1, 1),
                "status": "active",
            },
        ],
        "covenants": [
            {
                "id": "cov1", "contract_id": "c1", "bank_id": BANK_A,
                "covenant_name": "Max Leverage", "covenant_type": "financial",
                "metric_name": "debt_to_ebitda", "operator": "<=", "threshold_value": 3.5,
                "threshold_unit": "ratio", "check_frequency": "quarterly",
            },
        ],
    })


@pytest.fixture
def make_alert(store, now):
    def _make(alert_id="a1", bank_id=BANK_A, status=AlertStatus.NEW,
              severity=AlertSeverity.MEDIUM, minutes_ago=0, **overrides):
        triggered = now - timedelta(minutes=minutes_ago)
        data = dict(
            id=alert_id,
            covenant_id="cov1",
            contract_id="c1",
            bank_id=bank_id,
            alert_type=AlertType.WARNING,
            severity=severity,
            title="Covenant WARNING: Max Leverage (debt_to_ebitda)",
            description="Max Leverage (debt_to_ebitda) has moved from compliant to warning.",
            trigger_metric_value=3.3,
            threshold_value=3.5,
            status=status,
            triggered_at=triggered,
            created_at=triggered,
            updated_at=triggered,
        )
        data.update(overrides)
        alert = Alert(**data)
        store.post("alerts", alert.model_dump())
        return alert
    return _make
