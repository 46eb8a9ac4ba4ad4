import random
import logging
from datetime import date, timedelta
from pathlib import Path
import sys

sys.path.append(str(Path(__file__).parent.parent))
from covenant_monitor.collaborators import InMemoryDataStore
from covenant_monitor.config import get_monitoring_config
from covenant_monitor.lifecycle import AlertLifecycleManager
from covenant_monitor.models import AuthUser, UserRole
from covenant_monitor.monitoring import CovenantMonitor
from covenant_monitor.portfolio import PortfolioService
from covenant_monitor.reports import ReportAggregator, ReportRequest, export_report_workbook
from covenant_monitor.alerts import alert_stats

# We assume we run this from the project root
OUTPUT_DIR = Path("data/reports")
OUTPUT_DIR.mkdir(parents=True, exist_ok=True)

BANK_ID = "bank_demo"

INDUSTRIES = [
    "Software", "Healthcare Providers", "Aerospace & Defense",
    "Hotels, Restaurants & Leisure", "Chemicals", "Food Products",
    "Specialty Retail", "Building Products",
]

COUNTRIES = ["US", "US", "US", "UK", "DE", "CA", "FR", "NL"]

# (name, metric, operator, threshold)
COVENANT_TEMPLATES = [
    ("Max Leverage", "debt_to_ebitda", "<=", 3.5),
    ("Min Interest Coverage", "interest_coverage", ">=", 3.0),
    ("Min Current Ratio", "current_ratio", ">=", 1.2),
]


def seed_borrowers(store, count):
    ids = []
    for i in range(count):
        record = store.post("borrowers", {
            "bank_id": BANK_ID,
            "legal_name": f"Company {101 + i}",
            "industry": random.choice(INDUSTRIES),
            "country": random.choice(COUNTRIES),
            "credit_rating": random.choice(["BB+", "BB", "BB-", "B+", "B"]),
        })
        ids.append(record["id"])
    return ids


def seed_financials(store, borrower_id, quarters=4):
    """Quarterly financials drifting from a random starting point."""
    leverage = random.uniform(2.0, 3.6)
    coverage = random.uniform(2.8, 6.0)
    current = random.uniform(1.0, 2.0)
    drift = random.choice([-1, 0, 1])
    start = date.today() - timedelta(days=91 * quarters)

    for q in range(quarters):
        leverage = max(0.5, leverage + drift * random.uniform(0.05, 0.25))
        coverage = max(0.5, coverage - drift * random.uniform(0.1, 0.4))
        current = max(0.3, current - drift * random.uniform(0.02, 0.08))
        store.post("financial_metrics", {
            "borrower_id": borrower_id,
            "bank_id": BANK_ID,
            "period_date": start + timedelta(days=91 * (q + 1)),
            "period_type": "quarterly",
            "source": "demo",
            "debt_to_ebitda": round(leverage, 2),
            "interest_coverage": round(coverage, 2),
            "current_ratio": round(current, 2),
            "data_confidence": round(random.uniform(0.7, 1.0), 2),
        })


def seed_portfolio(store, service, analyst, borrower_ids):
    for borrower_id in borrower_ids:
        origination = date.today() - timedelta(days=random.randint(100, 1000))
        contract = service.create_contract(analyst, {
            "borrower_id": borrower_id,
            "contract_name": f"Term Loan {borrower_id[:6]}",
            "principal_amount": round(random.uniform(5_000_000, 50_000_000), 2),
            "currency": "USD",
            "origination_date": origination,
            "maturity_date": origination + timedelta(days=random.randint(365 * 3, 365 * 7)),
            "interest_rate": round(random.uniform(6.0, 11.0), 2),
            "status": random.choice(["active", "active", "active", "watch"]),
        })
        for name, metric, operator, threshold in COVENANT_TEMPLATES:
            service.create_covenant(analyst, {
                "contract_id": contract.id,
                "covenant_name": name,
                "covenant_type": "financial",
                "metric_name": metric,
                "operator": operator,
                "threshold_value": threshold,
                "threshold_unit": "ratio",
                "check_frequency": "quarterly",
            })
        seed_financials(store, borrower_id)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s: %(message)s")

    store = InMemoryDataStore()
    config = get_monitoring_config(BANK_ID)
    analyst = AuthUser(id="analyst_demo", role=UserRole.ANALYST, bank_id=BANK_ID)

    borrower_ids = seed_borrowers(store, 12)
    seed_portfolio(store, PortfolioService(store, config), analyst, borrower_ids)

    monitor = CovenantMonitor(store, config)
    for borrower_id in borrower_ids:
        monitor.recompute_for_borrower(borrower_id)

    lifecycle = AlertLifecycleManager(store, config)
    alerts = lifecycle.list_alerts(analyst)
    print(f"Alerts: {alert_stats(alerts)}")

    report = ReportAggregator(store, config=config).generate_report(analyst, ReportRequest(
        report_type="portfolio_summary",
        start_date=date.today() - timedelta(days=90),
        end_date=date.today(),
    ))
    out_path = OUTPUT_DIR / f"{date.today():%Y%m%d}_{report.report_type.value}.xlsx"
    out_path.write_bytes(export_report_workbook(report, alerts))
    print(f"Generated {out_path}")
