import json
import logging
from pathlib import Path
from typing import Dict, List
from pydantic import BaseModel, Field, model_validator

logger = logging.getLogger(__name__)

CONFIG_PATH = Path("data/monitoring_config.json")


class MonitoringConfig(BaseModel):
    """Tunable policy constants per bank."""
    # Warning zone as a fraction of the threshold value
    warning_margin: float = Field(0.10, ge=0.0)
    equality_tolerance: float = Field(0.01, ge=0.0)

    # Warning severity by headroom % (<= high -> HIGH, <= medium -> MEDIUM, else LOW)
    severity_high_max_pct: float = 5.0
    severity_medium_max_pct: float = 15.0

    # Trend
    trend_stability_threshold: float = 0.01
    trend_periods: int = Field(4, ge=2)
    periods_per_year: int = Field(4, gt=0)

    # Escalation
    escalation_threshold_minutes: int = Field(60, ge=0)

    # Contract limits
    max_principal_amount: float = 1_000_000_000_000.0

    # Reporting
    high_risk_score: float = 7.0
    breach_rate_alert_pct: float = 10.0
    contract_at_risk_statuses: List[str] = Field(default_factory=lambda: ["watch", "default"])

    @model_validator(mode="after")
    def check_severity_bands(self):
        if self.severity_medium_max_pct < self.severity_high_max_pct:
            raise ValueError("severity_medium_max_pct must be >= severity_high_max_pct")
        return self

    def to_dict(self):
        return self.model_dump()


def load_config(path: Path = CONFIG_PATH) -> Dict[str, dict]:
    if not path.exists():
        return {}
    try:
        with open(path, "r") as f:
            return json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        logger.warning("Ignoring unreadable monitoring config %s: %s", path, exc)
        return {}


def get_monitoring_config(bank_id: str, path: Path = CONFIG_PATH) -> MonitoringConfig:
    data = load_config(path)
    cfg = data.get(bank_id, {})
    return MonitoringConfig(**cfg)


def save_monitoring_config(bank_id: str, config: MonitoringConfig, path: Path = CONFIG_PATH):
    data = load_config(path)
    data[bank_id] = config.to_dict()
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        json.dump(data, f, indent=2)
    logger.info("Saved monitoring config for bank %s", bank_id)


def list_configured_banks(path: Path = CONFIG_PATH):
    return list(load_config(path).keys())
