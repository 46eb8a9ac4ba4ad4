"""Authorized, validated contract and covenant writes."""
from datetime import date

import pytest

from conftest import BANK_A
from covenant_monitor.exceptions import AuthorizationError, NotFoundError, ValidationError
from covenant_monitor.models import ContractStatus, Operator
from covenant_monitor.portfolio import PortfolioService


@pytest.fixture
def service(store, clock):
    return PortfolioService(store, clock=clock)


def new_contract(**overrides):
    data = {
        "borrower_id": "b1",
        "contract_name": "Acme Revolver",
        "principal_amount": 2_500_000.0,
        "currency": "USD",
        "origination_date": date(2025, 6, 1),
        "maturity_date": date(2028, 6, 1),
        "interest_rate": 6.25,
    }
    data.update(overrides)
    return data


def new_covenant(**overrides):
    data = {
        "contract_id": "c1",
        "covenant_name": "Min Interest Coverage",
        "covenant_type": "financial",
        "metric_name": "interest_coverage",
        "operator": ">=",
        "threshold_value": 3.0,
    }
    data.update(overrides)
    return data


class TestContracts:
    def test_create_takes_users_bank(self, service, analyst, store):
        contract = service.create_contract(analyst, new_contract())
        assert contract.bank_id == BANK_A
        assert contract.status is ContractStatus.ACTIVE
        assert store.get("contracts", {"id": contract.id})

    def test_create_rejects_foreign_bank_payload(self, service, analyst):
        with pytest.raises(AuthorizationError):
            service.create_contract(analyst, new_contract(bank_id="bank_b"))

    def test_create_rejects_foreign_borrower(self, service, analyst):
        with pytest.raises(AuthorizationError):
            service.create_contract(analyst, new_contract(borrower_id="b2"))

    def test_create_unknown_borrower(self, service, analyst):
        with pytest.raises(NotFoundError):
            service.create_contract(analyst, new_contract(borrower_id="ghost"))

    def test_viewer_cannot_create(self, service, viewer):
        with pytest.raises(AuthorizationError):
            service.create_contract(viewer, new_contract())

    def test_maturity_before_origination(self, service, analyst, store):
        with pytest.raises(ValidationError, match="Maturity date must be after origination date"):
            service.create_contract(analyst, new_contract(maturity_date=date(2025, 1, 1)))
        assert len(store.get("contracts", {"bank_id": BANK_A})) == 1

    def test_update_status(self, service, analyst, now):
        contract = service.update_contract(analyst, "c1", {"status": "watch"})
        assert contract.status is ContractStatus.WATCH

    def test_update_validates_merged_record(self, service, analyst):
        with pytest.raises(ValidationError):
            service.update_contract(analyst, "c1", {"principal_amount": -1})

    def test_update_cannot_move_bank(self, service, admin):
        with pytest.raises(ValidationError):
            service.update_contract(admin, "c1", {"bank_id": "bank_b"})

    def test_update_foreign_contract(self, service, analyst):
        with pytest.raises(AuthorizationError):
            service.update_contract(analyst, "c2", {"status": "watch"})

    def test_foreign_contract_reads_as_missing(self, service, analyst):
        with pytest.raises(NotFoundError):
            service.get_contract(analyst, "c2")


class TestCovenants:
    def test_create_inherits_contract_bank(self, service, analyst):
        covenant = service.create_covenant(analyst, new_covenant())
        assert covenant.bank_id == BANK_A
        assert covenant.operator is Operator.GE
        assert [c.id for c in service.list_covenants(analyst, "c1")] == ["cov1", covenant.id]

    def test_create_on_foreign_contract(self, service, analyst):
        with pytest.raises(AuthorizationError):
            service.create_covenant(analyst, new_covenant(contract_id="c2"))

    def test_create_on_missing_contract(self, service, analyst):
        with pytest.raises(NotFoundError):
            service.create_covenant(analyst, new_covenant(contract_id="ghost"))

    def test_unsupported_operator(self, service, analyst):
        with pytest.raises(ValidationError, match="Invalid operator"):
            service.create_covenant(analyst, new_covenant(operator="=>"))

    def test_update_threshold(self, service, analyst):
        assert service.update_covenant(analyst, "cov1", {"threshold_value": 4.0}).threshold_value == 4.0

    @pytest.mark.parametrize("field,value", [("contract_id", "c9"), ("bank_id", "bank_b")])
    def test_update_cannot_reassign(self, service, analyst, field, value):
        with pytest.raises(ValidationError, match="cannot be changed"):
            service.update_covenant(analyst, "cov1", {field: value})

    def test_viewer_cannot_update(self, service, viewer, store):
        with pytest.raises(AuthorizationError):
            service.update_covenant(viewer, "cov1", {"threshold_value": 9.0})
        assert store.get("covenants", {"id": "cov1"})[0]["threshold_value"] == 3.5

    def test_get_covenant_scoped(self, service, viewer, other_bank_analyst):
        assert service.get_covenant(viewer, "cov1").covenant_name == "Max Leverage"
        with pytest.raises(NotFoundError):
            service.get_covenant(other_bank_analyst, "cov1")
