"""
Contract and covenant registry.

Creation and update of the records the monitor evaluates. Every write is
permission- and bank-checked, then validated, then persisted in one call.
"""
import logging
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from covenant_monitor.authorization import can_access_bank_resource, require_permission
from covenant_monitor.collaborators import DataStore, fetch_one
from covenant_monitor.config import MonitoringConfig
from covenant_monitor.exceptions import AuthorizationError, NotFoundError, ValidationError
from covenant_monitor.models import Action, AuthUser, Borrower, Contract, Covenant, Resource
from covenant_monitor.utils import utcnow
from covenant_monitor.validation import check_contract, check_covenant, ensure_valid

logger = logging.getLogger(__name__)

IMMUTABLE_COVENANT_FIELDS = ("id", "contract_id", "bank_id")
IMMUTABLE_CONTRACT_FIELDS = ("id", "bank_id", "borrower_id")


class PortfolioService:
    def __init__(
        self,
        store: DataStore,
        config: Optional[MonitoringConfig] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.config = config or MonitoringConfig()
        self.clock = clock

    def _owned(self, user: AuthUser, payload: Dict[str, Any], resource: Resource) -> Dict[str, Any]:
        bank_id = payload.get("bank_id", user.bank_id)
        if not can_access_bank_resource(user, bank_id):
            raise AuthorizationError(user.id, resource.value, Action.CREATE.value, bank_id)
        return {**payload, "bank_id": user.bank_id}

    @staticmethod
    def _reject_changes(changes: Dict[str, Any], fields, label: str) -> None:
        locked = [f for f in fields if f in changes]
        if locked:
            raise ValidationError(
                f"{label} fields cannot be changed: {', '.join(locked)}",
                details={f: "immutable" for f in locked},
            )

    # ── Contracts ─────────────────────────────────────────────────────

    def get_contract(self, user: Optional[AuthUser], contract_id: str) -> Contract:
        contract = Contract.model_validate(fetch_one(self.store, "contracts", contract_id, "Contract"))
        if user is not None and not can_access_bank_resource(user, contract.bank_id):
            raise NotFoundError("Contract", contract_id, bank_id=user.bank_id)
        require_permission(user, Resource.CONTRACTS, Action.READ, contract.bank_id)
        return contract

    def create_contract(self, user: Optional[AuthUser], payload: Dict[str, Any]) -> Contract:
        require_permission(user, Resource.CONTRACTS, Action.CREATE)
        data = self._owned(user, payload, Resource.CONTRACTS)
        ensure_valid(check_contract(data, self.config))

        borrower = Borrower.model_validate(fetch_one(self.store, "borrowers", data["borrower_id"], "Borrower"))
        if borrower.bank_id != user.bank_id:
            raise AuthorizationError(user.id, Resource.BORROWERS.value, Action.READ.value, borrower.bank_id)

        Contract.model_validate({"id": data.get("id", "pending"), **data})
        record = self.store.post("contracts", data)
        contract = Contract.model_validate(record)
        logger.info("Contract %s created by %s", contract.id, user.id)
        return contract

    def update_contract(self, user: Optional[AuthUser], contract_id: str, changes: Dict[str, Any]) -> Contract:
        contract = Contract.model_validate(fetch_one(self.store, "contracts", contract_id, "Contract"))
        require_permission(user, Resource.CONTRACTS, Action.UPDATE, contract.bank_id)
        self._reject_changes(changes, IMMUTABLE_CONTRACT_FIELDS, "Contract")

        merged = {**contract.model_dump(), **changes}
        ensure_valid(check_contract(merged, self.config))
        Contract.model_validate(merged)

        record = self.store.put("contracts", contract_id, {**changes, "updated_at": self.clock()})
        logger.info("Contract %s updated by %s: %s", contract_id, user.id, sorted(changes))
        return Contract.model_validate(record)

    # ── Covenants ─────────────────────────────────────────────────────

    def get_covenant(self, user: Optional[AuthUser], covenant_id: str) -> Covenant:
        covenant = Covenant.model_validate(fetch_one(self.store, "covenants", covenant_id, "Covenant"))
        if user is not None and not can_access_bank_resource(user, covenant.bank_id):
            raise NotFoundError("Covenant", covenant_id, bank_id=user.bank_id)
        require_permission(user, Resource.COVENANTS, Action.READ, covenant.bank_id)
        return covenant

    def list_covenants(self, user: Optional[AuthUser], contract_id: Optional[str] = None) -> List[Covenant]:
        require_permission(user, Resource.COVENANTS, Action.READ)
        filters: Dict[str, Any] = {"bank_id": user.bank_id}
        if contract_id is not None:
            filters["contract_id"] = contract_id
        return [Covenant.model_validate(r) for r in self.store.get("covenants", filters)]

    def create_covenant(self, user: Optional[AuthUser], payload: Dict[str, Any]) -> Covenant:
        require_permission(user, Resource.COVENANTS, Action.CREATE)
        ensure_valid(check_covenant(payload))

        contract = Contract.model_validate(fetch_one(self.store, "contracts", payload["contract_id"], "Contract"))
        # The covenant inherits its contract's bank
        require_permission(user, Resource.COVENANTS, Action.CREATE, contract.bank_id)
        data = self._owned(user, payload, Resource.COVENANTS)

        Covenant.model_validate({"id": data.get("id", "pending"), **data})
        record = self.store.post("covenants", data)
        covenant = Covenant.model_validate(record)
        logger.info("Covenant %s created on contract %s by %s", covenant.id, contract.id, user.id)
        return covenant

    def update_covenant(self, user: Optional[AuthUser], covenant_id: str, changes: Dict[str, Any]) -> Covenant:
        covenant = Covenant.model_validate(fetch_one(self.store, "covenants", covenant_id, "Covenant"))
        require_permission(user, Resource.COVENANTS, Action.UPDATE, covenant.bank_id)
        self._reject_changes(changes, IMMUTABLE_COVENANT_FIELDS, "Covenant")

        merged = {**covenant.model_dump(), **changes}
        ensure_valid(check_covenant(merged))
        Covenant.model_validate(merged)

        record = self.store.put("covenants", covenant_id, {**changes, "updated_at": self.clock()})
        logger.info("Covenant %s updated by %s: %s", covenant_id, user.id, sorted(changes))
        return Covenant.model_validate(record)
