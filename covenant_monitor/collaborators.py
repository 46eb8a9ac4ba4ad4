"""
Boundaries to the outside world: data store, identity provider, summarizer.

The core only ever talks to these protocols. ``InMemoryDataStore`` is a
dict-backed store used by tests and the demo script.
"""
import copy
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable
from uuid import uuid4

from covenant_monitor.exceptions import AuthorizationError, CollaboratorError, NotFoundError
from covenant_monitor.models import AuthUser, RiskAssessment
from covenant_monitor.utils import utcnow


RESOURCES = (
    "contracts", "covenants", "covenant_health", "alerts",
    "borrowers", "financial_metrics", "reports",
)


# ── Protocols ─────────────────────────────────────────────────────────

@runtime_checkable
class DataStore(Protocol):
    def get(self, resource: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        ...

    def post(self, resource: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        ...

    def put(self, resource: str, record_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        ...


@runtime_checkable
class IdentityProvider(Protocol):
    def current_user(self) -> Optional[AuthUser]:
        ...

    def is_session_valid(self) -> bool:
        ...


@runtime_checkable
class Summarizer(Protocol):
    def analyze_risk(self, snapshot: Dict[str, Any], context: Optional[Dict[str, Any]] = None) -> RiskAssessment:
        ...


# ── Identity ──────────────────────────────────────────────────────────

class StaticIdentityProvider:
    """Identity provider returning a fixed, already validated user."""

    def __init__(self, user: Optional[AuthUser], session_valid: bool = True):
        self._user = user
        self._session_valid = session_valid

    def current_user(self) -> Optional[AuthUser]:
        return self._user if self._session_valid else None

    def is_session_valid(self) -> bool:
        return self._session_valid and self._user is not None


def require_session(identity: IdentityProvider) -> AuthUser:
    """Current user of a valid session, else AuthorizationError."""
    user = identity.current_user() if identity.is_session_valid() else None
    if user is None:
        raise AuthorizationError(None, "session", "authenticate")
    return user


# ── Data Store ────────────────────────────────────────────────────────

def fetch_one(store: DataStore, resource: str, record_id: str, label: str) -> Dict[str, Any]:
    """Single record by id, else NotFoundError."""
    rows = store.get(resource, {"id": record_id})
    if not rows:
        raise NotFoundError(label, record_id)
    return rows[0]


class InMemoryDataStore:
    """
    Dict-backed DataStore. Returns copies so stored state only changes via put/post.
    """

    def __init__(self, seed: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self._tables: Dict[str, Dict[str, Dict[str, Any]]] = {r: {} for r in RESOURCES}
        for resource, rows in (seed or {}).items():
            for row in rows:
                self.post(resource, row)

    def _table(self, resource: str) -> Dict[str, Dict[str, Any]]:
        if resource not in self._tables:
            raise CollaboratorError("DataStore", f"unknown resource '{resource}'")
        return self._tables[resource]

    def get(self, resource: str, filters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        filters = filters or {}
        rows = [
            r for r in self._table(resource).values()
            if all(r.get(k) == v for k, v in filters.items())
        ]
        return copy.deepcopy(rows)

    def post(self, resource: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        table = self._table(resource)
        record = copy.deepcopy(payload)
        record_id = record.get("id") or uuid4().hex
        if record_id in table:
            raise CollaboratorError("DataStore", f"{resource} id={record_id} already exists")
        now = utcnow()
        record["id"] = record_id
        record.setdefault("created_at", now)
        record.setdefault("updated_at", now)
        table[record_id] = record
        return copy.deepcopy(record)

    def put(self, resource: str, record_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        table = self._table(resource)
        if record_id not in table:
            raise NotFoundError(resource, record_id)
        updated = {**table[record_id], **copy.deepcopy(payload), "id": record_id}
        table[record_id] = updated
        return copy.deepcopy(updated)
