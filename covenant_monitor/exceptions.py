"""
Exception hierarchy shared by every covenant_monitor service.

Callers catch these types once instead of importing per-service errors.

Usage:
    from covenant_monitor.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Alert", resource_id="a1")
    raise ValidationError("Validation failed: ...", details={"operator": "..."})
"""
from typing import Optional


class ValidationError(Exception):
    """Raised when input is malformed or violates a business rule.

    Args:
        message: Human-readable aggregate explanation.
        details: Optional field-level breakdown. Keys are field names.
    """

    def __init__(self, message: str, details: Optional[dict] = None) -> None:
        self.details = details or {}
        super().__init__(message)


class InvalidTransitionError(ValidationError):
    """Raised when an alert is asked to move along an undefined edge."""

    def __init__(self, alert_id: str, from_status: str, to_status: str) -> None:
        self.alert_id = alert_id
        self.from_status = from_status
        self.to_status = to_status
        super().__init__(
            f"Alert {alert_id} cannot move from '{from_status}' to '{to_status}'",
            details={"status": from_status},
        )


class AuthorizationError(Exception):
    """Raised when a permission or bank isolation check fails.

    Nothing has been applied when this is raised.
    """

    def __init__(
        self,
        user_id: Optional[str],
        resource: str,
        action: str,
        bank_id: Optional[str] = None,
    ) -> None:
        self.user_id = user_id
        self.resource = resource
        self.action = action
        self.bank_id = bank_id
        who = f"User {user_id}" if user_id else "Anonymous user"
        msg = f"{who} may not {action} {resource}"
        if bank_id is not None:
            msg += f" (bank={bank_id})"
        super().__init__(msg)


class NotFoundError(Exception):
    """Raised when a referenced record is absent at the data store.

    Args:
        resource: Human-readable entity name (e.g. "Alert", "Covenant").
        resource_id: The id that was looked up.
        bank_id: Optional scope that was enforced. For logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: Optional[str] = None,
        bank_id: Optional[str] = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.bank_id = bank_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if bank_id is not None:
            msg += f" (bank={bank_id})"
        super().__init__(msg)


class CollaboratorError(Exception):
    """Raised when an external collaborator (data store, summarizer) fails."""

    def __init__(self, collaborator: str, message: str) -> None:
        self.collaborator = collaborator
        super().__init__(f"{collaborator} failed: {message}")
