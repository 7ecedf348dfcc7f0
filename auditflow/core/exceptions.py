"""
Platform-wide exception hierarchy.

Services raise these types; the application registers one handler per type
and maps them to consistent HTTP status codes everywhere.

Usage:
    from auditflow.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Audit", resource_id=42)
    raise ValidationError("Timetable is required", details={"timetable": "empty"})
"""

import re
from datetime import datetime


class NotFoundError(Exception):
    """Raised when a requested resource does not exist within the given scope.

    Used for BOTH genuinely missing records AND cross-tenant access attempts,
    so a caller cannot probe for the existence of another tenant's rows.

    Args:
        resource: Human-readable entity name (e.g. "Audit", "Meeting").
        resource_id: The PK that was looked up. Included in logs, not in HTTP response.
        tenant_id: Optional — the scope that was enforced. For debug logging only.
    """

    def __init__(
        self,
        resource: str,
        resource_id: int | str | None = None,
        tenant_id: int | None = None,
    ) -> None:
        self.resource = resource
        self.resource_id = resource_id
        self.tenant_id = tenant_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        if tenant_id is not None:
            msg += f" (tenant={tenant_id})"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input is missing or malformed for a business operation.

    Maps to HTTP 422.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)


class ConflictError(Exception):
    """Raised for invalid state transitions and uniqueness violations.

    Maps to HTTP 409.

    Args:
        message: Human-readable explanation.
        resource: Optional entity name the conflict is about.
        current_state: Optional state the entity was in when the call was made.
    """

    def __init__(
        self,
        message: str,
        *,
        resource: str | None = None,
        current_state: str | None = None,
    ) -> None:
        self.resource = resource
        self.current_state = current_state
        super().__init__(message)

    @classmethod
    def transition(cls, resource: str, action: str, current_state: str) -> "ConflictError":
        return cls(
            f"Cannot {action} {re.sub(r'(?<!^)(?=[A-Z])', ' ', resource).lower()} in status {current_state}",
            resource=resource,
            current_state=current_state,
        )


class ForbiddenError(Exception):
    """Raised when the actor lacks the functional role an operation needs.

    Maps to HTTP 403. Not about authentication: the caller is known, but is
    e.g. not the audit's team leader.
    """

    def __init__(self, message: str, *, user_id: int | None = None) -> None:
        self.user_id = user_id
        super().__init__(message)


class RateLimitedError(Exception):
    """Raised when a deduplicated broadcast is re-sent inside its cooldown.

    Maps to HTTP 429.

    Args:
        message: Human-readable explanation.
        last_sent_at: When the previous broadcast went out.
        last_sent_by: User id of the previous sender.
        retry_after: Seconds until another send is allowed.
    """

    def __init__(
        self,
        message: str,
        *,
        last_sent_at: datetime | None = None,
        last_sent_by: int | None = None,
        retry_after: int | None = None,
    ) -> None:
        self.last_sent_at = last_sent_at
        self.last_sent_by = last_sent_by
        self.retry_after = retry_after
        super().__init__(message)
