"""Error taxonomy shared by the store, the services and the HTTP layer.

Every error carries a ``context`` dict describing what was attempted so the
caller (or a log line) can reconstruct the failed command.
"""

from __future__ import annotations

from datetime import date
from typing import Any, Optional


class ServiceError(ValueError):
    def __init__(self, message: str, **context: Any) -> None:
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "error": type(self).__name__,
            "message": self.message,
        }
        for key, value in self.context.items():
            payload[key] = value.isoformat() if isinstance(value, date) else value
        return payload


class ValidationError(ServiceError):
    """Malformed input. ``fields`` maps each offending field to a reason."""

    def __init__(self, fields: dict[str, str], message: Optional[str] = None) -> None:
        summary = message or "; ".join(f"{k}: {v}" for k, v in fields.items())
        super().__init__(summary, fields=dict(fields))
        self.fields = dict(fields)


class InvalidScope(ValidationError):
    def __init__(
        self,
        reason: str,
        *,
        requested_date: Optional[date] = None,
        schedule_start: Optional[date] = None,
        schedule_end: Optional[date] = None,
        field: str = "date",
    ) -> None:
        super().__init__({field: reason}, message=reason)
        self.requested_date = requested_date
        self.context.update(
            requested_date=requested_date,
            schedule_start=schedule_start,
            schedule_end=schedule_end,
        )


class NotFound(ServiceError):
    def __init__(self, resource: str, identifier: Any = None) -> None:
        if identifier is None:
            message = f"{resource} not found"
        else:
            message = f"{resource} {identifier} not found"
        super().__init__(message, resource=resource, id=identifier)


class PreconditionFailed(ServiceError):
    def __init__(
        self,
        message: str,
        *,
        min_date: Optional[date] = None,
        max_date: Optional[date] = None,
    ) -> None:
        super().__init__(message, min_date=min_date, max_date=max_date)


class StoreFailure(ServiceError):
    def __init__(self, operation: str, *, attempts: int = 1) -> None:
        super().__init__(
            f"Store operation failed: {operation}",
            operation=operation,
            attempts=attempts,
        )
