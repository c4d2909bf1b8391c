# Overview: Domain error taxonomy shared by every service.

"""
Domain errors.

Every failure raised by the service layer is a DomainError subclass. Each
class carries the HTTP status an API layer should map it to, plus an
optional context dict naming the entities involved (which class, which
teacher, which time slot) so callers can act on the failure.

None of these are retried internally. Storage-level concurrency failures
(OperationalError / StaleDataError) are handled separately by
services.concurrency.run_with_retry.
"""

from __future__ import annotations

from typing import Any


class DomainError(ValueError):
    """Base class for business-rule failures."""

    http_status = 400

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context

    def to_dict(self) -> dict:
        payload = {"error": self.message, "kind": type(self).__name__}
        if self.context:
            payload["context"] = self.context
        return payload


class ValidationError(DomainError):
    """400-level input problem."""

    http_status = 400


class NotFoundError(DomainError):
    """Referenced entity id does not resolve."""

    http_status = 404


# -- CONFLICTS (409) --

class ConflictError(DomainError):
    """409-level business rule conflict."""

    http_status = 409


class CapacityExceededError(ConflictError):
    pass


class AlreadyEnrolledError(ConflictError):
    pass


class NotEnrolledError(ConflictError):
    pass


class WaitlistDisabledError(ConflictError):
    pass


class AlreadyWaitlistedError(ConflictError):
    pass


class ScheduleConflictError(ConflictError):
    pass


class AlreadySignedError(ConflictError):
    pass


class AlreadyCancelledError(ConflictError):
    pass


class DuplicateError(ConflictError):
    """Store rejected a row because a unique field already exists."""


# -- STATE MACHINES --

class InvalidTransitionError(DomainError):
    """
    State-machine guard failure.

    Always a caller error (finishing a lesson that never started,
    activating an unsigned contract), never retried.
    """

    http_status = 409

    def __init__(self, entity: str, current: str, action: str, message: str | None = None):
        super().__init__(
            message or f"Cannot {action} {entity} in status '{current}'",
            entity=entity,
            current=current,
            action=action,
        )
        self.entity = entity
        self.current = current
        self.action = action


class LockedForEditingError(DomainError):
    """Mutation attempted after the entity crossed an editing-freeze boundary."""

    http_status = 423


class ForbiddenError(DomainError):
    """Actor's role or ownership does not allow the operation."""

    http_status = 403
