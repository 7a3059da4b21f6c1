"""
Exception taxonomy for the marketplace core.

DomainError subclasses are client-facing: the exception handlers turn them into
a structured response carrying a stable machine-readable ``reason``.
IntegrityViolation is deliberately NOT a DomainError: it aborts the command and
is rendered as a generic failure.
"""


class DomainError(Exception):
    status_code = 400
    reason = "invalid_request"

    def __init__(self, message: str, reason: str = None):
        super().__init__(message)
        self.message = message
        if reason is not None:
            self.reason = reason


class InvalidRequestError(DomainError):
    status_code = 400
    reason = "invalid_request"


class ForbiddenError(DomainError):
    status_code = 403
    reason = "not_authorized"


class NotFoundError(DomainError):
    status_code = 404
    reason = "not_found"


class ConflictError(DomainError):
    status_code = 409
    reason = "conflict"


class IllegalTransitionError(ConflictError):
    reason = "illegal_transition"

    def __init__(self, current, target):
        current = getattr(current, "value", current)
        target = getattr(target, "value", target)
        super().__init__(f"Cannot move order from {current} to {target}")
        self.current = current
        self.target = target


class ConcurrentUpdateError(ConflictError):
    """The row changed between read and conditional write."""
    reason = "concurrent_update"


class JobAlreadyClaimedError(ConflictError):
    reason = "job_already_claimed"


class DisputeConflictError(ConflictError):
    reason = "dispute_conflict"


class IntegrityViolation(Exception):
    """Non-recoverable for the current command. Never swallowed."""


class LedgerAppendError(IntegrityViolation):
    def __init__(self, aggregate_type: str, aggregate_id: str, attempts: int):
        super().__init__(
            f"Failed to append event to {aggregate_type}:{aggregate_id} after {attempts} attempts"
        )
        self.aggregate_type = aggregate_type
        self.aggregate_id = aggregate_id
        self.attempts = attempts
