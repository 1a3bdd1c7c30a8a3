"""Escrow error taxonomy.

Every error a caller can see carries a stable ``kind`` plus a human-readable
message. ``ExternalServiceUnavailable`` and ``ConcurrencyConflict`` are
internal: they trigger fallbacks and retries and are never rendered.
"""

from __future__ import annotations


class EscrowError(Exception):
    kind: str = "escrow_error"
    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"error": self.kind, "message": self.message}


class ValidationError(EscrowError):
    kind = "validation_error"
    status_code = 400


class InsufficientFunds(EscrowError):
    kind = "insufficient_funds"
    status_code = 400


class NotFound(EscrowError):
    kind = "not_found"
    status_code = 404


class AlreadyCompleted(EscrowError):
    kind = "already_completed"
    status_code = 409


class InvalidGoalState(EscrowError):
    kind = "invalid_goal_state"
    status_code = 409


class TransientConflict(EscrowError):
    """Concurrent writers kept winning and the retry budget ran out."""

    kind = "conflict"
    status_code = 409


class ExternalServiceUnavailable(Exception):
    """External proposal/assessment call failed, timed out or returned junk."""


class ConcurrencyConflict(Exception):
    """A conditional write found a newer version than the one it read."""
