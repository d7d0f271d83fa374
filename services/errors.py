# services/errors.py
"""
Ledger error taxonomy.

Every error carries a stable ``code`` (used in API payloads and audit rows)
and the HTTP status the JSON layer answers with.
"""

from __future__ import annotations


class LedgerError(Exception):
    code = "ledger_error"
    http_status = 400

    def __init__(self, message: str = "", **details):
        super().__init__(message or self.code)
        self.message = message or self.code
        self.details = details

    def to_dict(self) -> dict:
        out = {"error": self.code, "message": self.message}
        if self.details:
            out["details"] = self.details
        return out


class ValidationError(LedgerError):
    """Malformed entry, line, account or period input."""
    code = "validation_error"
    http_status = 400


class UnbalancedEntryError(ValidationError):
    code = "unbalanced_entry"
    http_status = 422


class EmptyEntryError(ValidationError):
    code = "empty_entry"
    http_status = 422


class AlreadyPostedError(LedgerError):
    code = "already_posted"
    http_status = 409


class NotPostedError(LedgerError):
    code = "not_posted"
    http_status = 409


class AlreadyReversedError(LedgerError):
    code = "already_reversed"
    http_status = 409


class ImmutableEntryError(ValidationError):
    """Any change to a posted entry or its lines."""
    code = "immutable_entry"
    http_status = 409


class PeriodLockedError(LedgerError):
    code = "period_locked"
    http_status = 409


class NotFoundError(LedgerError):
    code = "not_found"
    http_status = 404


class ConcurrencyConflictError(LedgerError):
    """Lock or version contention. Safe to retry."""
    code = "concurrency_conflict"
    http_status = 409


class DuplicateNumberError(LedgerError):
    """Entry-number collision; retried inside the posting engine."""
    code = "duplicate_number"
    http_status = 409


class PermissionDeniedError(LedgerError):
    code = "permission_denied"
    http_status = 403


class ReconciliationError(LedgerError):
    code = "reconciliation_error"
    http_status = 500


class MissingControlAccountError(ReconciliationError):
    code = "missing_control_account"
