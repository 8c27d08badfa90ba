from typing import Any, Optional


class LedgerError(ValueError):
    kind = "ledger_error"
    status_code = 400

    def __init__(self, message: str, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(LedgerError):
    kind = "validation_error"
    status_code = 400


class NotFoundError(LedgerError):
    kind = "not_found"
    status_code = 404


class ConflictError(LedgerError):
    kind = "conflict"
    status_code = 409


class MutationFailedError(LedgerError):
    kind = "mutation_failed"
    status_code = 500
