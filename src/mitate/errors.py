"""Error classes. Each carries a machine-readable code, e.g. conflict, not_found."""

from __future__ import annotations


class MitateError(Exception):
    """Base class for settlement-core errors."""

    code = "error"

    def __init__(self, message: str, *, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict[str, str]:
        return {"detail": self.message, "code": self.code}


class ValidationError(MitateError):
    """Rejected input: non-positive amount, wrong status for a bet, bad outcome."""

    code = "validation_error"


class NotFoundError(ValidationError):
    code = "not_found"


class ConflictError(MitateError):
    """Duplicate tx hash, double confirmation, illegal lifecycle transition."""

    code = "conflict"


class LedgerError(MitateError):
    """External ledger failure (RPC error, dropped subscription)."""

    code = "ledger_error"


class ConfigurationError(MitateError):
    """Missing configuration needed by one operation (e.g. operator address)."""

    code = "configuration_error"
