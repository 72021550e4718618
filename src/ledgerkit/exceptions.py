"""Custom exceptions for ledgerkit."""


class LedgerKitError(Exception):
    """Base exception for all ledgerkit errors."""

    pass


class ConfigurationError(LedgerKitError):
    """Raised when configuration is invalid or missing."""

    pass


class ValidationError(LedgerKitError, ValueError):
    """Raised when a record or request is malformed (e.g. non-positive amount)."""

    pass


class ReferentialIntegrityWarning(LedgerKitError):
    """A record points at an account or member that does not exist.

    The engines never raise this; it is reported as a ledger issue so that
    repair tooling can pick it up.
    """

    pass


class DivisionByZero(LedgerKitError, ZeroDivisionError):
    """Raised by the arithmetic layer when dividing by zero."""

    pass


class AmbiguousAttribution(LedgerKitError):
    """A payer was resolved by name matching instead of a linked identity."""

    pass


class SeriesLockedError(LedgerKitError):
    """Raised when an installment series can no longer be regenerated."""

    def __init__(self, series_id: str, message: str | None = None):
        self.series_id = series_id
        super().__init__(message or f"Installment series {series_id} is locked")
