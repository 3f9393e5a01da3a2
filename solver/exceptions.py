"""Custom exception hierarchy for solver operations.

Provides specific exception types for different failure modes so that the
order processor can tell permanent per-order failures apart from transient
infrastructure errors.
"""
from __future__ import annotations


class SolverException(Exception):
    """Base exception for all solver errors."""
    pass


class ConfigurationException(SolverException):
    """Configuration validation error."""
    pass


class AssetNotFound(SolverException):
    """No (unique) custodial asset matches a network/token pair."""

    def __init__(self, network_id: str, token_address: str, reason: str = "no matching asset"):
        self.network_id = network_id
        self.token_address = token_address
        self.reason = reason
        super().__init__(f"Asset not found for token {token_address} on {network_id}: {reason}")


class PaymentApiError(SolverException):
    """Payment API communication error."""

    def __init__(self, message: str, status: int | None = None, body: str = ""):
        self.status = status
        self.body = body
        super().__init__(message)


class WithdrawalAlreadyExists(PaymentApiError):
    """A transaction with the requested external id was already created."""
    pass


class LedgerError(SolverException):
    """Order ledger (contract) read or write error."""
    pass


class LedgerTransactionError(LedgerError):
    """Submitted ledger transaction reverted or never got a receipt."""

    def __init__(self, message: str, tx_hash: str | None = None):
        self.tx_hash = tx_hash
        super().__init__(message)


class RetryExhausted(SolverException):
    """An operation kept failing after all retry attempts."""

    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")
