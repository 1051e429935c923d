"""
Token Ledger Exception Hierarchy

All exceptions inherit from TokenLedgerError, which is itself a ValueError
so callers that only know about ValueError still catch ledger failures.
"""

from typing import Any, Dict, Optional


class TokenLedgerError(ValueError):
    """Base exception for all token ledger errors"""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self):
        if self.details:
            details_str = ", ".join(f"{k}={v}" for k, v in self.details.items())
            return f"{self.message} ({details_str})"
        return self.message


class ConstructionError(TokenLedgerError):
    """Raised when deployment metadata is malformed or the token already exists"""
    pass


class RequestRejected(TokenLedgerError):
    """Raised when a request fails validation; ledger state is unchanged"""
    pass


class ZeroAddressError(RequestRejected):
    """Raised when the burn sentinel is used as a transfer party or spender"""
    pass


class InsufficientBalanceError(RequestRejected):
    """Raised when the source balance is lower than the requested amount"""
    pass


class InsufficientAllowanceError(RequestRejected):
    """Raised when the spender's allowance is lower than the requested amount"""
    pass


class InvalidAmountError(RequestRejected):
    """Raised when an amount is not an unsigned 256-bit integer"""
    pass


class NonPayableError(RequestRejected):
    """Raised when a request carries an attached payment"""
    pass


class LedgerInvariantError(TokenLedgerError):
    """
    Raised when an internal invariant breaks (underflow, overflow, broken
    conservation). Never a recoverable condition.
    """
    pass


class DispatcherHaltedError(TokenLedgerError):
    """Raised when a request reaches a dispatcher that is stopped or halted"""
    pass


class DispatcherBusyError(TokenLedgerError):
    """Raised when the request queue is full"""
    pass
