"""
LEDGER ERRORS
=============

Every failure the ledger, planner and services raise derives from LedgerError.

- InvariantViolation: money would be created or destroyed (fatal, never auto-corrected)
- NotFoundError: referenced user/group/expense/payment/membership is absent
- ConflictError: operation refused in the current state
- ValidationError: malformed input (amounts, empty share lists, ...)
- StorageError: the database call itself failed
"""


class LedgerError(Exception):
    """Base exception for ledger operations"""
    pass


class InvariantViolation(LedgerError):
    """Raised when balances, shares or settlements would not conserve money"""
    pass


class NotFoundError(LedgerError):
    """Raised when a referenced record does not exist"""
    pass


class ConflictError(LedgerError):
    """Raised when an operation is refused for the current state"""
    pass


class DuplicatePaymentError(ConflictError):
    """Raised when the same payment was recorded moments ago"""
    pass


class ValidationError(LedgerError):
    """Raised when input is malformed"""
    pass


class StorageError(LedgerError):
    """Raised when the persistence layer fails; the transaction is rolled back"""
    pass
