"""
Error Types

Domain errors raised by the balance engine and infrastructure errors raised by
the ledger store. Domain errors abort the unit of work before anything is
written and are reported to callers verbatim.
"""

from decimal import Decimal
from typing import Any, Optional


class BalanceError(ValueError):
    """Base class for all domain errors"""


class InvalidAmount(BalanceError):
    """Raised when an amount is not a positive two-decimal number"""

    def __init__(self, amount: Any, message: str = "Amount must be greater than zero"):
        self.amount = amount
        super().__init__(message)


class SelfTransfer(BalanceError):
    """Raised when a transfer names the same user on both sides"""

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__("Cannot transfer funds to yourself")


class InvalidComment(BalanceError):
    """Raised when a comment is longer than a transaction record can hold"""

    def __init__(self, max_length: int):
        self.max_length = max_length
        super().__init__(f"Comment cannot exceed {max_length} characters")


class UserNotFound(BalanceError):
    """Raised when a referenced user does not exist"""

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"User {user_id} not found")


class NoBalance(BalanceError):
    """Raised when debiting a user that has no balance row yet"""

    def __init__(self, user_id: int):
        self.user_id = user_id
        super().__init__(f"User {user_id} has no balance")


class InsufficientFunds(BalanceError):
    """Raised when a debit would take a balance below zero"""

    def __init__(self, user_id: int, balance: Decimal, amount: Decimal):
        self.user_id = user_id
        self.balance = balance
        self.amount = amount
        super().__init__("Insufficient funds")


class StorageError(RuntimeError):
    """Base class for ledger store failures (reported as internal errors)"""


class LockTimeout(StorageError):
    """Raised when a row lock is not granted within the configured timeout"""

    def __init__(self, user_id: int, timeout: Optional[float]):
        self.user_id = user_id
        self.timeout = timeout
        super().__init__(f"Timed out after {timeout}s waiting for balance lock of user {user_id}")


class LockOrderViolation(StorageError):
    """Raised when a unit of work requests row locks out of ascending order"""

    def __init__(self, user_id: int, held_user_id: int):
        self.user_id = user_id
        self.held_user_id = held_user_id
        super().__init__(
            f"Lock on user {user_id} requested after lock on user {held_user_id}; "
            f"balance locks must be taken in ascending user id order"
        )
