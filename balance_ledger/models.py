"""
Ledger Records

Balance rows and immutable transaction records. A user's balance always equals
the running sum of the signed amounts of their transactions.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass, field, replace
from typing import Dict, Any, Optional
from enum import Enum

from .money import ZERO, format_amount, quantize


MAX_COMMENT_LENGTH = 255


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class TransactionType(Enum):
    """Kinds of balance changes"""
    DEPOSIT = "deposit"            # Funds added from outside
    WITHDRAW = "withdraw"          # Funds removed to outside
    TRANSFER_OUT = "transfer_out"  # Sender side of a transfer
    TRANSFER_IN = "transfer_in"    # Recipient side of a transfer

    @property
    def sign(self) -> int:
        """+1 for credits, -1 for debits"""
        if self in (TransactionType.DEPOSIT, TransactionType.TRANSFER_IN):
            return 1
        return -1

    @property
    def is_transfer(self) -> bool:
        return self in (TransactionType.TRANSFER_OUT, TransactionType.TRANSFER_IN)


@dataclass
class Balance:
    """Current balance of one user. At most one row per user, never deleted."""
    user_id: int
    balance: Decimal
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self):
        self.balance = quantize(Decimal(self.balance))
        if self.balance < ZERO:
            raise ValueError(f"Balance of user {self.user_id} cannot be negative")

    def with_balance(self, new_balance: Decimal) -> 'Balance':
        """Copy of this row holding new_balance"""
        return replace(self, balance=new_balance, updated_at=utcnow())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "balance": format_amount(self.balance),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Balance':
        return cls(
            user_id=int(data["user_id"]),
            balance=Decimal(str(data["balance"])),
            created_at=parse_datetime(data["created_at"]),
            updated_at=parse_datetime(data["updated_at"]),
        )


@dataclass(frozen=True)
class Transaction:
    """
    Immutable audit record of a single balance change

    balance_before and balance_after are exact snapshots taken while the
    user's balance row was locked.
    """
    user_id: int
    transaction_type: TransactionType
    amount: Decimal
    balance_before: Decimal
    balance_after: Decimal
    related_user_id: Optional[int] = None
    comment: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    id: Optional[int] = None  # Assigned by the store on append

    def __post_init__(self):
        for name in ("amount", "balance_before", "balance_after"):
            object.__setattr__(self, name, quantize(Decimal(getattr(self, name))))

        if self.amount <= ZERO:
            raise ValueError("Transaction amount must be positive")

        if self.balance_before < ZERO or self.balance_after < ZERO:
            raise ValueError("Transaction snapshots cannot be negative")

        if self.balance_after != self.balance_before + self.delta:
            raise ValueError(
                f"Snapshot mismatch: {self.balance_before} {self.transaction_type.value} "
                f"{self.amount} != {self.balance_after}"
            )

        if self.transaction_type.is_transfer:
            if self.related_user_id is None:
                raise ValueError("Transfer records must reference the counterparty")
            if self.related_user_id == self.user_id:
                raise ValueError("Transfer counterparty must be a different user")
        elif self.related_user_id is not None:
            raise ValueError(f"{self.transaction_type.value} records have no counterparty")

        if self.comment is not None and len(self.comment) > MAX_COMMENT_LENGTH:
            raise ValueError(f"Comment cannot exceed {MAX_COMMENT_LENGTH} characters")

    @property
    def delta(self) -> Decimal:
        """Signed change this record applies to the balance"""
        return self.amount * self.transaction_type.sign

    def with_id(self, transaction_id: int) -> 'Transaction':
        return replace(self, id=transaction_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "type": self.transaction_type.value,
            "amount": format_amount(self.amount),
            "balance_before": format_amount(self.balance_before),
            "balance_after": format_amount(self.balance_after),
            "related_user_id": self.related_user_id,
            "comment": self.comment,
            "created_at": self.created_at.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Transaction':
        related = data.get("related_user_id")
        return cls(
            id=int(data["id"]) if data.get("id") is not None else None,
            user_id=int(data["user_id"]),
            transaction_type=TransactionType(data["type"]),
            amount=Decimal(str(data["amount"])),
            balance_before=Decimal(str(data["balance_before"])),
            balance_after=Decimal(str(data["balance_after"])),
            related_user_id=int(related) if related is not None else None,
            comment=data.get("comment"),
            created_at=parse_datetime(data["created_at"]),
        )


@dataclass
class User:
    """Account holder as seen by the ledger (owned by the user directory)"""
    id: int
    name: str
    email: str
    created_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "created_at": self.created_at.isoformat(),
        }


def parse_datetime(value: Any) -> datetime:
    """Accept ISO strings (SQLite) or datetime objects (PostgreSQL)"""
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
