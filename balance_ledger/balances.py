"""
Balance Engine Module

Deposits, withdrawals, transfers and balance lookups. Every mutating operation
runs as exactly one unit of work on the ledger store: the affected balance
rows are locked (in ascending user id order), validated, updated and recorded
in the transaction log, and all of it commits or none of it does.
"""

from decimal import Decimal
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Any

from .errors import (
    BalanceError, InsufficientFunds, InvalidComment, NoBalance, SelfTransfer, UserNotFound
)
from .models import MAX_COMMENT_LENGTH, Balance, Transaction, TransactionType
from .money import ZERO, AmountLike, format_amount, parse_amount
from .storage import StorageInterface, UnitOfWork
from .users import UserDirectory
from .logging_config import get_logger, log_action


@dataclass
class BalanceChange:
    """Outcome of a deposit or withdrawal"""
    user_id: int
    amount: Decimal
    balance: Decimal
    comment: Optional[str]
    transaction: Transaction

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "amount": format_amount(self.amount),
            "balance": format_amount(self.balance),
            "comment": self.comment,
        }


@dataclass
class TransferResult:
    """Outcome of a transfer, with both linked transaction records"""
    from_user_id: int
    to_user_id: int
    amount: Decimal
    from_balance: Decimal
    to_balance: Decimal
    comment: Optional[str]
    outgoing: Transaction
    incoming: Transaction

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_user_id": self.from_user_id,
            "to_user_id": self.to_user_id,
            "amount": format_amount(self.amount),
            "from_balance": format_amount(self.from_balance),
            "to_balance": format_amount(self.to_balance),
            "comment": self.comment,
        }


@dataclass
class BalanceSnapshot:
    """Committed balance of a user at read time"""
    user_id: int
    balance: Decimal

    def to_dict(self) -> Dict[str, Any]:
        return {"user_id": self.user_id, "balance": format_amount(self.balance)}


@dataclass
class ReconciliationReport:
    """Result of replaying a user's transaction history against the stored balance"""
    user_id: int
    stored_balance: Decimal
    computed_balance: Decimal
    transaction_count: int
    problems: List[str] = field(default_factory=list)

    @property
    def is_consistent(self) -> bool:
        return not self.problems

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "stored_balance": format_amount(self.stored_balance),
            "computed_balance": format_amount(self.computed_balance),
            "transaction_count": self.transaction_count,
            "is_consistent": self.is_consistent,
            "problems": list(self.problems),
        }


class BalanceEngine:
    """
    Applies balance mutations against the ledger store

    The engine keeps no balance state of its own; every read and write goes
    through the store.
    """

    def __init__(self, storage: StorageInterface, users: UserDirectory):
        self.storage = storage
        self.users = users
        self.logger = get_logger("balance_ledger.balances")

    def deposit(self, user_id: int, amount: AmountLike, comment: Optional[str] = None) -> BalanceChange:
        """
        Credit a user's balance, creating the balance row on first deposit

        Args:
            user_id: User to credit
            amount: Positive amount with at most two decimal places
            comment: Optional note stored on the transaction record

        Returns:
            BalanceChange with the balance after the deposit

        Raises:
            InvalidAmount: If amount is not positive
            InvalidComment: If comment is longer than 255 characters
            UserNotFound: If the user does not exist
        """
        try:
            amount = parse_amount(amount)
            self._check_comment(comment)

            def apply(uow: UnitOfWork) -> BalanceChange:
                self._require_user(user_id, uow)
                row = uow.lock_balance(user_id, create=True)
                record = self._record(uow, row, TransactionType.DEPOSIT, amount, comment=comment)
                return BalanceChange(user_id, amount, record.balance_after, comment, record)

            result = self.storage.run_atomic(apply)
        except BalanceError as e:
            self._log_rejection("deposit", e, user_id=user_id, amount=amount)
            raise

        log_action(
            self.logger, "info", "Deposit committed",
            user_id=user_id, action="deposit", resource=f"balance:{user_id}",
            extra={
                "transaction_id": result.transaction.id,
                "amount": format_amount(amount),
                "balance": format_amount(result.balance)
            }
        )
        return result

    def withdraw(self, user_id: int, amount: AmountLike, comment: Optional[str] = None) -> BalanceChange:
        """
        Debit a user's balance

        Raises:
            InvalidAmount: If amount is not positive
            UserNotFound: If the user does not exist
            NoBalance: If the user has never had a balance row
            InsufficientFunds: If the balance is lower than amount
        """
        try:
            amount = parse_amount(amount)
            self._check_comment(comment)

            def apply(uow: UnitOfWork) -> BalanceChange:
                self._require_user(user_id, uow)
                row = uow.lock_balance(user_id, create=False)
                if row is None:
                    raise NoBalance(user_id)
                if row.balance < amount:
                    raise InsufficientFunds(user_id, row.balance, amount)
                record = self._record(uow, row, TransactionType.WITHDRAW, amount, comment=comment)
                return BalanceChange(user_id, amount, record.balance_after, comment, record)

            result = self.storage.run_atomic(apply)
        except BalanceError as e:
            self._log_rejection("withdraw", e, user_id=user_id, amount=amount)
            raise

        log_action(
            self.logger, "info", "Withdrawal committed",
            user_id=user_id, action="withdraw", resource=f"balance:{user_id}",
            extra={
                "transaction_id": result.transaction.id,
                "amount": format_amount(amount),
                "balance": format_amount(result.balance)
            }
        )
        return result

    def transfer(
        self,
        from_user_id: int,
        to_user_id: int,
        amount: AmountLike,
        comment: Optional[str] = None
    ) -> TransferResult:
        """
        Move funds from one user to another

        Both balance rows are locked in ascending user id order regardless of
        transfer direction. The recipient's row is created at zero if absent.

        Raises:
            InvalidAmount: If amount is not positive
            SelfTransfer: If both sides name the same user
            UserNotFound: If either user does not exist
            NoBalance: If the sender has never had a balance row
            InsufficientFunds: If the sender's balance is lower than amount
        """
        try:
            amount = parse_amount(amount)
            self._check_comment(comment)
            if from_user_id == to_user_id:
                raise SelfTransfer(from_user_id)

            def apply(uow: UnitOfWork) -> TransferResult:
                self._require_user(from_user_id, uow)
                self._require_user(to_user_id, uow)

                rows = uow.lock_balances([from_user_id, to_user_id], create=[to_user_id])
                sender, recipient = rows[from_user_id], rows[to_user_id]

                if sender is None:
                    raise NoBalance(from_user_id)
                if sender.balance < amount:
                    raise InsufficientFunds(from_user_id, sender.balance, amount)

                outgoing = self._record(
                    uow, sender, TransactionType.TRANSFER_OUT, amount,
                    related_user_id=to_user_id, comment=comment
                )
                incoming = self._record(
                    uow, recipient, TransactionType.TRANSFER_IN, amount,
                    related_user_id=from_user_id, comment=comment
                )
                return TransferResult(
                    from_user_id=from_user_id,
                    to_user_id=to_user_id,
                    amount=amount,
                    from_balance=outgoing.balance_after,
                    to_balance=incoming.balance_after,
                    comment=comment,
                    outgoing=outgoing,
                    incoming=incoming
                )

            result = self.storage.run_atomic(apply)
        except BalanceError as e:
            self._log_rejection(
                "transfer", e, user_id=from_user_id, amount=amount, to_user_id=to_user_id
            )
            raise

        log_action(
            self.logger, "info", "Transfer committed",
            user_id=from_user_id, action="transfer", resource=f"balance:{from_user_id}",
            extra={
                "to_user_id": to_user_id,
                "amount": format_amount(amount),
                "from_balance": format_amount(result.from_balance),
                "to_balance": format_amount(result.to_balance),
                "transaction_ids": [result.outgoing.id, result.incoming.id]
            }
        )
        return result

    def get_balance(self, user_id: int) -> BalanceSnapshot:
        """
        Read a user's committed balance without locking

        A user who never received funds has a zero balance; no row is created.

        Raises:
            UserNotFound: If the user does not exist
        """
        self._require_user(user_id)
        row = self.storage.get_balance(user_id)
        return BalanceSnapshot(user_id, row.balance if row is not None else ZERO)

    def get_transactions(self, user_id: int, limit: Optional[int] = None) -> List[Transaction]:
        """Committed transaction history of a user, most recent first"""
        self._require_user(user_id)
        transactions = self.storage.list_transactions(user_id, limit=limit)
        transactions.reverse()
        return transactions

    def verify_balance(self, user_id: int) -> ReconciliationReport:
        """
        Replay a user's transaction history and compare it with the stored balance

        Checks that the snapshots chain from zero, that every record's
        balance_after equals balance_before plus its signed amount, and that
        the replayed total equals the stored balance.
        """
        self._require_user(user_id)
        row = self.storage.get_balance(user_id)
        stored = row.balance if row is not None else ZERO
        history = self.storage.list_transactions(user_id)

        problems = []
        running = ZERO
        for record in history:
            if record.balance_before != running:
                problems.append(
                    f"Transaction {record.id}: balance_before {format_amount(record.balance_before)} "
                    f"does not follow previous balance {format_amount(running)}"
                )
            if record.balance_after != record.balance_before + record.delta:
                problems.append(
                    f"Transaction {record.id}: balance_after {format_amount(record.balance_after)} "
                    f"does not match its {record.transaction_type.value} of {format_amount(record.amount)}"
                )
            running += record.delta

        if running != stored:
            problems.append(
                f"Stored balance {format_amount(stored)} differs from replayed "
                f"history {format_amount(running)}"
            )

        report = ReconciliationReport(
            user_id=user_id,
            stored_balance=stored,
            computed_balance=running,
            transaction_count=len(history),
            problems=problems
        )
        if not report.is_consistent:
            log_action(
                self.logger, "error", "Balance does not reconcile with history",
                user_id=user_id, action="verify_balance", resource=f"balance:{user_id}",
                extra=report.to_dict()
            )
        return report

    def _require_user(self, user_id: int, uow: Optional[UnitOfWork] = None) -> None:
        # Inside a unit of work the check reuses its connection
        exists = uow.user_exists(user_id) if uow is not None else self.users.exists(user_id)
        if not exists:
            raise UserNotFound(user_id)

    @staticmethod
    def _check_comment(comment: Optional[str]) -> None:
        if comment is not None and len(comment) > MAX_COMMENT_LENGTH:
            raise InvalidComment(MAX_COMMENT_LENGTH)

    def _record(
        self,
        uow: UnitOfWork,
        row: Balance,
        transaction_type: TransactionType,
        amount: Decimal,
        related_user_id: Optional[int] = None,
        comment: Optional[str] = None
    ) -> Transaction:
        """Apply one signed change to a locked row and append its audit record"""
        record = Transaction(
            user_id=row.user_id,
            transaction_type=transaction_type,
            amount=amount,
            balance_before=row.balance,
            balance_after=row.balance + amount * transaction_type.sign,
            related_user_id=related_user_id,
            comment=comment
        )
        uow.save_balance(row.with_balance(record.balance_after))
        return uow.append_transaction(record)

    def _log_rejection(self, action: str, error: BalanceError, user_id: int,
                       amount: Any, **extra) -> None:
        extra.update({
            "error": type(error).__name__,
            "reason": str(error),
            "amount": str(amount)
        })
        log_action(
            self.logger, "warning", f"{action.capitalize()} rejected",
            user_id=user_id, action=action, resource=f"balance:{user_id}",
            extra=extra
        )
