"""
Balance Ledger

Per-user monetary balances with an append-only, auditable transaction history.
Deposits, withdrawals and transfers each run as one atomic unit of work with
row locks taken in ascending user id order.
"""

__version__ = "1.0.0"
