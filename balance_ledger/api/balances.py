"""
Balance endpoints

Handlers are plain functions so that each request runs its unit of work on
the server's worker thread pool.
"""

from typing import Dict, Optional, Type

from fastapi import APIRouter, HTTPException, Depends, Query

from .dependencies import BalanceSystem, get_balance_system
from .schemas import (
    DepositRequest, WithdrawRequest, TransferRequest,
    BalanceChangeResponse, TransferResponse, BalanceResponse, TransactionHistoryResponse
)
from ..errors import (
    InsufficientFunds, InvalidAmount, InvalidComment, NoBalance, SelfTransfer, UserNotFound
)
from ..config import get_config
from ..logging_config import get_logger


router = APIRouter()
logger = get_logger("balance_ledger.api")

ErrorStatusMap = Dict[Type[Exception], int]

DEPOSIT_ERRORS: ErrorStatusMap = {
    InvalidAmount: 400,
    InvalidComment: 422,
    UserNotFound: 404,
}

WITHDRAW_ERRORS: ErrorStatusMap = {
    InvalidAmount: 409,
    InvalidComment: 422,
    UserNotFound: 404,
    NoBalance: 409,
    InsufficientFunds: 409,
}

TRANSFER_ERRORS: ErrorStatusMap = {
    InvalidAmount: 409,
    InvalidComment: 422,
    SelfTransfer: 422,
    UserNotFound: 404,
    NoBalance: 409,
    InsufficientFunds: 409,
}

READ_ERRORS: ErrorStatusMap = {
    UserNotFound: 404,
}


def _http_error(error: Exception, status_codes: ErrorStatusMap, action: str) -> HTTPException:
    """Translate an engine error into the HTTP error of the route"""
    for error_type, status_code in status_codes.items():
        if isinstance(error, error_type):
            return HTTPException(status_code=status_code, detail=str(error))

    # Must be called from inside the except block so the traceback is logged
    logger.exception(f"Unexpected error during {action}")
    return HTTPException(status_code=500, detail="Internal server error")


@router.post("/deposit", response_model=BalanceChangeResponse)
def deposit(
    request: DepositRequest,
    system: BalanceSystem = Depends(get_balance_system)
):
    """Credit a user's balance"""
    try:
        result = system.engine.deposit(request.user_id, request.amount, request.comment)
    except Exception as e:
        raise _http_error(e, DEPOSIT_ERRORS, "deposit") from e
    return result.to_dict()


@router.post("/withdraw", response_model=BalanceChangeResponse)
def withdraw(
    request: WithdrawRequest,
    system: BalanceSystem = Depends(get_balance_system)
):
    """Debit a user's balance"""
    try:
        result = system.engine.withdraw(request.user_id, request.amount, request.comment)
    except Exception as e:
        raise _http_error(e, WITHDRAW_ERRORS, "withdraw") from e
    return result.to_dict()


@router.post("/transfer", response_model=TransferResponse)
def transfer(
    request: TransferRequest,
    system: BalanceSystem = Depends(get_balance_system)
):
    """Move funds between two users"""
    try:
        result = system.engine.transfer(
            request.from_user_id, request.to_user_id, request.amount, request.comment
        )
    except Exception as e:
        raise _http_error(e, TRANSFER_ERRORS, "transfer") from e
    return result.to_dict()


@router.get("/balance/{user_id}", response_model=BalanceResponse)
def get_balance(
    user_id: int,
    system: BalanceSystem = Depends(get_balance_system)
):
    """Get a user's current balance"""
    try:
        snapshot = system.engine.get_balance(user_id)
    except Exception as e:
        raise _http_error(e, READ_ERRORS, "get_balance") from e
    return snapshot.to_dict()


@router.get("/balance/{user_id}/transactions", response_model=TransactionHistoryResponse)
def get_transactions(
    user_id: int,
    limit: Optional[int] = Query(None, ge=1, description="Most recent N records"),
    system: BalanceSystem = Depends(get_balance_system)
):
    """Get a user's transaction history, most recent first"""
    if limit is None:
        limit = get_config().history_page_size
    try:
        transactions = system.engine.get_transactions(user_id, limit=limit)
    except Exception as e:
        raise _http_error(e, READ_ERRORS, "get_transactions") from e
    return {
        "user_id": user_id,
        "transactions": [t.to_dict() for t in transactions]
    }
