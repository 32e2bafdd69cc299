"""
Pydantic schemas for API requests and responses
"""

from decimal import Decimal
from typing import List, Optional
from pydantic import BaseModel, Field, model_validator

from ..models import MAX_COMMENT_LENGTH


class DepositRequest(BaseModel):
    user_id: int = Field(..., description="User to credit")
    amount: Decimal = Field(..., description="Amount with at most two decimal places")
    comment: Optional[str] = Field(None, max_length=MAX_COMMENT_LENGTH)


class WithdrawRequest(BaseModel):
    user_id: int = Field(..., description="User to debit")
    amount: Decimal = Field(..., description="Amount with at most two decimal places")
    comment: Optional[str] = Field(None, max_length=MAX_COMMENT_LENGTH)


class TransferRequest(BaseModel):
    from_user_id: int = Field(..., description="Sender")
    to_user_id: int = Field(..., description="Recipient, must differ from sender")
    amount: Decimal = Field(..., description="Amount with at most two decimal places")
    comment: Optional[str] = Field(None, max_length=MAX_COMMENT_LENGTH)

    @model_validator(mode="after")
    def check_distinct_users(self) -> 'TransferRequest':
        if self.from_user_id == self.to_user_id:
            raise ValueError("Cannot transfer funds to yourself")
        return self


class BalanceChangeResponse(BaseModel):
    user_id: int
    amount: str = Field(..., description="Decimal amount as string")
    balance: str = Field(..., description="Balance after the operation as string")
    comment: Optional[str] = None


class TransferResponse(BaseModel):
    from_user_id: int
    to_user_id: int
    amount: str
    from_balance: str
    to_balance: str
    comment: Optional[str] = None


class BalanceResponse(BaseModel):
    user_id: int
    balance: str = Field(..., description="Current balance as string")


class TransactionModel(BaseModel):
    id: int
    user_id: int
    type: str = Field(..., description="deposit, withdraw, transfer_out or transfer_in")
    amount: str
    balance_before: str
    balance_after: str
    related_user_id: Optional[int] = None
    comment: Optional[str] = None
    created_at: str


class TransactionHistoryResponse(BaseModel):
    user_id: int
    transactions: List[TransactionModel]
