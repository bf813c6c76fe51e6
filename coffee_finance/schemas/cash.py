"""
Pydantic schemas for the cash ledger.
"""

from datetime import datetime

from pydantic import BaseModel, Field

from coffee_finance.models.enums import (
    CashTransactionType,
    CashTransactionStatus,
)


class CashBalanceResponse(BaseModel):
    current_balance: int
    version: int
    last_updated: datetime | None = None
    updated_by: str | None = None

    model_config = {"from_attributes": True}


class DepositCreate(BaseModel):
    """Cash handed in to finance, waiting to be counted and confirmed."""
    amount: int = Field(gt=0)
    reference: str | None = Field(default=None, max_length=100)
    notes: str | None = Field(default=None, max_length=500)


class CashTransactionResponse(BaseModel):
    id: int
    transaction_type: CashTransactionType
    amount: int
    balance_after: int | None
    reference: str | None
    notes: str | None
    created_by: str
    status: CashTransactionStatus
    confirmed_by: str | None
    confirmed_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}
