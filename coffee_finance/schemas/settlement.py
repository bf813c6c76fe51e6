"""
Pydantic schemas for coffee-lot settlement.

quote and execute take the same request shape: a list of
payment-record ids. The API contract is separate from the
models because a quote never touches the database rows it
describes.
"""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator

from coffee_finance.models.enums import PaymentStatus


# --- Request Schemas ---

class LotCreate(BaseModel):
    """A graded lot handed over for payment."""
    batch_number: str = Field(min_length=1, max_length=100)
    supplier_id: str = Field(min_length=1, max_length=100)
    supplier_name: str = Field(min_length=1, max_length=255)
    kilograms: Decimal = Field(gt=0, decimal_places=2)
    final_price: int | None = Field(default=None, ge=0)
    suggested_price: int | None = Field(default=None, ge=0)


class AdvanceCreate(BaseModel):
    supplier_id: str = Field(min_length=1, max_length=100)
    amount: int = Field(gt=0)
    reference: str | None = Field(default=None, max_length=100)


class SettlementRequest(BaseModel):
    lot_ids: list[int] = Field(min_length=1)

    @field_validator("lot_ids")
    @classmethod
    def lot_ids_must_be_unique(cls, v: list[int]) -> list[int]:
        if len(set(v)) != len(v):
            raise ValueError("lot_ids must not contain duplicates")
        return v


# --- Response Schemas ---

class LotResponse(BaseModel):
    id: int
    batch_number: str
    supplier_id: str
    supplier_name: str
    kilograms: Decimal
    final_price: int | None
    suggested_price: int | None
    status: PaymentStatus
    amount_paid: int
    balance: int
    paid_by: str | None
    paid_at: datetime | None
    created_at: datetime

    model_config = {"from_attributes": True}


class AdvanceResponse(BaseModel):
    id: int
    supplier_id: str
    amount: int
    outstanding: int
    is_closed: bool
    reference: str | None
    issued_by: str
    created_at: datetime
    closed_at: datetime | None

    model_config = {"from_attributes": True}


class LotQuote(BaseModel):
    """Amounts for one lot. final_amount is what leaves the cash box."""
    lot_id: int
    batch_number: str
    supplier_id: str
    total_amount: int
    advance_amount: int
    advance_recovered: int
    final_amount: int


class SkippedLot(BaseModel):
    lot_id: int
    reason: str


class SettlementQuote(BaseModel):
    lots: list[LotQuote]
    skipped: list[SkippedLot]
    total_final_amount: int
    current_balance: int
    projected_balance: int
    will_overdraft: bool
    low_balance_warning: bool


class SettledLot(BaseModel):
    lot_id: int
    batch_number: str
    supplier_payment_id: int
    final_amount: int
    advance_recovered: int
    balance_after: int


class SettlementResult(BaseModel):
    succeeded: list[SettledLot]
    skipped: list[SkippedLot]
    new_balance: int
    will_overdraft: bool
