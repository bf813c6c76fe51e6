"""
Pydantic schemas for withdrawal requests.

Structural checks (positive amount, non-blank reason) happen
here, before anything reaches the database. Channel-specific
disbursement details are checked by the service.
"""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from coffee_finance.models.enums import PaymentChannel, WithdrawalStatus


def _not_blank(v: str) -> str:
    v = v.strip()
    if not v:
        raise ValueError("must not be blank")
    return v


class WithdrawalCreate(BaseModel):
    amount: int = Field(gt=0)
    reason: str = Field(min_length=1, max_length=1000)
    payment_channel: PaymentChannel = PaymentChannel.CASH
    phone_number: str | None = Field(default=None, max_length=30)
    disbursement_bank_name: str | None = Field(default=None, max_length=100)
    disbursement_account_number: str | None = Field(
        default=None, max_length=50
    )
    disbursement_account_name: str | None = Field(
        default=None, max_length=255
    )

    @field_validator("reason")
    @classmethod
    def reason_must_not_be_blank(cls, v: str) -> str:
        return _not_blank(v)


class WithdrawalReject(BaseModel):
    reason: str = Field(min_length=1, max_length=1000)

    @field_validator("reason")
    @classmethod
    def reason_must_not_be_blank(cls, v: str) -> str:
        return _not_blank(v)


class WalletCredit(BaseModel):
    user_email: str = Field(min_length=3, max_length=255)
    amount: int = Field(gt=0)


class WalletResponse(BaseModel):
    id: int
    user_email: str
    current_balance: int
    updated_at: datetime

    model_config = {"from_attributes": True}


class WithdrawalResponse(BaseModel):
    id: int
    amount: int
    reason: str
    status: WithdrawalStatus
    requested_by: str
    payment_channel: PaymentChannel
    phone_number: str | None
    disbursement_bank_name: str | None
    disbursement_account_number: str | None
    disbursement_account_name: str | None
    requires_three_approvals: bool
    admin_approved_1: bool
    admin_approved_1_by: str | None
    admin_approved_1_at: datetime | None
    admin_approved_2: bool
    admin_approved_2_by: str | None
    admin_approved_2_at: datetime | None
    admin_approved_3: bool
    admin_approved_3_by: str | None
    admin_approved_3_at: datetime | None
    admin_approved: bool
    admin_approved_by: str | None
    admin_approved_at: datetime | None
    finance_approved_by: str | None
    finance_approved_at: datetime | None
    approved_by: str | None
    approved_at: datetime | None
    rejected_by: str | None
    rejected_at: datetime | None
    rejection_reason: str | None
    created_at: datetime

    model_config = {"from_attributes": True}


class WithdrawalDetailResponse(BaseModel):
    request: WithdrawalResponse
    can_approve: bool
    reason: str | None = None


class Disbursement(BaseModel):
    """What finance has to do next to actually hand over the money."""
    channel: PaymentChannel
    instruction: str
    cash_slip: str | None = None


class WithdrawalTransition(BaseModel):
    id: int
    next_state: WithdrawalStatus
    approvals_collected: int
    approvals_required: int
    disbursement: Disbursement | None = None
