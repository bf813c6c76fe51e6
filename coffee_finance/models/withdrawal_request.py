"""
Withdrawal request model.

An employee asks to withdraw from their wallet. The request
collects admin sign-offs in fixed slots 1..3 (one slot for
ordinary amounts, all three above the threshold), then a
finance sign-off that pays it out.

The state machine below is the source of truth for which
moves are allowed.
"""

from datetime import datetime

from sqlalchemy import (
    BigInteger, Boolean, String, DateTime, Text, Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column

from coffee_finance.models.base import Base
from coffee_finance.models.enums import WithdrawalStatus, PaymentChannel


VALID_TRANSITIONS: dict[WithdrawalStatus, set[WithdrawalStatus]] = {
    WithdrawalStatus.PENDING: {
        WithdrawalStatus.PENDING_FINANCE,
        WithdrawalStatus.REJECTED,
    },
    WithdrawalStatus.PENDING_FINANCE: {
        WithdrawalStatus.APPROVED,
        WithdrawalStatus.REJECTED,
    },
    WithdrawalStatus.APPROVED: set(),  # Terminal
    WithdrawalStatus.REJECTED: set(),  # Terminal
}

APPROVAL_SLOTS = (1, 2, 3)


class WithdrawalRequest(Base):
    __tablename__ = "withdrawal_requests"

    id: Mapped[int] = mapped_column(primary_key=True)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reason: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[WithdrawalStatus] = mapped_column(
        SAEnum(
            WithdrawalStatus,
            name="withdrawal_status_enum",
            create_constraint=True,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=WithdrawalStatus.PENDING,
        index=True,
    )
    requested_by: Mapped[str] = mapped_column(
        String(255), nullable=False, index=True
    )
    payment_channel: Mapped[PaymentChannel] = mapped_column(
        SAEnum(
            PaymentChannel,
            name="payment_channel_enum",
            create_constraint=True,
        ),
        nullable=False,
        default=PaymentChannel.CASH,
    )
    phone_number: Mapped[str | None] = mapped_column(
        String(30), nullable=True
    )
    disbursement_bank_name: Mapped[str | None] = mapped_column(
        String(100), nullable=True
    )
    disbursement_account_number: Mapped[str | None] = mapped_column(
        String(50), nullable=True
    )
    disbursement_account_name: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    requires_three_approvals: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )

    # Admin approval slots
    admin_approved_1: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    admin_approved_1_by: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    admin_approved_1_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    admin_approved_2: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    admin_approved_2_by: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    admin_approved_2_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    admin_approved_3: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    admin_approved_3_by: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    admin_approved_3_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )

    # Set together with the last required slot
    admin_approved: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    admin_approved_by: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    admin_approved_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )

    finance_approved_by: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    finance_approved_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    approved_by: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    approved_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    rejected_by: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    rejected_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    rejection_reason: Mapped[str | None] = mapped_column(
        Text, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    @property
    def approvals_required(self) -> int:
        return 3 if self.requires_three_approvals else 1

    def slot_filled(self, slot: int) -> bool:
        return bool(getattr(self, f"admin_approved_{slot}"))

    def slot_approver(self, slot: int) -> str | None:
        return getattr(self, f"admin_approved_{slot}_by")

    @property
    def approvers(self) -> list[str]:
        """Identities already sitting in a filled slot."""
        return [
            self.slot_approver(slot)
            for slot in APPROVAL_SLOTS
            if self.slot_filled(slot) and self.slot_approver(slot)
        ]

    @property
    def approvals_collected(self) -> int:
        return sum(
            1 for slot in APPROVAL_SLOTS[:self.approvals_required]
            if self.slot_filled(slot)
        )

    def next_open_slot(self) -> int | None:
        """First required slot that is still empty, or None."""
        for slot in APPROVAL_SLOTS[:self.approvals_required]:
            if not self.slot_filled(slot):
                return slot
        return None

    def can_transition_to(self, new_status: WithdrawalStatus) -> bool:
        """Check if a state transition is valid."""
        return new_status in VALID_TRANSITIONS.get(self.status, set())

    def __repr__(self) -> str:
        return (
            f"<WithdrawalRequest {self.id} {self.amount} "
            f"{self.payment_channel.value} ({self.status.value})>"
        )
