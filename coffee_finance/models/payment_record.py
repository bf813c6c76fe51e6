"""
Payment record model — one coffee lot awaiting payment.

Lots arrive from the stores/quality side already graded and
priced. The record goes Pending -> Paid exactly once; the
settlement engine guards that move with a conditional update.
"""

from datetime import datetime
from decimal import Decimal

from sqlalchemy import (
    BigInteger, String, DateTime, Numeric, Enum as SAEnum,
)
from sqlalchemy.orm import Mapped, mapped_column

from coffee_finance.models.base import Base
from coffee_finance.models.enums import PaymentStatus


class PaymentRecord(Base):
    __tablename__ = "payment_records"

    id: Mapped[int] = mapped_column(primary_key=True)
    batch_number: Mapped[str] = mapped_column(
        String(100), unique=True, nullable=False, index=True
    )
    supplier_id: Mapped[str] = mapped_column(
        String(100), nullable=False, index=True
    )
    supplier_name: Mapped[str] = mapped_column(String(255), nullable=False)
    kilograms: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), nullable=False
    )
    # Price per kilogram. final_price wins when both are set.
    final_price: Mapped[int | None] = mapped_column(
        BigInteger, nullable=True
    )
    suggested_price: Mapped[int | None] = mapped_column(
        BigInteger, nullable=True
    )
    status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(
            PaymentStatus,
            name="payment_status_enum",
            create_constraint=True,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=PaymentStatus.PENDING,
    )
    amount_paid: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )
    balance: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )
    paid_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    @property
    def unit_price(self) -> int:
        if self.final_price is not None:
            return self.final_price
        if self.suggested_price is not None:
            return self.suggested_price
        return 0

    def __repr__(self) -> str:
        return (
            f"<PaymentRecord {self.batch_number} "
            f"{self.kilograms}kg ({self.status.value})>"
        )
