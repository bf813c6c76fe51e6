"""
Supplier payment model — the audit row of a disbursement.

At most one live (is_duplicate = false) row may exist per
reference. The settlement engine checks before inserting; the
partial unique index is the backstop when two settlements race.
"""

from datetime import datetime

from sqlalchemy import (
    BigInteger, Boolean, String, DateTime, ForeignKey, Index,
    Enum as SAEnum, text,
)
from sqlalchemy.orm import Mapped, mapped_column

from coffee_finance.models.base import Base
from coffee_finance.models.enums import SupplierPaymentStatus


class SupplierPayment(Base):
    __tablename__ = "supplier_payments"
    __table_args__ = (
        Index(
            "uq_supplier_payments_live_reference",
            "reference",
            unique=True,
            postgresql_where=text("is_duplicate = false"),
            sqlite_where=text("is_duplicate = 0"),
        ),
    )

    id: Mapped[int] = mapped_column(primary_key=True)
    payment_record_id: Mapped[int] = mapped_column(
        ForeignKey("payment_records.id"), nullable=False, index=True
    )
    supplier_id: Mapped[str] = mapped_column(String(100), nullable=False)
    # The lot's batch number
    reference: Mapped[str] = mapped_column(String(100), nullable=False)
    is_duplicate: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    method: Mapped[str] = mapped_column(
        String(30), nullable=False, default="CASH"
    )
    status: Mapped[SupplierPaymentStatus] = mapped_column(
        SAEnum(
            SupplierPaymentStatus,
            name="supplier_payment_status_enum",
            create_constraint=True,
        ),
        nullable=False,
        default=SupplierPaymentStatus.POSTED,
    )
    gross_payable: Mapped[int] = mapped_column(BigInteger, nullable=False)
    advance_recovered: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )
    amount_paid: Mapped[int] = mapped_column(BigInteger, nullable=False)
    requested_by: Mapped[str] = mapped_column(String(255), nullable=False)
    approved_by: Mapped[str] = mapped_column(String(255), nullable=False)
    approved_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    def __repr__(self) -> str:
        return f"<SupplierPayment {self.reference} {self.amount_paid}>"
