"""
Supplier advance model.

Cash handed to a supplier ahead of delivery. It is recovered by
deducting it from the supplier's next settlement; an advance is
closed once its outstanding amount reaches zero.
"""

from datetime import datetime

from sqlalchemy import BigInteger, Boolean, String, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from coffee_finance.models.base import Base


class SupplierAdvance(Base):
    __tablename__ = "supplier_advances"

    id: Mapped[int] = mapped_column(primary_key=True)
    supplier_id: Mapped[str] = mapped_column(
        String(100), nullable=False, index=True
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    outstanding: Mapped[int] = mapped_column(BigInteger, nullable=False)
    is_closed: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False
    )
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)
    issued_by: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )

    def __repr__(self) -> str:
        state = "closed" if self.is_closed else "open"
        return (
            f"<SupplierAdvance {self.supplier_id} "
            f"{self.outstanding}/{self.amount} ({state})>"
        )
