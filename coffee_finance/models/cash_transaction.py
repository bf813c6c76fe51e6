"""
Cash transaction model (append-only cash log).

Payments are stored as negative amounts, deposits as positive.
balance_after is the singleton value right after this row was
applied; pending deposits have not been applied yet and carry
no balance_after.
"""

from datetime import datetime

from sqlalchemy import BigInteger, String, DateTime, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column

from coffee_finance.models.base import Base
from coffee_finance.models.enums import (
    CashTransactionType,
    CashTransactionStatus,
)


class CashTransaction(Base):
    __tablename__ = "finance_cash_transactions"

    id: Mapped[int] = mapped_column(primary_key=True)
    transaction_type: Mapped[CashTransactionType] = mapped_column(
        SAEnum(
            CashTransactionType,
            name="cash_transaction_type_enum",
            create_constraint=True,
        ),
        nullable=False,
    )
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    balance_after: Mapped[int | None] = mapped_column(
        BigInteger, nullable=True
    )
    reference: Mapped[str | None] = mapped_column(
        String(100), nullable=True, index=True
    )
    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_by: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[CashTransactionStatus] = mapped_column(
        SAEnum(
            CashTransactionStatus,
            name="cash_transaction_status_enum",
            create_constraint=True,
            values_callable=lambda e: [m.value for m in e],
        ),
        nullable=False,
        default=CashTransactionStatus.PENDING,
    )
    confirmed_by: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    confirmed_at: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )

    def __repr__(self) -> str:
        return (
            f"<CashTransaction {self.transaction_type.value} "
            f"{self.amount} ({self.status.value})>"
        )
