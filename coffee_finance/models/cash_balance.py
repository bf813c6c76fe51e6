"""
Company cash balance (singleton row).

Exactly one row exists. It is never written blindly: every
write carries the version that was read, and bumps it, so two
writers that read the same balance cannot both succeed.
"""

from datetime import datetime

from sqlalchemy import BigInteger, Integer, String, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from coffee_finance.models.base import Base


class CashBalance(Base):
    __tablename__ = "finance_cash_balance"

    id: Mapped[int] = mapped_column(primary_key=True)
    current_balance: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )
    version: Mapped[int] = mapped_column(
        Integer, nullable=False, default=0
    )
    last_updated: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow
    )
    updated_by: Mapped[str] = mapped_column(
        String(255), nullable=False, default="system"
    )

    def __repr__(self) -> str:
        return f"<CashBalance {self.current_balance} v{self.version}>"
