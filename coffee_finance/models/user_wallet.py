"""
User wallet model.

A per-employee balance, separate from the company cash
singleton. Withdrawals are paid out of it once finance signs off.
"""

from datetime import datetime

from sqlalchemy import BigInteger, String, DateTime
from sqlalchemy.orm import Mapped, mapped_column

from coffee_finance.models.base import Base


class UserWallet(Base):
    __tablename__ = "user_accounts"

    id: Mapped[int] = mapped_column(primary_key=True)
    user_email: Mapped[str] = mapped_column(
        String(255), unique=True, nullable=False, index=True
    )
    current_balance: Mapped[int] = mapped_column(
        BigInteger, nullable=False, default=0
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, nullable=False, default=datetime.utcnow, onupdate=datetime.utcnow
    )

    def __repr__(self) -> str:
        return f"<UserWallet {self.user_email} {self.current_balance}>"
