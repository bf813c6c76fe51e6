"""
Database models package.

All models must be imported here so that Alembic can discover
them through Base.metadata when generating migrations.
"""

from coffee_finance.models.base import Base
from coffee_finance.models.enums import (
    CashTransactionType,
    CashTransactionStatus,
    PaymentStatus,
    SupplierPaymentStatus,
    WithdrawalStatus,
    PaymentChannel,
)
from coffee_finance.models.audit_log import AuditLog
from coffee_finance.models.cash_balance import CashBalance
from coffee_finance.models.cash_transaction import CashTransaction
from coffee_finance.models.payment_record import PaymentRecord
from coffee_finance.models.supplier_payment import SupplierPayment
from coffee_finance.models.supplier_advance import SupplierAdvance
from coffee_finance.models.user_wallet import UserWallet
from coffee_finance.models.withdrawal_request import WithdrawalRequest

__all__ = [
    "Base",
    "CashTransactionType",
    "CashTransactionStatus",
    "PaymentStatus",
    "SupplierPaymentStatus",
    "WithdrawalStatus",
    "PaymentChannel",
    "AuditLog",
    "CashBalance",
    "CashTransaction",
    "PaymentRecord",
    "SupplierPayment",
    "SupplierAdvance",
    "UserWallet",
    "WithdrawalRequest",
]
