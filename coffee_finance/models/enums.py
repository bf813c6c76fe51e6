"""
Shared enumerations for database models.

Values match the strings the finance dashboard already stores,
so existing rows keep their meaning.
"""

import enum


class CashTransactionType(str, enum.Enum):
    DEPOSIT = "DEPOSIT"
    PAYMENT = "PAYMENT"
    EXPENSE = "EXPENSE"
    ADVANCE_RECOVERY = "ADVANCE_RECOVERY"


class CashTransactionStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"


class PaymentStatus(str, enum.Enum):
    """Lifecycle of a coffee lot's payment record."""
    PENDING = "Pending"
    PAID = "Paid"


class SupplierPaymentStatus(str, enum.Enum):
    POSTED = "POSTED"


class WithdrawalStatus(str, enum.Enum):
    PENDING = "pending"
    PENDING_FINANCE = "pending_finance"
    APPROVED = "approved"
    REJECTED = "rejected"


class PaymentChannel(str, enum.Enum):
    CASH = "CASH"
    MOBILE_MONEY = "MOBILE_MONEY"
    BANK = "BANK"
