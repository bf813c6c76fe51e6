"""Business logic services."""

from coffee_finance.services.ledger_service import LedgerService
from coffee_finance.services.notification_service import NotificationService
from coffee_finance.services.settlement_service import SettlementService
from coffee_finance.services.withdrawal_service import WithdrawalService

__all__ = [
    "LedgerService",
    "NotificationService",
    "SettlementService",
    "WithdrawalService",
]
