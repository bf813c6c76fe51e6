"""
Tests for the cash LedgerService.

Tests cover:
- Singleton creation on first read
- Batched movements and running balance_after
- Version conflict on a stale balance write
- Deposit recording and one-time confirmation
"""

import pytest
from sqlalchemy import select, update

from coffee_finance.exceptions import (
    AlreadyProcessedError,
    ConcurrencyConflictError,
    InvalidRequestError,
    NotFoundError,
)
from coffee_finance.models.audit_log import AuditLog
from coffee_finance.models.cash_balance import CashBalance
from coffee_finance.models.enums import (
    CashTransactionType,
    CashTransactionStatus,
)
from coffee_finance.schemas.cash import DepositCreate
from coffee_finance.services.ledger_service import CashMovement, LedgerService


def confirmed_deposit(service, amount, reference="DEP-1"):
    txn = service.record_deposit(
        DepositCreate(amount=amount, reference=reference),
        "cashier@greatpearl.ug",
    )
    return service.confirm_deposit(txn.id, "finance@greatpearl.ug")


# --- Singleton ---

class TestBalanceSingleton:

    def test_first_read_creates_zero_balance(self, db_session):
        service = LedgerService(db_session)
        row = service.get_balance_row()
        db_session.commit()

        assert row.current_balance == 0
        assert row.version == 0
        rows = db_session.execute(select(CashBalance)).scalars().all()
        assert len(rows) == 1

    def test_peek_does_not_create_row(self, db_session):
        service = LedgerService(db_session)
        assert service.peek_balance() == 0
        assert db_session.execute(select(CashBalance)).first() is None

    def test_stale_version_write_conflicts(self, db_session):
        service = LedgerService(db_session)
        row = service.get_balance_row()
        db_session.commit()
        stale_version = row.version

        # Another writer moves the balance behind our back
        db_session.execute(
            update(CashBalance)
            .where(CashBalance.id == row.id)
            .values(current_balance=500, version=stale_version + 1)
            .execution_options(synchronize_session=False)
        )

        with pytest.raises(ConcurrencyConflictError):
            service.write_balance(row, stale_version, 1000, "finance@greatpearl.ug")


# --- Movements ---

class TestApplyMovements:

    def test_batch_carries_running_balance(self, db_session):
        service = LedgerService(db_session)
        confirmed_deposit(service, 1000000)
        db_session.commit()

        entries = service.apply_movements([
            CashMovement(CashTransactionType.PAYMENT, -600000, "B-1"),
            CashMovement(CashTransactionType.PAYMENT, -500000, "B-2"),
        ], "finance@greatpearl.ug")
        db_session.commit()

        assert [e.balance_after for e in entries] == [400000, -100000]
        assert service.get_balance() == -100000
        assert all(e.status == CashTransactionStatus.CONFIRMED for e in entries)

    def test_single_write_bumps_version_once(self, db_session):
        service = LedgerService(db_session)
        row = service.get_balance_row()
        db_session.commit()
        before = row.version

        service.apply_movements([
            CashMovement(CashTransactionType.EXPENSE, -100),
            CashMovement(CashTransactionType.EXPENSE, -200),
            CashMovement(CashTransactionType.EXPENSE, -300),
        ], "finance@greatpearl.ug")
        db_session.commit()

        assert service.get_balance_row().version == before + 1

    def test_empty_batch_writes_nothing(self, db_session):
        service = LedgerService(db_session)
        assert service.apply_movements([], "finance@greatpearl.ug") == []
        assert db_session.execute(select(CashBalance)).first() is None


# --- Deposits ---

class TestDeposits:

    def test_pending_deposit_does_not_move_balance(self, db_session):
        service = LedgerService(db_session)
        txn = service.record_deposit(
            DepositCreate(amount=250000), "cashier@greatpearl.ug"
        )
        db_session.commit()

        assert txn.status == CashTransactionStatus.PENDING
        assert txn.balance_after is None
        assert service.peek_balance() == 0

    def test_confirm_credits_balance(self, db_session):
        service = LedgerService(db_session)
        txn = confirmed_deposit(service, 250000)
        db_session.commit()

        assert txn.status == CashTransactionStatus.CONFIRMED
        assert txn.confirmed_by == "finance@greatpearl.ug"
        assert txn.balance_after == 250000
        assert service.get_balance() == 250000

    def test_second_confirmation_rejected(self, db_session):
        service = LedgerService(db_session)
        txn = confirmed_deposit(service, 250000)
        db_session.commit()

        with pytest.raises(AlreadyProcessedError, match="already been confirmed"):
            service.confirm_deposit(txn.id, "finance@greatpearl.ug")
        db_session.rollback()

        assert service.get_balance() == 250000

    def test_confirm_unknown_deposit(self, db_session):
        service = LedgerService(db_session)
        with pytest.raises(NotFoundError):
            service.confirm_deposit(999, "finance@greatpearl.ug")

    def test_confirm_non_deposit_rejected(self, db_session):
        service = LedgerService(db_session)
        entry = service.apply_movement(
            CashMovement(CashTransactionType.EXPENSE, -100),
            "finance@greatpearl.ug",
        )
        db_session.commit()

        with pytest.raises(InvalidRequestError, match="not a deposit"):
            service.confirm_deposit(entry.id, "finance@greatpearl.ug")

    def test_confirmation_is_audited(self, db_session):
        service = LedgerService(db_session)
        confirmed_deposit(service, 75000)
        db_session.commit()

        events = db_session.execute(
            select(AuditLog.event_type)
        ).scalars().all()
        assert "DEPOSIT_CONFIRMED" in events

    def test_list_transactions_newest_first(self, db_session):
        service = LedgerService(db_session)
        confirmed_deposit(service, 1000, reference="first")
        confirmed_deposit(service, 2000, reference="second")
        db_session.commit()

        entries = service.list_transactions()
        assert [e.reference for e in entries] == ["second", "first"]
