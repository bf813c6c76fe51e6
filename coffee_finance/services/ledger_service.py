"""
Cash ledger service — the only writer of the cash balance.

This service enforces the cash rules:
1. The balance singleton is read in the same operation that
   writes it, and written only if its version is unchanged
2. Every applied movement leaves a log row whose balance_after
   equals the balance that movement produced
3. Log rows are append-only; only a pending deposit's status
   ever changes, and only once

It never commits. Callers (the routers) own the transaction,
so a settlement's log rows, balance write and payment rows land
together or not at all.
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from coffee_finance.exceptions import (
    AlreadyProcessedError,
    ConcurrencyConflictError,
    InvalidRequestError,
    NotFoundError,
)
from coffee_finance.models.audit_log import AuditLog
from coffee_finance.models.cash_balance import CashBalance
from coffee_finance.models.cash_transaction import CashTransaction
from coffee_finance.models.enums import (
    CashTransactionType,
    CashTransactionStatus,
)
from coffee_finance.schemas.cash import DepositCreate

logger = logging.getLogger(__name__)


@dataclass
class CashMovement:
    """One signed change to the cash balance. Payments are negative."""
    transaction_type: CashTransactionType
    amount: int
    reference: str | None = None
    notes: str | None = None


class LedgerService:
    """
    All cash balance reads and writes pass through this service.

    The service takes a database session as a constructor
    argument. The caller controls the transaction boundary.
    """

    def __init__(self, db: Session):
        self.db = db

    # --- Singleton access ---

    def get_balance_row(self) -> CashBalance:
        """
        Return the cash balance singleton, creating it if needed.

        A fresh installation starts at zero; the first deposit
        confirmation or payment creates the row.
        """
        row = self.peek_balance_row()

        if row is None:
            row = CashBalance(
                current_balance=0,
                version=0,
                updated_by="system",
            )
            self.db.add(row)
            self.db.flush()
            logger.info("Created cash balance singleton")

        return row

    def get_balance(self) -> int:
        return self.get_balance_row().current_balance

    def peek_balance_row(self) -> CashBalance | None:
        """The singleton if it exists. Never creates it."""
        return self.db.execute(
            select(CashBalance).order_by(CashBalance.id).limit(1)
        ).scalar_one_or_none()

    def peek_balance(self) -> int:
        row = self.peek_balance_row()
        return row.current_balance if row else 0

    def write_balance(
        self,
        row: CashBalance,
        expected_version: int,
        new_balance: int,
        actor: str,
    ) -> CashBalance:
        """
        Write a new balance if nobody else has written since we read.

        Raises ConcurrencyConflictError when the version moved.
        """
        result = self.db.execute(
            update(CashBalance)
            .where(
                CashBalance.id == row.id,
                CashBalance.version == expected_version,
            )
            .values(
                current_balance=new_balance,
                version=expected_version + 1,
                last_updated=datetime.utcnow(),
                updated_by=actor,
            )
        )
        if result.rowcount != 1:
            logger.warning(
                "Cash balance version conflict: expected v%s", expected_version
            )
            raise ConcurrencyConflictError(
                "Cash balance changed while this operation was running; "
                "reload and try again"
            )
        return row

    # --- Movements ---

    def apply_movements(
        self, movements: list[CashMovement], actor: str
    ) -> list[CashTransaction]:
        """
        Apply a batch of confirmed movements to the balance.

        The singleton is read once, each log row gets the running
        balance after it, all rows are added as one batch and the
        singleton is written once at the end.
        """
        if not movements:
            return []

        row = self.get_balance_row()
        expected_version = row.version
        running = row.current_balance
        now = datetime.utcnow()

        entries = []
        for movement in movements:
            running += movement.amount
            entries.append(CashTransaction(
                transaction_type=movement.transaction_type,
                amount=movement.amount,
                balance_after=running,
                reference=movement.reference,
                notes=movement.notes,
                created_by=actor,
                status=CashTransactionStatus.CONFIRMED,
                confirmed_by=actor,
                confirmed_at=now,
            ))

        self.db.add_all(entries)
        self.db.flush()
        self.write_balance(row, expected_version, running, actor)
        return entries

    def apply_movement(
        self, movement: CashMovement, actor: str
    ) -> CashTransaction:
        return self.apply_movements([movement], actor)[0]

    # --- Deposits ---

    def record_deposit(
        self, request: DepositCreate, actor: str
    ) -> CashTransaction:
        """
        Record cash handed in to finance. It only counts once confirmed.
        """
        txn = CashTransaction(
            transaction_type=CashTransactionType.DEPOSIT,
            amount=request.amount,
            reference=request.reference,
            notes=request.notes,
            created_by=actor,
            status=CashTransactionStatus.PENDING,
        )
        self.db.add(txn)
        self.db.flush()
        logger.info("Deposit %s of %s recorded by %s", txn.id, txn.amount, actor)
        return txn

    def confirm_deposit(self, transaction_id: int, actor: str) -> CashTransaction:
        """
        Confirm a pending deposit and credit the cash balance.

        The status flip is conditional on the row still being
        pending, so a second confirmation is AlreadyProcessed and
        never credits the balance twice.
        """
        txn = self.db.get(CashTransaction, transaction_id)
        if not txn:
            raise NotFoundError(f"Cash transaction {transaction_id} not found")
        if txn.transaction_type != CashTransactionType.DEPOSIT:
            raise InvalidRequestError(
                f"Cash transaction {transaction_id} is not a deposit"
            )

        now = datetime.utcnow()
        result = self.db.execute(
            update(CashTransaction)
            .where(
                CashTransaction.id == transaction_id,
                CashTransaction.status == CashTransactionStatus.PENDING,
            )
            .values(
                status=CashTransactionStatus.CONFIRMED,
                confirmed_by=actor,
                confirmed_at=now,
            )
        )
        if result.rowcount != 1:
            raise AlreadyProcessedError(
                f"Deposit {transaction_id} has already been confirmed"
            )

        row = self.get_balance_row()
        expected_version = row.version
        new_balance = row.current_balance + txn.amount
        txn.balance_after = new_balance
        self.db.flush()
        self.write_balance(row, expected_version, new_balance, actor)

        self.audit("DEPOSIT_CONFIRMED", actor, {
            "transaction_id": txn.id,
            "amount": txn.amount,
            "balance_after": new_balance,
        })
        logger.info(
            "Deposit %s confirmed by %s, balance now %s",
            txn.id, actor, new_balance,
        )
        return txn

    # --- Queries ---

    def list_transactions(self, limit: int = 50) -> list[CashTransaction]:
        """Return the most recent cash log rows, newest first."""
        entries = self.db.execute(
            select(CashTransaction)
            .order_by(CashTransaction.id.desc())
            .limit(limit)
        ).scalars().all()
        return list(entries)

    # --- Audit ---

    def audit(self, event_type: str, actor: str, details: dict) -> AuditLog:
        """Append an audit row in the current transaction."""
        entry = AuditLog(
            event_type=event_type,
            actor=actor,
            details=json.dumps(details, default=str, sort_keys=True),
        )
        self.db.add(entry)
        return entry
