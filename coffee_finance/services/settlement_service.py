"""
Settlement service — paying suppliers for graded coffee lots.

For each lot:
1. Re-read the payment record; skip it unless still Pending
2. Look for a live supplier payment with the lot's batch number;
   skip the lot if one exists
3. Flip the payment record to Paid, conditional on it still
   being Pending (two finance officers may click at once)
4. Insert the supplier payment audit row; if another settlement
   inserted one first, put the lot back to Pending and skip it
5. Close the supplier's open advances (outstanding -> 0)
6. Debit the cash balance and append the cash log row

A bulk settlement reads the balance once, carries a running
balance across the lots and writes the singleton once at the
end. Lots that fail a guard are skipped; the rest still go
through. Everything shares the caller's transaction, so a
failure after a guard rolls the whole request back instead of
leaving a lot marked Paid with no cash entry.

An overdraft is a warning unless the finance settings forbid a
negative balance.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP

from sqlalchemy import insert, select, text, update, func
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from coffee_finance.config import FinanceSettings
from coffee_finance.exceptions import (
    AlreadyProcessedError,
    ConcurrencyConflictError,
    InsufficientFundsError,
    InvalidRequestError,
    PartialFailureError,
)
from coffee_finance.models.enums import (
    CashTransactionType,
    PaymentStatus,
    SupplierPaymentStatus,
)
from coffee_finance.models.payment_record import PaymentRecord
from coffee_finance.models.supplier_advance import SupplierAdvance
from coffee_finance.models.supplier_payment import SupplierPayment
from coffee_finance.schemas.settlement import (
    AdvanceCreate,
    LotCreate,
    LotQuote,
    SettledLot,
    SettlementQuote,
    SettlementResult,
    SkippedLot,
)
from coffee_finance.services.ledger_service import CashMovement, LedgerService

logger = logging.getLogger(__name__)

SKIP_NOT_FOUND = "not found"
SKIP_ALREADY_PAID = "already paid"
SKIP_ALREADY_EXISTS = "already exists"

# Must match the predicate of uq_supplier_payments_live_reference
_LIVE_REFERENCE_WHERE = {
    "postgresql": "is_duplicate = false",
    "sqlite": "is_duplicate = 0",
}


@dataclass
class SettlementAmounts:
    total_amount: int
    advance_amount: int
    advance_recovered: int
    final_amount: int


def calculate_settlement(
    kilograms: Decimal,
    unit_price: int,
    outstanding_advance: int,
    settings: FinanceSettings,
) -> SettlementAmounts:
    """
    Work out what a lot costs and what is actually paid out.

    total = kilograms x unit price (rounded to whole currency
    units); the outstanding advance is deducted and the result
    never goes below zero.
    """
    total = int(
        (Decimal(kilograms) * unit_price).quantize(
            Decimal("1"), rounding=ROUND_HALF_UP
        )
    )
    advance = outstanding_advance if settings.auto_recover_advances else 0
    advance = max(0, advance)
    final = settings.round_payment(max(0, total - advance))
    return SettlementAmounts(
        total_amount=total,
        advance_amount=advance,
        advance_recovered=min(advance, total),
        final_amount=max(0, final),
    )


@dataclass
class _LotPlan:
    lot: PaymentRecord
    amounts: SettlementAmounts


class SettlementService:

    def __init__(self, db: Session, settings: FinanceSettings):
        self.db = db
        self.settings = settings
        self.ledger_service = LedgerService(db)

    # --- Lots and advances ---

    def register_lot(self, request: LotCreate) -> PaymentRecord:
        """Register a graded lot as a Pending payment record."""
        existing = self.db.execute(
            select(PaymentRecord).where(
                PaymentRecord.batch_number == request.batch_number
            )
        ).scalar_one_or_none()

        if existing:
            raise InvalidRequestError(
                f"Lot with batch number '{request.batch_number}' already exists"
            )

        lot = PaymentRecord(
            batch_number=request.batch_number,
            supplier_id=request.supplier_id,
            supplier_name=request.supplier_name,
            kilograms=request.kilograms,
            final_price=request.final_price,
            suggested_price=request.suggested_price,
            status=PaymentStatus.PENDING,
        )
        self.db.add(lot)
        self.db.flush()
        return lot

    def list_pending_lots(self) -> list[PaymentRecord]:
        lots = self.db.execute(
            select(PaymentRecord)
            .where(PaymentRecord.status == PaymentStatus.PENDING)
            .order_by(PaymentRecord.created_at.desc(), PaymentRecord.id.desc())
        ).scalars().all()
        return list(lots)

    def outstanding_advances(self, supplier_ids: set[str]) -> dict[str, int]:
        """Sum of open advance balances per supplier."""
        if not supplier_ids:
            return {}
        rows = self.db.execute(
            select(
                SupplierAdvance.supplier_id,
                func.coalesce(func.sum(SupplierAdvance.outstanding), 0),
            )
            .where(
                SupplierAdvance.supplier_id.in_(supplier_ids),
                SupplierAdvance.is_closed.is_(False),
            )
            .group_by(SupplierAdvance.supplier_id)
        ).all()
        return {supplier_id: int(total) for supplier_id, total in rows}

    def issue_advance(
        self, request: AdvanceCreate, actor: str
    ) -> SupplierAdvance:
        """
        Record an advance given to a supplier.

        Enforces the minimum advance and, unless allowed, refuses
        a supplier who still has an open advance.
        """
        if request.amount < self.settings.minimum_advance_amount:
            raise InvalidRequestError(
                f"Advance amount must be at least "
                f"{self.settings.currency} {self.settings.minimum_advance_amount:,}"
            )

        outstanding = self.outstanding_advances({request.supplier_id})
        if (
            outstanding.get(request.supplier_id, 0) > 0
            and not self.settings.allow_advance_with_arrears
        ):
            raise InvalidRequestError(
                "Supplier has outstanding arrears. Clear existing balance first."
            )

        advance = SupplierAdvance(
            supplier_id=request.supplier_id,
            amount=request.amount,
            outstanding=request.amount,
            is_closed=False,
            reference=request.reference,
            issued_by=actor,
        )
        self.db.add(advance)
        self.db.flush()
        self.ledger_service.audit("ADVANCE_ISSUED", actor, {
            "advance_id": advance.id,
            "supplier_id": advance.supplier_id,
            "amount": advance.amount,
        })
        return advance

    # --- Planning ---

    def _live_payment_exists(self, reference: str) -> bool:
        existing = self.db.execute(
            select(SupplierPayment.id).where(
                SupplierPayment.reference == reference,
                SupplierPayment.is_duplicate.is_(False),
            ).limit(1)
        ).scalar_one_or_none()
        return existing is not None

    def _plan(
        self, lot_ids: list[int]
    ) -> tuple[list[_LotPlan], list[SkippedLot]]:
        """
        Apply the read-only guards and work out amounts per lot.

        An advance is only deducted once per supplier. The first
        lot that recovers anything closes all of the supplier's
        open advances, so later lots of that supplier see none.
        """
        lots = self.db.execute(
            select(PaymentRecord).where(PaymentRecord.id.in_(lot_ids))
        ).scalars().all()
        lots_by_id = {lot.id: lot for lot in lots}

        remaining_advance = self.outstanding_advances(
            {lot.supplier_id for lot in lots}
        )

        plans = []
        skipped = []
        for lot_id in lot_ids:
            lot = lots_by_id.get(lot_id)
            if lot is None:
                skipped.append(SkippedLot(lot_id=lot_id, reason=SKIP_NOT_FOUND))
                continue
            if lot.status != PaymentStatus.PENDING:
                skipped.append(SkippedLot(lot_id=lot_id, reason=SKIP_ALREADY_PAID))
                continue
            if self._live_payment_exists(lot.batch_number):
                skipped.append(
                    SkippedLot(lot_id=lot_id, reason=SKIP_ALREADY_EXISTS)
                )
                continue

            amounts = calculate_settlement(
                lot.kilograms,
                lot.unit_price,
                remaining_advance.get(lot.supplier_id, 0),
                self.settings,
            )
            if amounts.advance_recovered > 0:
                remaining_advance[lot.supplier_id] = 0
            plans.append(_LotPlan(lot=lot, amounts=amounts))

        return plans, skipped

    # --- Quote ---

    def quote_settlement(self, lot_ids: list[int]) -> SettlementQuote:
        """
        Show what paying these lots would do to the cash balance.

        Nothing is written. will_overdraft warns the operator
        before they confirm.
        """
        self._check_selection(lot_ids)
        plans, skipped = self._plan(lot_ids)
        current_balance = self.ledger_service.peek_balance()
        total_final = sum(p.amounts.final_amount for p in plans)
        projected = current_balance - total_final

        return SettlementQuote(
            lots=[self._to_quote(p) for p in plans],
            skipped=skipped,
            total_final_amount=total_final,
            current_balance=current_balance,
            projected_balance=projected,
            will_overdraft=projected < 0,
            low_balance_warning=projected < self.settings.cash_warning_threshold,
        )

    @staticmethod
    def _to_quote(plan: _LotPlan) -> LotQuote:
        return LotQuote(
            lot_id=plan.lot.id,
            batch_number=plan.lot.batch_number,
            supplier_id=plan.lot.supplier_id,
            total_amount=plan.amounts.total_amount,
            advance_amount=plan.amounts.advance_amount,
            advance_recovered=plan.amounts.advance_recovered,
            final_amount=plan.amounts.final_amount,
        )

    # --- Execute ---

    def _check_selection(self, lot_ids: list[int]) -> None:
        if not lot_ids:
            raise InvalidRequestError("No lots selected for payment")
        if len(lot_ids) > self.settings.max_bulk_lots:
            raise InvalidRequestError(
                f"At most {self.settings.max_bulk_lots} lots can be paid at once"
            )

    def execute_settlement(
        self, lot_ids: list[int], actor: str
    ) -> SettlementResult:
        """
        Pay a set of lots (at most max_bulk_lots) in one go.

        Returns which lots were paid, which were skipped and the
        resulting cash balance. The caller commits.
        """
        self._check_selection(lot_ids)
        plans, skipped = self._plan(lot_ids)
        current_balance = self.ledger_service.peek_balance()
        total_final = sum(p.amounts.final_amount for p in plans)

        if (
            current_balance - total_final < 0
            and not self.settings.allow_negative_balance
        ):
            raise InsufficientFundsError(
                available=current_balance, required=total_final
            )

        paid: list[tuple[_LotPlan, int]] = []
        movements: list[CashMovement] = []
        for plan in plans:
            supplier_payment_id, skip_reason = self._settle_lot(plan, actor)
            if supplier_payment_id is None:
                skipped.append(SkippedLot(lot_id=plan.lot.id, reason=skip_reason))
                continue
            paid.append((plan, supplier_payment_id))
            movements.append(CashMovement(
                transaction_type=CashTransactionType.PAYMENT,
                amount=-plan.amounts.final_amount,
                reference=plan.lot.batch_number,
                notes=(
                    f"Payment to {plan.lot.supplier_name} "
                    f"for batch {plan.lot.batch_number}"
                ),
            ))

        if not paid:
            logger.info("Settlement by %s paid nothing; all lots skipped", actor)
            return SettlementResult(
                succeeded=[],
                skipped=skipped,
                new_balance=current_balance,
                will_overdraft=current_balance < 0,
            )

        # A failed flush expires every loaded object
        paid_batches = [p.lot.batch_number for p, _ in paid]
        try:
            entries = self.ledger_service.apply_movements(movements, actor)
        except ConcurrencyConflictError:
            raise
        except SQLAlchemyError as e:
            logger.error(
                "Cash ledger write failed after %d lots were marked paid: %s",
                len(paid_batches), e,
            )
            raise PartialFailureError(
                f"Lots were marked paid but the cash ledger write failed: {e}",
                completed_steps=paid_batches,
            ) from e

        succeeded = []
        for (plan, supplier_payment_id), entry in zip(paid, entries):
            succeeded.append(SettledLot(
                lot_id=plan.lot.id,
                batch_number=plan.lot.batch_number,
                supplier_payment_id=supplier_payment_id,
                final_amount=plan.amounts.final_amount,
                advance_recovered=plan.amounts.advance_recovered,
                balance_after=entry.balance_after,
            ))
            self.ledger_service.audit("LOT_SETTLED", actor, {
                "lot_id": plan.lot.id,
                "batch_number": plan.lot.batch_number,
                "total_amount": plan.amounts.total_amount,
                "advance_recovered": plan.amounts.advance_recovered,
                "final_amount": plan.amounts.final_amount,
                "balance_after": entry.balance_after,
            })

        new_balance = entries[-1].balance_after
        logger.info(
            "Settlement by %s: %d paid, %d skipped, balance now %s",
            actor, len(succeeded), len(skipped), new_balance,
        )
        return SettlementResult(
            succeeded=succeeded,
            skipped=skipped,
            new_balance=new_balance,
            will_overdraft=new_balance < 0,
        )

    def _settle_lot(
        self, plan: _LotPlan, actor: str
    ) -> tuple[int | None, str | None]:
        """
        Steps 3-5 for one lot.

        Returns (supplier payment id, None), or (None, skip reason)
        when another settlement took the lot first. A skipped lot
        leaves nothing behind in the transaction.
        """
        lot_id = plan.lot.id
        batch_number = plan.lot.batch_number
        supplier_id = plan.lot.supplier_id
        amounts = plan.amounts
        now = datetime.utcnow()

        result = self.db.execute(
            update(PaymentRecord)
            .where(
                PaymentRecord.id == lot_id,
                PaymentRecord.status == PaymentStatus.PENDING,
            )
            .values(
                status=PaymentStatus.PAID,
                amount_paid=amounts.final_amount,
                balance=0,
                paid_by=actor,
                paid_at=now,
            )
        )
        if result.rowcount != 1:
            logger.info("Lot %s was paid concurrently; skipped", batch_number)
            return None, SKIP_ALREADY_PAID

        completed = [f"{batch_number}: marked paid"]
        try:
            payment_id = self._insert_supplier_payment(
                lot_id, supplier_id, batch_number, amounts, actor, now
            )
        except IntegrityError as e:
            raise AlreadyProcessedError(
                f"A payment for batch {batch_number} already exists"
            ) from e
        except SQLAlchemyError as e:
            raise PartialFailureError(
                f"Could not record supplier payment for batch "
                f"{batch_number}: {e}",
                completed_steps=completed,
            ) from e

        if payment_id is None:
            logger.warning(
                "Supplier payment for batch %s was inserted concurrently; "
                "lot put back to Pending", batch_number,
            )
            self.db.execute(
                update(PaymentRecord)
                .where(PaymentRecord.id == lot_id)
                .values(
                    status=PaymentStatus.PENDING,
                    amount_paid=0,
                    balance=0,
                    paid_by=None,
                    paid_at=None,
                )
            )
            return None, SKIP_ALREADY_EXISTS
        completed.append(f"{batch_number}: supplier payment recorded")

        if amounts.advance_recovered > 0:
            try:
                self._close_advances(supplier_id, amounts, now)
            except SQLAlchemyError as e:
                raise PartialFailureError(
                    f"Could not close advances for supplier "
                    f"{supplier_id}: {e}",
                    completed_steps=completed,
                ) from e

        return payment_id, None

    def _insert_supplier_payment(
        self,
        lot_id: int,
        supplier_id: str,
        batch_number: str,
        amounts: SettlementAmounts,
        actor: str,
        now: datetime,
    ) -> int | None:
        """
        Insert the live supplier payment row for a lot.

        On PostgreSQL and SQLite the insert yields to an existing
        live row with the same reference and None is returned.
        Other databases raise IntegrityError instead.
        """
        values = dict(
            payment_record_id=lot_id,
            supplier_id=supplier_id,
            reference=batch_number,
            is_duplicate=False,
            method="CASH",
            status=SupplierPaymentStatus.POSTED,
            gross_payable=amounts.total_amount,
            advance_recovered=amounts.advance_recovered,
            amount_paid=amounts.final_amount,
            requested_by=actor,
            approved_by=actor,
            approved_at=now,
            created_at=now,
        )
        dialect = self.db.get_bind().dialect.name
        if dialect == "postgresql":
            stmt = postgresql.insert(SupplierPayment).on_conflict_do_nothing(
                index_elements=["reference"],
                index_where=text(_LIVE_REFERENCE_WHERE[dialect]),
            )
        elif dialect == "sqlite":
            stmt = sqlite.insert(SupplierPayment).on_conflict_do_nothing(
                index_elements=["reference"],
                index_where=text(_LIVE_REFERENCE_WHERE[dialect]),
            )
        else:
            stmt = insert(SupplierPayment)

        result = self.db.execute(stmt.values(**values))
        if result.rowcount != 1:
            return None

        return self.db.execute(
            select(SupplierPayment.id).where(
                SupplierPayment.reference == batch_number,
                SupplierPayment.is_duplicate.is_(False),
            )
        ).scalar_one()

    def _close_advances(
        self, supplier_id: str, amounts: SettlementAmounts, now: datetime
    ) -> None:
        """
        Close every open advance of the supplier.

        The whole outstanding amount is consumed by the recovering
        payment, even when the lot was worth less than the advance.
        The write only touches the advances that were planned
        against, so a concurrent recovery or a newly issued advance
        shows up as a conflict.
        """
        advances = self.db.execute(
            select(SupplierAdvance.id, SupplierAdvance.outstanding)
            .where(
                SupplierAdvance.supplier_id == supplier_id,
                SupplierAdvance.is_closed.is_(False),
            )
        ).all()
        advance_ids = [advance_id for advance_id, _ in advances]
        outstanding = sum(amount for _, amount in advances)

        if outstanding != amounts.advance_amount:
            raise ConcurrencyConflictError(
                f"Advances of supplier {supplier_id} changed while "
                f"being recovered; reload and try again"
            )

        result = self.db.execute(
            update(SupplierAdvance)
            .where(
                SupplierAdvance.id.in_(advance_ids),
                SupplierAdvance.is_closed.is_(False),
            )
            .values(outstanding=0, is_closed=True, closed_at=now)
        )
        if result.rowcount != len(advance_ids):
            raise ConcurrencyConflictError(
                f"Advances of supplier {supplier_id} changed while "
                f"being recovered; reload and try again"
            )

        written_off = amounts.advance_amount - amounts.advance_recovered
        if written_off > 0:
            logger.warning(
                "Supplier %s advance exceeded the lot value; %s closed "
                "without recovery", supplier_id, written_off,
            )
