"""
Cash ledger API endpoints.
"""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coffee_finance.api.dependencies import (
    database_http_exception,
    get_actor,
    to_http_exception,
)
from coffee_finance.exceptions import FinanceError
from coffee_finance.models.base import get_db
from coffee_finance.schemas.cash import (
    CashBalanceResponse,
    CashTransactionResponse,
    DepositCreate,
)
from coffee_finance.services.ledger_service import LedgerService

router = APIRouter(prefix="/cash", tags=["Cash"])


@router.get("/balance", response_model=CashBalanceResponse)
def get_cash_balance(db: Session = Depends(get_db)):
    """
    Current company cash balance.

    Read-only: before the first confirmed movement there is no
    balance row yet and zero is reported.
    """
    try:
        row = LedgerService(db).peek_balance_row()
    except SQLAlchemyError as e:
        raise database_http_exception(e)
    if row is None:
        return CashBalanceResponse(current_balance=0, version=0)
    return row


@router.get("/transactions", response_model=list[CashTransactionResponse])
def list_cash_transactions(
    limit: int = Query(default=50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """Most recent cash movements, newest first."""
    return LedgerService(db).list_transactions(limit)


@router.post(
    "/deposits", response_model=CashTransactionResponse, status_code=201
)
def record_deposit(
    request: DepositCreate,
    actor: str = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Record cash handed in. It counts once finance confirms it."""
    service = LedgerService(db)
    try:
        txn = service.record_deposit(request, actor)
        db.commit()
        return txn
    except SQLAlchemyError as e:
        db.rollback()
        raise database_http_exception(e)


@router.post(
    "/deposits/{transaction_id}/confirm",
    response_model=CashTransactionResponse,
)
def confirm_deposit(
    transaction_id: int,
    actor: str = Depends(get_actor),
    db: Session = Depends(get_db),
):
    """Confirm a pending deposit and credit the cash balance."""
    service = LedgerService(db)
    try:
        txn = service.confirm_deposit(transaction_id, actor)
        db.commit()
        return txn
    except FinanceError as e:
        db.rollback()
        raise to_http_exception(e)
    except SQLAlchemyError as e:
        db.rollback()
        raise database_http_exception(e)
