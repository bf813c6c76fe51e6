"""
Settlement API endpoints.

Handlers stay thin: they build the service with the finance
settings, commit on success and roll back on any finance error.
"""

import logging

from fastapi import APIRouter, Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coffee_finance.api.dependencies import (
    database_http_exception,
    finance_settings,
    get_actor,
    to_http_exception,
)
from coffee_finance.config import FinanceSettings
from coffee_finance.exceptions import FinanceError, PartialFailureError
from coffee_finance.models.base import get_db
from coffee_finance.schemas.settlement import (
    AdvanceCreate,
    AdvanceResponse,
    LotCreate,
    LotResponse,
    SettlementQuote,
    SettlementRequest,
    SettlementResult,
)
from coffee_finance.services.settlement_service import SettlementService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/settlements", tags=["Settlements"])


@router.post("/lots", response_model=LotResponse, status_code=201)
def register_lot(
    request: LotCreate,
    actor: str = Depends(get_actor),
    db: Session = Depends(get_db),
    settings: FinanceSettings = Depends(finance_settings),
):
    """Register a graded lot as awaiting payment."""
    service = SettlementService(db, settings)
    try:
        lot = service.register_lot(request)
        db.commit()
        return lot
    except FinanceError as e:
        db.rollback()
        raise to_http_exception(e)
    except SQLAlchemyError as e:
        db.rollback()
        raise database_http_exception(e)


@router.get("/lots/pending", response_model=list[LotResponse])
def list_pending_lots(
    db: Session = Depends(get_db),
    settings: FinanceSettings = Depends(finance_settings),
):
    """Lots ready for finance, newest first."""
    return SettlementService(db, settings).list_pending_lots()


@router.post("/advances", response_model=AdvanceResponse, status_code=201)
def issue_advance(
    request: AdvanceCreate,
    actor: str = Depends(get_actor),
    db: Session = Depends(get_db),
    settings: FinanceSettings = Depends(finance_settings),
):
    """Record an advance given to a supplier."""
    service = SettlementService(db, settings)
    try:
        advance = service.issue_advance(request, actor)
        db.commit()
        return advance
    except FinanceError as e:
        db.rollback()
        raise to_http_exception(e)
    except SQLAlchemyError as e:
        db.rollback()
        raise database_http_exception(e)


@router.post("/quote", response_model=SettlementQuote)
def quote_settlement(
    request: SettlementRequest,
    db: Session = Depends(get_db),
    settings: FinanceSettings = Depends(finance_settings),
):
    """
    Preview a settlement: amounts per lot and whether the cash
    balance would go negative. Writes nothing.
    """
    try:
        return SettlementService(db, settings).quote_settlement(request.lot_ids)
    except FinanceError as e:
        raise to_http_exception(e)


@router.post("/execute", response_model=SettlementResult)
def execute_settlement(
    request: SettlementRequest,
    actor: str = Depends(get_actor),
    db: Session = Depends(get_db),
    settings: FinanceSettings = Depends(finance_settings),
):
    """
    Pay the selected lots. Lots already paid are reported as
    skipped; the rest are paid in one transaction.
    """
    service = SettlementService(db, settings)
    try:
        result = service.execute_settlement(request.lot_ids, actor)
        db.commit()
        return result
    except PartialFailureError as e:
        db.rollback()
        logger.error(
            "Settlement by %s rolled back after partial failure: %s "
            "(completed before failure: %s)",
            actor, e.message, e.completed_steps,
        )
        raise to_http_exception(e)
    except FinanceError as e:
        db.rollback()
        raise to_http_exception(e)
    except SQLAlchemyError as e:
        db.rollback()
        raise database_http_exception(e)
