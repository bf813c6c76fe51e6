"""
Withdrawal request API endpoints.

Notifications queued by the service are sent from a background
task after the commit, so a slow or failing SMS gateway never
holds up or undoes an approval.
"""

from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from coffee_finance.api.dependencies import (
    database_http_exception,
    finance_notify_phone,
    finance_settings,
    get_actor,
    get_notifier,
    to_http_exception,
)
from coffee_finance.config import FinanceSettings
from coffee_finance.exceptions import FinanceError
from coffee_finance.models.base import get_db
from coffee_finance.models.enums import WithdrawalStatus
from coffee_finance.schemas.withdrawal import (
    WalletCredit,
    WalletResponse,
    WithdrawalCreate,
    WithdrawalDetailResponse,
    WithdrawalReject,
    WithdrawalResponse,
    WithdrawalTransition,
)
from coffee_finance.services.notification_service import NotificationService
from coffee_finance.services.withdrawal_service import WithdrawalService

router = APIRouter(prefix="/withdrawals", tags=["Withdrawals"])


def get_service(
    db: Session = Depends(get_db),
    settings: FinanceSettings = Depends(finance_settings),
    notify_phone: str | None = Depends(finance_notify_phone),
) -> WithdrawalService:
    return WithdrawalService(db, settings, finance_notify_phone=notify_phone)


@router.post("/wallets", response_model=WalletResponse, status_code=201)
def credit_wallet(
    request: WalletCredit,
    actor: str = Depends(get_actor),
    service: WithdrawalService = Depends(get_service),
):
    """Credit an employee's wallet."""
    try:
        wallet = service.credit_wallet(request, actor)
        service.db.commit()
        return wallet
    except FinanceError as e:
        service.db.rollback()
        raise to_http_exception(e)
    except SQLAlchemyError as e:
        service.db.rollback()
        raise database_http_exception(e)


@router.post("", response_model=WithdrawalResponse, status_code=201)
def submit_withdrawal(
    request: WithdrawalCreate,
    actor: str = Depends(get_actor),
    service: WithdrawalService = Depends(get_service),
):
    """Ask to withdraw from the caller's wallet."""
    try:
        withdrawal = service.submit_withdrawal(request, actor)
        service.db.commit()
        return withdrawal
    except FinanceError as e:
        service.db.rollback()
        raise to_http_exception(e)
    except SQLAlchemyError as e:
        service.db.rollback()
        raise database_http_exception(e)


@router.get("", response_model=list[WithdrawalResponse])
def list_withdrawals(
    status: WithdrawalStatus | None = Query(default=None),
    service: WithdrawalService = Depends(get_service),
):
    """Withdrawal requests, newest first, optionally by status."""
    return service.list_requests(status)


@router.get("/{request_id}", response_model=WithdrawalDetailResponse)
def get_withdrawal(
    request_id: int,
    actor: str = Depends(get_actor),
    service: WithdrawalService = Depends(get_service),
):
    """A request plus whether the caller may approve it now."""
    try:
        withdrawal = service.get_request(request_id)
    except FinanceError as e:
        raise to_http_exception(e)
    allowed, reason = service.can_approve(withdrawal, actor)
    return WithdrawalDetailResponse(
        request=WithdrawalResponse.model_validate(withdrawal),
        can_approve=allowed,
        reason=reason,
    )


@router.post("/{request_id}/approve", response_model=WithdrawalTransition)
def approve_withdrawal(
    request_id: int,
    background_tasks: BackgroundTasks,
    actor: str = Depends(get_actor),
    service: WithdrawalService = Depends(get_service),
    notifier: NotificationService = Depends(get_notifier),
):
    """Admin or finance sign-off, depending on the request's stage."""
    try:
        transition = service.approve_withdrawal(request_id, actor)
        service.db.commit()
    except FinanceError as e:
        service.db.rollback()
        raise to_http_exception(e)
    except SQLAlchemyError as e:
        service.db.rollback()
        raise database_http_exception(e)

    if service.outbox:
        background_tasks.add_task(notifier.dispatch, list(service.outbox))
    return transition


@router.post("/{request_id}/reject", response_model=WithdrawalTransition)
def reject_withdrawal(
    request_id: int,
    request: WithdrawalReject,
    background_tasks: BackgroundTasks,
    actor: str = Depends(get_actor),
    service: WithdrawalService = Depends(get_service),
    notifier: NotificationService = Depends(get_notifier),
):
    """Reject a request. A reason is required."""
    try:
        transition = service.reject_withdrawal(request_id, actor, request.reason)
        service.db.commit()
    except FinanceError as e:
        service.db.rollback()
        raise to_http_exception(e)
    except SQLAlchemyError as e:
        service.db.rollback()
        raise database_http_exception(e)

    if service.outbox:
        background_tasks.add_task(notifier.dispatch, list(service.outbox))
    return transition
