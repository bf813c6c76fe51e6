"""
Shared FastAPI dependencies.

Authentication happens upstream; by the time a request reaches
this service the gateway has put the verified user's email in
the X-User-Email header.
"""

import logging

from fastapi import Header, HTTPException
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from coffee_finance.config import FinanceSettings, get_finance_settings, get_settings
from coffee_finance.exceptions import BackendUnavailableError, FinanceError
from coffee_finance.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

# Error code -> HTTP status
STATUS_BY_CODE = {
    "ALREADY_PROCESSED": 409,
    "AUTHORIZATION_DENIED": 403,
    "INSUFFICIENT_FUNDS": 403,
    "VALIDATION_FAILED": 400,
    "NOT_FOUND": 404,
    "CONCURRENCY_CONFLICT": 409,
    "PARTIAL_FAILURE": 500,
    "BACKEND_UNAVAILABLE": 503,
}


def get_actor(x_user_email: str | None = Header(default=None)) -> str:
    """The verified identity of the caller."""
    if not x_user_email or not x_user_email.strip():
        raise HTTPException(status_code=401, detail="Missing user identity")
    return x_user_email.strip().lower()


def finance_settings() -> FinanceSettings:
    return get_finance_settings()


def get_notifier() -> NotificationService:
    return NotificationService()


def finance_notify_phone() -> str | None:
    return get_settings().FINANCE_NOTIFY_PHONE


def to_http_exception(error: FinanceError) -> HTTPException:
    """Convert a finance error into the response the operator sees."""
    return HTTPException(
        status_code=STATUS_BY_CODE.get(error.code, 400),
        detail=error.message,
    )


def database_http_exception(error: SQLAlchemyError) -> HTTPException:
    """
    Convert a database error the services did not classify.

    The caller has already rolled back, so nothing was saved.
    """
    if isinstance(error, OperationalError):
        return to_http_exception(BackendUnavailableError(str(error)))
    logger.error("Unexpected database error, rolled back: %s", error)
    return HTTPException(
        status_code=500,
        detail="Database error; the operation was rolled back",
    )
