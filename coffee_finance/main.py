"""
Coffee Finance Service — FastAPI Application.

This is the entry point for the application.
All routers are registered here.
"""

from fastapi import FastAPI

from coffee_finance.config import get_settings
from coffee_finance.logging_config import configure_logging
from coffee_finance.api.health import router as health_router
from coffee_finance.api.cash import router as cash_router
from coffee_finance.api.settlements import router as settlements_router
from coffee_finance.api.withdrawals import router as withdrawals_router

settings = get_settings()
configure_logging(settings.LOG_LEVEL)

app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Cash, supplier settlement and withdrawal approvals "
                "for the coffee finance team",
)

# Register routers
app.include_router(health_router)
app.include_router(cash_router)
app.include_router(settlements_router)
app.include_router(withdrawals_router)
