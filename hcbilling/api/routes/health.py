"""Health check endpoints."""
import time
from datetime import datetime

from fastapi import APIRouter, Depends
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.orm import Session

from hcbilling.config.database import get_db
from hcbilling.config.settings import get_accounting_settings
from hcbilling.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)

VERSION = "1.0.0"


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str


@router.get("/health", response_model=HealthResponse)
async def health_check():
    """
    Basic health check endpoint.

    Use `/api/v1/health/detailed` to also check the database and the
    accounting configuration.
    """
    return HealthResponse(status="healthy", version=VERSION)


@router.get("/health/detailed")
async def detailed_health_check(db: Session = Depends(get_db)):
    """
    Detailed health check including the database and accounting settings.

    The accounting API itself is not called; only whether the references
    every workflow needs are configured.
    """
    health_status = {
        "status": "healthy",
        "version": VERSION,
        "timestamp": datetime.utcnow().isoformat(),
        "components": {},
    }

    try:
        start = time.time()
        db.execute(text("SELECT 1"))
        response_time = (time.time() - start) * 1000
        health_status["components"]["database"] = {
            "status": "healthy",
            "response_time_ms": round(response_time, 2),
        }
    except Exception as e:
        health_status["status"] = "degraded"
        health_status["components"]["database"] = {"status": "unhealthy", "error": str(e)}
        logger.error("Database health check failed", error=str(e))

    settings = get_accounting_settings()
    missing = [
        name
        for name in (
            "realm_id",
            "access_token",
            "payment_term_id",
            "contractual_adjustment_item_id",
            "coinsurance_item_id",
            "interest_item_id",
            "origination_fee_item_id",
            "accrued_revenue_account_id",
        )
        if not getattr(settings, name)
    ]
    if missing:
        health_status["status"] = "degraded"
        health_status["components"]["accounting"] = {"status": "unconfigured", "missing": missing}
        logger.warning("Accounting settings incomplete", missing=missing)
    else:
        health_status["components"]["accounting"] = {"status": "configured"}

    return health_status
