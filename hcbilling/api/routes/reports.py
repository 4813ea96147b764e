"""Report endpoints."""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from hcbilling.api.dependencies import get_settings
from hcbilling.config.database import get_db
from hcbilling.config.settings import BillingSettings
from hcbilling.services.billing.reports import client_revenue

router = APIRouter()


@router.get("/reports/client-revenue")
async def get_client_revenue(
    start_month: Optional[date] = Query(None, description="Any day in the first month to report"),
    export: bool = Query(False, description="Return CSV instead of JSON"),
    db: Session = Depends(get_db),
    settings: BillingSettings = Depends(get_settings),
):
    """
    Revenue per client for each month through the end of last month.

    **Errors:**
    - 400 if `start_month` is later than last month
    """
    report = client_revenue(db, start_month, currency_code=settings.currency_code)
    if export:
        return PlainTextResponse(report.to_csv(), media_type="text/csv")
    return report.as_dict()
