"""
Appointment endpoints: unbilled and incomplete lists, accrued revenue
journal entries, and their reconciliation.
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy.orm import Session

from hcbilling.api.dependencies import get_documents, get_settings
from hcbilling.config.database import get_db
from hcbilling.config.settings import BillingSettings
from hcbilling.services.accounting.documents import AccountingDocuments
from hcbilling.services.billing.journal_entries import JournalEntryService
from hcbilling.services.billing.reports import incomplete_appointments, unbilled_appointments
from hcbilling.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


class JournalEntryRequest(BaseModel):
    """`starting_doc_number` defaults to one past the last number used."""

    starting_doc_number: Optional[str] = None


@router.get("/appointments/unbilled")
async def get_unbilled_appointments(
    db: Session = Depends(get_db),
    settings: BillingSettings = Depends(get_settings),
):
    """Completed appointments not yet on a claim, with their total."""
    return unbilled_appointments(db, settings.currency_code).as_dict()


@router.get("/appointments/incomplete")
async def get_incomplete_appointments(
    end_date: date = Query(..., description="Include appointments on or before this date"),
    db: Session = Depends(get_db),
    settings: BillingSettings = Depends(get_settings),
):
    """Appointments on or before `end_date` not marked completed."""
    return incomplete_appointments(db, end_date, settings.currency_code).as_dict()


@router.post("/appointments/journal-entries")
async def generate_journal_entries(
    request: JournalEntryRequest,
    db: Session = Depends(get_db),
    documents: AccountingDocuments = Depends(get_documents),
    settings: BillingSettings = Depends(get_settings),
):
    """
    Accrue revenue for every unbilled appointment without a journal entry.

    **Errors:**
    - 400 if `starting_doc_number` is not an integer
    - 503 if the accrued revenue account is not configured
    """
    messages = []
    service = JournalEntryService(db, documents, settings.currency_code, notify=messages.append)
    run = service.generate_unbilled_entries(request.starting_doc_number)
    return {
        "count": run.count,
        "created": run.created,
        "next_doc_number": run.next_doc_number,
        "messages": messages,
    }


@router.get("/appointments/journal-entries/reconcile")
async def reconcile_journal_entries(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: Session = Depends(get_db),
    documents: AccountingDocuments = Depends(get_documents),
    settings: BillingSettings = Depends(get_settings),
):
    """
    Accrued revenue balances for a period and entries whose amount no
    longer matches their appointment.
    """
    service = JournalEntryService(db, documents, settings.currency_code)
    result = service.reconcile_unbilled(start_date, end_date)
    return {
        "start_balance": str(result.start_balance) if result.start_balance is not None else None,
        "end_balance": str(result.end_balance),
        "reconciled": result.reconciled,
        "mismatches": result.mismatches,
    }
