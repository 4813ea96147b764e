"""
Claim endpoints for 837 EDI files.

Uploading an 837 creates one claim (invoice plus contractual adjustment
credit memo) per claim in the file. Claims are processed in file order and
must all be on the next claim date.
"""
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, File, Query, UploadFile
from sqlalchemy.orm import Session

from hcbilling.api.dependencies import get_documents, get_settings
from hcbilling.config.database import get_db
from hcbilling.config.settings import BillingSettings
from hcbilling.services.accounting.documents import AccountingDocuments
from hcbilling.services.billing.claim_service import ClaimCreationService
from hcbilling.services.billing.reports import unpaid_claims
from hcbilling.services.billing.repositories import AppointmentRepository
from hcbilling.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.post("/claims/upload")
async def upload_claim_file(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    documents: AccountingDocuments = Depends(get_documents),
    settings: BillingSettings = Depends(get_settings),
):
    """
    Upload and process an 837 claim file.

    **Response:**
    - `claims`: Billing ids and accounting document ids of created claims
    - `messages`: Progress messages, in order

    **Errors:**
    - 409 if a claim is not on the next claim date or cannot be matched to
      unbilled charges
    - 422 if the file is not a valid 837
    """
    filename = file.filename or "unknown"
    logger.info("Received claim file upload", filename=filename)
    data = await file.read()

    service = ClaimCreationService(db, documents, settings=settings)
    result = service.process_data(data, filename=filename)

    return {
        "filename": filename,
        "next_claim_date": result.next_claim_date.isoformat() if result.next_claim_date else None,
        "claims": [
            {
                "billing_id": claim.billing_id,
                "invoice_id": claim.qb_invoice_id,
                "credit_memo_ids": claim.qb_credit_memo_ids,
                "billed_amount": str(claim.billed_amount),
                "contract_amount": str(claim.contract_amount),
            }
            for claim in result.claims
        ],
        "messages": result.messages,
    }


@router.get("/claims/next-date")
async def get_next_claim_date(db: Session = Depends(get_db)):
    """Date of the next claim to process, or null when nothing is left to bill."""
    next_date = AppointmentRepository(db).get_next_claim_date()
    return {"next_claim_date": next_date.isoformat() if next_date else None}


@router.get("/claims/unpaid")
async def get_unpaid_claims(
    end_date: Optional[date] = Query(None, description="Report claims unpaid at the end of this day"),
    db: Session = Depends(get_db),
    settings: BillingSettings = Depends(get_settings),
):
    """
    List claims awaiting payment with a Total row.

    **Parameters:**
    - `end_date` (query, optional): Report as of this date instead of now
    """
    return unpaid_claims(db, end_date, settings.currency_code).as_dict()
