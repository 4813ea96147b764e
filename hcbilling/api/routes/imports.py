"""
CSV import endpoints for exports from the practice management system.

Import services first, then charges, then appointments: charges and
appointments are attached to existing payer/service pairs.
"""
from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.orm import Session

from hcbilling.api.dependencies import get_documents
from hcbilling.config.database import get_db
from hcbilling.services.accounting.documents import AccountingDocuments
from hcbilling.services.billing.importers import (
    import_appointments,
    import_charges,
    import_services,
    link_accounting_records,
)
from hcbilling.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.post("/imports/services")
async def upload_services(file: UploadFile = File(...), db: Session = Depends(get_db)):
    """
    Create or update payers and their billable services.

    **Errors:**
    - 400 if a required column is missing or a value cannot be parsed
    """
    logger.info("Received services import", filename=file.filename)
    result = import_services(db, await file.read())
    return result.as_dict()


@router.post("/imports/charges")
async def upload_charges(file: UploadFile = File(...), db: Session = Depends(get_db)):
    """
    Insert new charges and match them to appointments.

    Charge lines already stored are skipped.
    """
    logger.info("Received charges import", filename=file.filename)
    result = import_charges(db, await file.read())
    return result.as_dict()


@router.post("/imports/appointments")
async def upload_appointments(file: UploadFile = File(...), db: Session = Depends(get_db)):
    """
    Upsert active appointments, delete cancelled ones, and match charges.
    """
    logger.info("Received appointments import", filename=file.filename)
    result = import_appointments(db, await file.read())
    return result.as_dict()


@router.post("/imports/link-accounting")
async def link_accounting(
    db: Session = Depends(get_db),
    documents: AccountingDocuments = Depends(get_documents),
):
    """Link payers to accounting customers and services to items by name."""
    result = link_accounting_records(db, documents)
    return {"customers": result.customers, "items": result.items, "unmatched": result.unmatched}
