"""
Remittance endpoints for 835 EDI files.

Each payment in the file is reconciled against its claims and recorded in
the accounting system. A failed payment is reported and the rest of the
file is still processed.
"""
from fastapi import APIRouter, Depends, File, UploadFile
from sqlalchemy.orm import Session

from hcbilling.api.dependencies import get_documents, get_settings
from hcbilling.config.database import get_db
from hcbilling.config.settings import BillingSettings
from hcbilling.services.accounting.documents import AccountingDocuments
from hcbilling.services.billing.payment_service import PaymentCreationService
from hcbilling.services.billing.reconciliation import ReconciliationService
from hcbilling.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


@router.post("/remits/upload")
async def upload_remit_file(
    file: UploadFile = File(...),
    db: Session = Depends(get_db),
    documents: AccountingDocuments = Depends(get_documents),
    settings: BillingSettings = Depends(get_settings),
):
    """
    Upload and process an 835 remittance file.

    **File Format:**
    - A plain 835 file, or a `.zip` archive holding a `.835` entry

    **Response:**
    - `payments`: One outcome per payment (`processed`, `skipped` or `failed`)
    - `messages`: Progress messages, in order

    **Errors:**
    - 422 if the file fails envelope or balance validation; nothing is applied
    """
    filename = file.filename or "unknown"
    logger.info("Received remittance file upload", filename=filename)
    data = await file.read()

    reconciliation = ReconciliationService(db, documents, currency_code=settings.currency_code)
    service = PaymentCreationService(db, reconciliation, settings=settings)
    result = service.process_data(data, filename=filename)

    return {
        "filename": filename,
        "payments": [outcome.as_dict() for outcome in result.payments],
        "has_errors": result.has_errors,
        "messages": result.messages,
    }
