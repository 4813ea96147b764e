"""
Payment endpoints: manual (paper check) payments and restoring charges.

835 files are uploaded through `/remits/upload`.
"""
from datetime import date
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.orm import Session

from hcbilling.api.dependencies import get_documents, get_settings
from hcbilling.config.database import get_db
from hcbilling.config.settings import BillingSettings
from hcbilling.models.enums import ProviderAdjustmentType
from hcbilling.services.accounting.documents import AccountingDocuments
from hcbilling.services.billing.payment_service import (
    ManualClaimPayment,
    ManualLineItem,
    ManualPayment,
    ManualPaymentService,
    restore_charges,
    validate_amount,
    validate_date,
    validate_required,
)
from hcbilling.services.billing.reconciliation import ReconciliationService
from hcbilling.services.edi.models import ProviderAdjustment
from hcbilling.utils.errors import ValidationError
from hcbilling.utils.logger import get_logger

router = APIRouter()
logger = get_logger(__name__)


def _amount(value) -> Decimal:
    try:
        return validate_amount(value)
    except ValidationError as e:
        raise ValueError(e.message) from None


def _date(value) -> date:
    try:
        return validate_date(value)
    except ValidationError as e:
        raise ValueError(e.message) from None


class ManualLineItemRequest(BaseModel):
    """One service line from a paper remittance. Dates are mm/dd/yyyy."""

    service_date: date
    billing_code: str
    billed: Decimal
    paid: Decimal
    contractual_adjustment: Optional[Decimal] = None
    coinsurance: Decimal = Decimal("0.00")

    @field_validator("service_date", mode="before")
    @classmethod
    def parse_service_date(cls, v):
        return _date(v)

    @field_validator("billed", "paid", "coinsurance", mode="before")
    @classmethod
    def parse_amount(cls, v):
        return _amount(v)

    @field_validator("contractual_adjustment", mode="before")
    @classmethod
    def parse_optional_amount(cls, v):
        if v is None or str(v).strip() == "":
            return None
        return _amount(v)


class ManualClaimRequest(BaseModel):
    billing_id: str
    line_items: List[ManualLineItemRequest] = Field(..., min_length=1)


class ProviderAdjustmentRequest(BaseModel):
    """Amount is the effect on the payment: interest positive, fees negative."""

    type: ProviderAdjustmentType
    amount: Decimal

    @field_validator("amount", mode="before")
    @classmethod
    def parse_amount(cls, v):
        return _amount(v)


class ManualPaymentRequest(BaseModel):
    payment_ref: str
    payment_date: date
    amount: Decimal
    claims: List[ManualClaimRequest] = Field(..., min_length=1)
    provider_adjustments: List[ProviderAdjustmentRequest] = Field(default_factory=list)

    @field_validator("payment_ref", mode="before")
    @classmethod
    def parse_payment_ref(cls, v):
        try:
            return validate_required(v)
        except ValidationError as e:
            raise ValueError(e.message) from None

    @field_validator("payment_date", mode="before")
    @classmethod
    def parse_payment_date(cls, v):
        return _date(v)

    @field_validator("amount", mode="before")
    @classmethod
    def parse_amount(cls, v):
        return _amount(v)

    def to_manual_payment(self) -> ManualPayment:
        return ManualPayment(
            payment_ref=self.payment_ref,
            payment_date=self.payment_date,
            amount=self.amount,
            claims=[
                ManualClaimPayment(
                    billing_id=claim.billing_id,
                    line_items=[ManualLineItem(**line.model_dump()) for line in claim.line_items],
                )
                for claim in self.claims
            ],
            provider_adjustments=[
                ProviderAdjustment(type=adjustment.type, amount=adjustment.amount)
                for adjustment in self.provider_adjustments
            ],
        )


@router.post("/payments/manual")
async def create_manual_payment(
    request: ManualPaymentRequest,
    db: Session = Depends(get_db),
    documents: AccountingDocuments = Depends(get_documents),
    settings: BillingSettings = Depends(get_settings),
):
    """
    Apply a payment received on paper.

    Every line item is matched to a charge of its claim. Each claim's line
    items must cover its billed amount, and the paid amounts plus provider
    adjustments must add up to `amount`.

    **Errors:**
    - 404 if a billing id is unknown
    - 409 if lines or totals do not add up, or the payment was already recorded
    - 422 if a date is not mm/dd/yyyy or an amount is not a number
    """
    logger.info("Received manual payment", payment_ref=request.payment_ref)
    reconciliation = ReconciliationService(db, documents, currency_code=settings.currency_code)
    service = ManualPaymentService(db, reconciliation, settings=settings)
    outcome = service.process(request.to_manual_payment())
    return outcome.as_dict()


@router.post("/payments/{payment_ref}/restore")
async def restore_payment(payment_ref: str, db: Session = Depends(get_db)):
    """
    Undo a payment applied to charges that was never recorded.

    Used after a payment failed part way. Refused once the payment has been
    recorded in the accounting system.
    """
    charges = restore_charges(db, payment_ref)
    return {"payment_ref": payment_ref, "restored_charges": [charge.charge_line for charge in charges]}
