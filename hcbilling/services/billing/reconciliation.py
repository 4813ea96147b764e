"""
Reconciliation of paid claims against the accounting system.

Before a payment is recorded, every claim's invoice and credit memos must
account for exactly what the remittance says was billed, written off and
owed by the client. Missing coinsurance credit is created here; anything
else that does not add up stops the payment.
"""
from datetime import date
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy.orm import Session

from hcbilling.models import Claim, Payer, Payment, ProviderAdjustmentRecord, ProviderAdjustmentType
from hcbilling.services.accounting.documents import (
    CREDIT_MEMO,
    INVOICE,
    SALES_LINE,
    AccountingDocuments,
    document_amount,
    line_item_id,
    payment_line,
)
from hcbilling.services.billing.repositories import ClaimRepository
from hcbilling.services.edi.models import ProviderAdjustment
from hcbilling.utils.decimal_utils import ZERO, format_currency, money_add, money_compare, money_sub, money_sum
from hcbilling.utils.errors import PaymentCreationError
from hcbilling.utils.logger import get_logger

logger = get_logger(__name__)

PROVIDER_ADJUSTMENT_MESSAGES = {
    ProviderAdjustmentType.INTEREST: "Created invoice %s for %s of interest.",
    ProviderAdjustmentType.ORIGINATION_FEE: "Created credit memo %s for a %s origination fee.",
}


def is_voided(document: Dict[str, Any]) -> bool:
    """QuickBooks keeps voided documents with a zero total and a ``Voided`` note."""
    return (document.get("PrivateNote") or "").startswith("Voided")


class ReconciliationService:
    """
    Verifies claims in the accounting system and records their payment.

    Args:
        db: Database session
        documents: Accounting document helper
        currency_code: Currency used when amounts are shown in messages
        notify: Receives progress messages meant for the operator
    """

    def __init__(
        self,
        db: Session,
        documents: AccountingDocuments,
        currency_code: str = "USD",
        notify: Optional[Callable[[str], None]] = None,
    ):
        self.db = db
        self.documents = documents
        self.currency_code = currency_code
        self.notify = notify or (lambda message: None)
        self.claims = ClaimRepository(db)

    def _money(self, amount: Decimal) -> str:
        return format_currency(amount, self.currency_code)

    def _say(self, message: str) -> None:
        logger.info(message)
        self.notify(message)

    def verify_invoice(self, claim: Claim) -> Dict[str, Any]:
        invoice = self.documents.get_invoice(claim.qb_invoice_id)
        total = document_amount(invoice.get("TotalAmt"))
        if money_compare(total, claim.billed_amount) != 0:
            raise PaymentCreationError(
                "QuickBooks invoice %s is for the amount of %s, but %s was expected."
                % (invoice.get("DocNumber"), self._money(total), self._money(claim.billed_amount)),
                details={"billing_id": claim.billing_id, "invoice_id": claim.qb_invoice_id},
            )
        return invoice

    def sync_adjustments(self, claim: Claim) -> None:
        """
        Make the claim's credit memos match its remittance.

        Contractual adjustments must already be fully credited. Coinsurance
        is credited here when nothing has been credited for it yet.

        Raises:
            PaymentCreationError: If credited amounts disagree with the claim
                or a credit memo uses an unexpected item
        """
        contractual_item = self.documents.require_contractual_adjustment_item()
        coinsurance_item = self.documents.require_coinsurance_item()

        total_adjustments = money_sub(claim.billed_amount, claim.paid_amount)
        contractual = money_sub(claim.billed_amount, claim.contract_amount)
        coinsurance = claim.coinsurance

        credited = ZERO
        credited_contractual = ZERO
        credited_coinsurance = ZERO

        for credit_memo_id in claim.qb_credit_memo_ids or []:
            credit_memo = self.documents.get_credit_memo(credit_memo_id)
            for line in credit_memo.get("Line", []):
                item_id = line_item_id(line)
                if item_id is None:
                    continue

                amount = document_amount(line.get("Amount"))
                credited = money_add(credited, amount)
                if item_id == contractual_item:
                    credited_contractual = money_add(credited_contractual, amount)
                elif item_id == coinsurance_item:
                    credited_coinsurance = money_add(credited_coinsurance, amount)
                else:
                    item_name = line[SALES_LINE]["ItemRef"].get("name") or self.documents.get_item(item_id).get("Name")
                    raise PaymentCreationError(
                        "Found unexpected adjustment using the item: %s" % item_name,
                        details={"billing_id": claim.billing_id, "credit_memo_id": credit_memo_id},
                    )

        if money_compare(contractual, credited_contractual) != 0:
            raise PaymentCreationError(
                "The contractual adjustment is %s, but %s of contractual adjustments were credited."
                % (self._money(contractual), self._money(credited_contractual)),
                details={"billing_id": claim.billing_id},
            )

        comparison = money_compare(coinsurance, credited_coinsurance)
        if comparison < 0:
            raise PaymentCreationError(
                "A coinsurance of %s was expected, but %s was credited."
                % (self._money(coinsurance), self._money(credited_coinsurance)),
                details={"billing_id": claim.billing_id},
            )
        if comparison > 0:
            if money_compare(credited_coinsurance, ZERO) != 0:
                raise PaymentCreationError(
                    "A coinsurance of %s is unexpected, but %s has already been credited. "
                    "We cannot yet handle this condition."
                    % (self._money(coinsurance), self._money(credited_coinsurance)),
                    details={"billing_id": claim.billing_id},
                )

            credit_memo = self.documents.create_coinsurance_credit(claim)
            memo_total = document_amount(credit_memo.get("TotalAmt"))
            self._say("Created credit memo %s for %s" % (credit_memo.get("DocNumber"), self._money(memo_total)))

            claim.add_credit_memo(credit_memo["Id"])
            self.db.flush()

            credited_coinsurance = money_add(credited_coinsurance, memo_total)
            if money_compare(coinsurance, credited_coinsurance) != 0:
                raise PaymentCreationError(
                    "Expected coinsurance of %s, but got %s."
                    % (self._money(coinsurance), self._money(credited_coinsurance)),
                    details={"billing_id": claim.billing_id},
                )
            credited = money_add(credited, memo_total)
        else:
            self._say("No credit memos to create for %s." % claim.billing_id)

        if money_compare(total_adjustments, credited) != 0:
            raise PaymentCreationError(
                "Expected total adjustments of %s, but adjustments of %s were encountered."
                % (self._money(total_adjustments), self._money(credited)),
                details={"billing_id": claim.billing_id},
            )

    def create_provider_adjustments(
        self,
        payment_ref: str,
        payment_date: date,
        payer: Payer,
        adjustments: Sequence[ProviderAdjustment],
    ) -> List[ProviderAdjustmentRecord]:
        """Invoice interest paid to us and credit fees withheld from us."""
        records = []
        for adjustment in adjustments:
            comparison = money_compare(adjustment.amount, ZERO)
            if comparison > 0:
                document = self.documents.create_interest_invoice(payment_ref, payment_date, payer, adjustment.amount)
            elif comparison < 0:
                document = self.documents.create_origination_fee_credit(payment_ref, payment_date, payer, adjustment.amount)
            else:
                raise PaymentCreationError("Provider adjustment is 0.", details={"type": adjustment.type.value})

            self._say(
                PROVIDER_ADJUSTMENT_MESSAGES[adjustment.type]
                % (document.get("DocNumber"), self._money(document_amount(document.get("TotalAmt"))))
            )
            records.append(
                ProviderAdjustmentRecord(type=adjustment.type, amount=adjustment.amount, qb_entity_id=document["Id"])
            )
        return records

    def record_payment(
        self,
        payment_ref: str,
        claims: Sequence[Claim],
        provider_adjustments: Sequence[ProviderAdjustmentRecord] = (),
        payer: Optional[Payer] = None,
        payment_date: Optional[date] = None,
    ) -> Payment:
        """
        Create the payment in the accounting system and store it.

        Lines link each claim's invoice and non-voided credit memos, then each
        provider adjustment document at its absolute amount. ``payer`` and
        ``payment_date`` are only used when there are no claims.
        """
        if not claims and not provider_adjustments:
            raise ValueError("At least one claim or provider adjustment must be passed to create a payment.")

        lines = []
        for claim in claims:
            invoice = self.documents.get_invoice(claim.qb_invoice_id)
            lines.append(payment_line(INVOICE, invoice["Id"], document_amount(invoice.get("TotalAmt"))))
            for credit_memo_id in claim.qb_credit_memo_ids or []:
                credit_memo = self.documents.get_credit_memo(credit_memo_id)
                if not is_voided(credit_memo):
                    lines.append(
                        payment_line(CREDIT_MEMO, credit_memo["Id"], document_amount(credit_memo.get("TotalAmt")))
                    )

        for record in provider_adjustments:
            txn_type = INVOICE if record.type == ProviderAdjustmentType.INTEREST else CREDIT_MEMO
            lines.append(payment_line(txn_type, record.qb_entity_id, abs(record.amount)))

        total = money_add(
            money_sum(claim.paid_amount for claim in claims),
            money_sum(record.amount for record in provider_adjustments),
        )
        if claims:
            payer = claims[0].payer
            payment_date = claims[0].payment_date

        document = self.documents.create_payment(
            payment_ref=payment_ref,
            payment_date=payment_date,
            customer_id=payer.qb_customer_id,
            total=total,
            lines=lines,
        )

        payment = Payment(
            payment_ref=payment_ref,
            qb_payment_id=document["Id"],
            payment_date=payment_date,
            amount=total,
            payer_id=payer.id,
        )
        payment.provider_adjustments = list(provider_adjustments)
        self.db.add(payment)
        self.db.flush()
        self.claims.mark_paid(payment_ref)

        logger.info("Recorded payment", payment_ref=payment_ref, qb_payment_id=document["Id"], total=str(total))
        return payment

    def sync(
        self,
        payment_ref: str,
        payment_date: date,
        claims: Sequence[Claim],
        provider_adjustments: Sequence[ProviderAdjustment] = (),
        payer: Optional[Payer] = None,
    ) -> Payment:
        """
        Verify every claim, create provider adjustment documents, then pay.

        Args:
            payment_ref: Remittance reference (TRN02 or operator entered)
            payment_date: Deposit date used for provider adjustment documents
            claims: Claims whose charges were paid by this remittance
            provider_adjustments: Payment level adjustments
            payer: Payer of a remittance without claims
        """
        if claims:
            payer = claims[0].payer
        if payer is None:
            raise PaymentCreationError("Payment %s has no claims and no payer." % payment_ref)

        self.documents.require_coinsurance_item()

        for claim in claims:
            self.verify_invoice(claim)
            self.sync_adjustments(claim)

        records: List[ProviderAdjustmentRecord] = []
        if provider_adjustments:
            self.documents.require_interest_item()
            self.documents.require_origination_fee_item()
            records = self.create_provider_adjustments(payment_ref, payment_date, payer, provider_adjustments)

        return self.record_payment(payment_ref, claims, records, payer=payer, payment_date=payment_date)
