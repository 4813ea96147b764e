"""
Accounting documents created for claims, remittances and accruals.

Builds QuickBooks shaped payloads from billing records and sends them through
an :class:`AccountingAdapter`:

- Invoice per claim (one line per charge) and per interest adjustment
- Credit memos for contractual adjustments, coinsurance and origination fees
- Payment applying a remittance to invoices and credit memos
- Journal entries accruing revenue for completed but unbilled appointments
"""
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Sequence

from hcbilling.config.settings import AccountingSettings, get_accounting_settings
from hcbilling.models import Appointment, Charge, Claim, Payer
from hcbilling.services.accounting.base_adapter import AccountingAdapter, DUPLICATE_DOC_NUMBER_CODE
from hcbilling.utils.decimal_utils import ZERO, money_equals, money_mul, money_sub, to_money
from hcbilling.utils.errors import AccountingApiError, ClaimCreationError, ConfigurationError
from hcbilling.utils.logger import get_logger

logger = get_logger(__name__)

INVOICE = "Invoice"
CREDIT_MEMO = "CreditMemo"
PAYMENT = "Payment"
JOURNAL_ENTRY = "JournalEntry"
ITEM = "Item"

SALES_LINE = "SalesItemLineDetail"
JOURNAL_LINE = "JournalEntryLineDetail"

# QuickBooks limits PaymentRefNum to 21 characters
PAYMENT_REF_LENGTH = 21

# Give up on finding a free journal entry doc number after this many tries
MAX_DOC_NUMBER_ATTEMPTS = 100


def document_amount(value: Any) -> Decimal:
    """Amount field of a QuickBooks document as an exact 2 place Decimal."""
    if value is None:
        return ZERO
    if isinstance(value, float):
        value = repr(value)
    return to_money(value)


def sales_line(
    line_num: int,
    item_id: str,
    quantity: int,
    unit_price: Decimal,
    service_date: Optional[date] = None,
    description: Optional[str] = None,
) -> Dict[str, Any]:
    return {
        "LineNum": str(line_num),
        "DetailType": SALES_LINE,
        SALES_LINE: {
            "ItemRef": {"value": item_id},
            "ServiceDate": service_date.isoformat() if service_date else None,
            "Qty": quantity,
            "UnitPrice": unit_price,
        },
        "Amount": money_mul(unit_price, quantity),
        "Description": description,
    }


def line_item_id(line: Dict[str, Any]) -> Optional[str]:
    """ItemRef of a sales line, or None for subtotal and other line types."""
    if line.get("DetailType") != SALES_LINE:
        return None
    return line[SALES_LINE]["ItemRef"]["value"]


def payment_line(txn_type: str, txn_id: str, amount: Decimal) -> Dict[str, Any]:
    return {
        "Amount": amount,
        "LinkedTxn": [{"TxnId": txn_id, "TxnType": txn_type}],
    }


def journal_line(posting_type: str, account_id: str, customer_id: str, amount: Decimal, description: str) -> Dict[str, Any]:
    return {
        "DetailType": JOURNAL_LINE,
        JOURNAL_LINE: {
            "PostingType": posting_type,
            "AccountRef": {"value": account_id},
            "Entity": {"EntityRef": {"value": customer_id}},
        },
        "Amount": amount,
        "Description": description,
    }


def next_doc_number(doc_number: str) -> str:
    return str(int(doc_number) + 1)


class AccountingDocuments:
    """
    Creates and looks up documents in the accounting system.

    Args:
        adapter: Connected accounting adapter
        settings: Company-level item, account and term references
    """

    def __init__(self, adapter: AccountingAdapter, settings: Optional[AccountingSettings] = None):
        self.adapter = adapter
        self.settings = settings or get_accounting_settings()

    # -- configuration -------------------------------------------------------

    def require_payment_term(self) -> str:
        return self._require("payment_term_id", "A default payment term has not been set.")

    def require_contractual_adjustment_item(self) -> str:
        return self._require(
            "contractual_adjustment_item_id",
            "The item to use for contractual adjustments has not been set.",
        )

    def require_coinsurance_item(self) -> str:
        return self._require("coinsurance_item_id", "The item to use for coinsurance has not been set.")

    def require_interest_item(self) -> str:
        return self._require("interest_item_id", "The item to use for interest payments has not been set.")

    def require_origination_fee_item(self) -> str:
        return self._require("origination_fee_item_id", "The item to use for origination fees has not been set.")

    def require_accrued_revenue_account(self) -> str:
        return self._require("accrued_revenue_account_id", "The accrued revenue account has not been set.")

    def _require(self, setting: str, message: str) -> str:
        value = getattr(self.settings, setting)
        if not value:
            raise ConfigurationError(message, setting=setting)
        return value

    # -- lookups ---------------------------------------------------------------

    def get_invoice(self, invoice_id: str) -> Dict[str, Any]:
        return self.adapter.get(INVOICE, invoice_id)

    def get_credit_memo(self, credit_memo_id: str) -> Dict[str, Any]:
        return self.adapter.get(CREDIT_MEMO, credit_memo_id)

    def get_item(self, item_id: str) -> Dict[str, Any]:
        return self.adapter.get(ITEM, item_id)

    def find_customers(self) -> List[Dict[str, Any]]:
        return self.adapter.query("select * from Customer maxresults 1000")

    def find_service_items(self) -> List[Dict[str, Any]]:
        return self.adapter.query("select * from Item where Type = 'Service' maxresults 1000")

    def get_journal_entry(self, entry_id: str) -> Dict[str, Any]:
        return self.adapter.get(JOURNAL_ENTRY, entry_id)

    def delete_invoice(self, invoice: Dict[str, Any]) -> None:
        self.adapter.delete(INVOICE, invoice)

    def delete_credit_memo(self, credit_memo: Dict[str, Any]) -> None:
        self.adapter.delete(CREDIT_MEMO, credit_memo)

    # -- invoices and credit memos --------------------------------------------------

    def create_invoice_from_charges(self, billing_id: str, charges: Sequence[Charge]) -> Dict[str, Any]:
        """
        Invoice the payer for every charge of a claim.

        Each line bills ``billed_units`` of the service item at the service
        rate, described by the charge line id.

        Raises:
            ValueError: If no charges are given
            ConfigurationError: If no payment term is configured
        """
        if not charges:
            raise ValueError("At least one charge must be passed to create an invoice.")
        term_id = self.require_payment_term()

        lines = [
            sales_line(
                line_num=index,
                item_id=charge.service.qb_item_id,
                quantity=charge.billed_units,
                unit_price=to_money(charge.service.rate),
                service_date=charge.service_date,
                description=charge.charge_line,
            )
            for index, charge in enumerate(charges, start=1)
        ]
        payload = self._sales_document(
            customer_id=charges[0].payer.qb_customer_id,
            txn_date=charges[0].billed_date,
            memo=billing_id,
            lines=lines,
        )
        payload["SalesTermRef"] = {"value": term_id}
        return self.adapter.create(INVOICE, payload)

    def create_interest_invoice(self, payment_ref: str, payment_date: date, payer: Payer, amount: Decimal) -> Dict[str, Any]:
        item_id = self.require_interest_item()
        payload = self._sales_document(
            customer_id=payer.qb_customer_id,
            txn_date=payment_date,
            memo=payment_ref,
            lines=[sales_line(1, item_id, 1, to_money(amount))],
        )
        payload["SalesTermRef"] = {"value": self.require_payment_term()}
        return self.adapter.create(INVOICE, payload)

    def create_contractual_adjustment_credit(self, billing_id: str, charges: Sequence[Charge]) -> Dict[str, Any]:
        """
        Credit the difference between the billed and contracted rates.

        Raises:
            ClaimCreationError: If a charge's amounts disagree with its
                service rates
        """
        item_id = self.require_contractual_adjustment_item()
        lines = []

        for index, charge in enumerate(charges, start=1):
            unit_price = charge.service.unit_adjustment
            if not money_equals(money_mul(unit_price, charge.billed_units), charge.contractual_adjustment):
                raise ClaimCreationError(
                    "The contractual adjustment of charge %s does not match the rates of its service."
                    % charge.charge_line,
                    details={"charge_line": charge.charge_line},
                )
            lines.append(
                sales_line(
                    line_num=index,
                    item_id=item_id,
                    quantity=charge.billed_units,
                    unit_price=unit_price,
                    service_date=charge.service_date,
                    description=charge.charge_line,
                )
            )

        payload = self._sales_document(
            customer_id=charges[0].payer.qb_customer_id,
            txn_date=charges[0].billed_date,
            memo=billing_id,
            lines=lines,
        )
        return self.adapter.create(CREDIT_MEMO, payload)

    def create_coinsurance_credit(self, claim: Claim) -> Dict[str, Any]:
        """Credit the coinsurance of every charge of a paid claim that has one."""
        item_id = self.require_coinsurance_item()
        lines = [
            sales_line(
                line_num=index,
                item_id=item_id,
                quantity=1,
                unit_price=to_money(charge.coinsurance),
                service_date=charge.service_date,
                description=charge.charge_line,
            )
            for index, charge in enumerate(claim.charges, start=1)
            if charge.coinsurance is not None and not money_equals(charge.coinsurance, ZERO)
        ]
        payload = self._sales_document(
            customer_id=claim.payer.qb_customer_id,
            txn_date=claim.payment_date,
            memo=claim.billing_id,
            lines=lines,
        )
        return self.adapter.create(CREDIT_MEMO, payload)

    def create_origination_fee_credit(self, payment_ref: str, payment_date: date, payer: Payer, amount: Decimal) -> Dict[str, Any]:
        """Credit a fee withheld from a payment; ``amount`` is negative."""
        item_id = self.require_origination_fee_item()
        payload = self._sales_document(
            customer_id=payer.qb_customer_id,
            txn_date=payment_date,
            memo=payment_ref,
            lines=[sales_line(1, item_id, 1, money_sub(ZERO, amount))],
        )
        return self.adapter.create(CREDIT_MEMO, payload)

    @staticmethod
    def _sales_document(customer_id: str, txn_date: date, memo: str, lines: List[Dict[str, Any]]) -> Dict[str, Any]:
        return {
            "AutoDocNumber": True,
            "Line": lines,
            "CustomerRef": {"value": customer_id},
            "TxnDate": txn_date.isoformat(),
            "PrivateNote": memo,
        }

    # -- payments ------------------------------------------------------------

    def create_payment(
        self,
        payment_ref: str,
        payment_date: date,
        customer_id: str,
        total: Decimal,
        lines: Iterable[Dict[str, Any]],
    ) -> Dict[str, Any]:
        """
        Record a received payment.

        ``PaymentRefNum`` holds at most 21 characters; a longer reference is
        kept whole in ``PrivateNote``.
        """
        payload = {
            "TotalAmt": total,
            "CustomerRef": {"value": customer_id},
            "PrivateNote": payment_ref if len(payment_ref) > PAYMENT_REF_LENGTH else None,
            "Line": list(lines),
            "TxnDate": payment_date.isoformat(),
            "PaymentRefNum": payment_ref[:PAYMENT_REF_LENGTH],
        }
        return self.adapter.create(PAYMENT, payload)

    # -- journal entries -------------------------------------------------------

    def create_accrued_revenue_entry(self, appointment: Appointment, doc_number: str) -> Dict[str, Any]:
        """
        Accrue the revenue of a completed, unbilled appointment.

        Credits the income account of the appointment's service item and
        debits the accrued revenue account. When the doc number is taken the
        next one is tried.

        Args:
            appointment: Appointment to accrue
            doc_number: First doc number to try (digits)

        Raises:
            AccountingApiError: For any rejection other than a duplicate doc number
        """
        account_id = self.require_accrued_revenue_account()
        item = self.get_item(appointment.service.qb_item_id)
        income_account_id = item["IncomeAccountRef"]["value"]
        customer_id = appointment.payer.qb_customer_id
        amount = to_money(appointment.charge)

        for _ in range(MAX_DOC_NUMBER_ATTEMPTS):
            payload = {
                "Line": [
                    journal_line("Credit", income_account_id, customer_id, amount, appointment.id),
                    journal_line("Debit", account_id, customer_id, amount, appointment.id),
                ],
                "DocNumber": doc_number,
                "TxnDate": appointment.service_date.isoformat(),
                "Adjustment": True,
            }
            try:
                return self.adapter.create(JOURNAL_ENTRY, payload)
            except AccountingApiError as e:
                if e.intuit_code != DUPLICATE_DOC_NUMBER_CODE:
                    raise
                logger.info("Journal entry doc number in use", doc_number=doc_number)
                doc_number = next_doc_number(doc_number)

        raise AccountingApiError(
            "No free journal entry doc number found after %d attempts." % MAX_DOC_NUMBER_ATTEMPTS,
            intuit_code=DUPLICATE_DOC_NUMBER_CODE,
        )

    def create_reversing_entry(self, appointment: Appointment, txn_date: date) -> Dict[str, Any]:
        """Post the accrual of ``appointment`` again with debits and credits swapped."""
        entry = self.get_journal_entry(appointment.qb_journal_entry_id)
        lines = []
        for line in entry["Line"]:
            detail = line[JOURNAL_LINE]
            lines.append(
                journal_line(
                    "Debit" if detail["PostingType"] == "Credit" else "Credit",
                    detail["AccountRef"]["value"],
                    detail["Entity"]["EntityRef"]["value"],
                    document_amount(line["Amount"]),
                    line.get("Description") or appointment.id,
                )
            )
        payload = {
            "Line": lines,
            "DocNumber": f"{entry.get('DocNumber', appointment.qb_journal_entry_id)}R",
            "TxnDate": txn_date.isoformat(),
            "Adjustment": True,
            "PrivateNote": "Reverses journal entry %s" % entry.get("DocNumber", entry["Id"]),
        }
        return self.adapter.create(JOURNAL_ENTRY, payload)

    def delete_journal_entry(self, entry_id: str) -> Dict[str, Any]:
        entry = self.get_journal_entry(entry_id)
        self.adapter.delete(JOURNAL_ENTRY, entry)
        return entry
