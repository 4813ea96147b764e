"""
Accrued revenue journal entries for completed appointments not yet billed.

At the end of a billing period each unbilled appointment is accrued with an
adjusting journal entry. Claim creation later deletes or reverses the entry.
"""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from hcbilling.models import Appointment
from hcbilling.services.accounting.documents import AccountingDocuments, document_amount, next_doc_number
from hcbilling.services.billing.repositories import AppointmentRepository
from hcbilling.utils.decimal_utils import ZERO, format_currency, money_add, money_compare, money_sub
from hcbilling.utils.errors import ValidationError
from hcbilling.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_STARTING_DOC_NUMBER = "1"


def validate_doc_number(value: Optional[str]) -> str:
    value = (value or "").strip()
    if not value.isdigit():
        raise ValidationError("Ref number must be an integer.", details={"value": value})
    return value


@dataclass
class JournalEntryRun:
    created: List[Dict[str, str]] = field(default_factory=list)
    next_doc_number: Optional[str] = None

    @property
    def count(self) -> int:
        return len(self.created)


@dataclass
class UnbilledReconciliation:
    """Accrued revenue balances and entries that disagree with their appointment."""

    start_balance: Optional[Decimal]
    end_balance: Decimal
    mismatches: List[Dict[str, str]] = field(default_factory=list)

    @property
    def reconciled(self) -> bool:
        return not self.mismatches


class JournalEntryService:
    """
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
        self.appointments = AppointmentRepository(db)

    def default_starting_doc_number(self) -> str:
        last = self.appointments.last_journal_entry_doc_number()
        return next_doc_number(last) if last else DEFAULT_STARTING_DOC_NUMBER

    def generate_unbilled_entries(self, starting_doc_number: Optional[str] = None) -> JournalEntryRun:
        """
        Accrue every unbilled appointment that has no journal entry yet.

        Doc numbers count up from ``starting_doc_number``; numbers already
        taken in the accounting system are skipped.

        Raises:
            ValidationError: If the starting number is not all digits
            ConfigurationError: If the accrued revenue account is not set
        """
        self.documents.require_accrued_revenue_account()
        doc_number = validate_doc_number(starting_doc_number or self.default_starting_doc_number())

        run = JournalEntryRun()
        appointments = self.appointments.find_unbilled_without_journal_entries()
        if not appointments:
            self.notify("There are currently no unbilled appointments.")
            return run

        for appointment in appointments:
            entry = self.documents.create_accrued_revenue_entry(appointment, doc_number)
            appointment.qb_journal_entry_id = entry["Id"]
            appointment.qb_journal_entry_doc_number = entry.get("DocNumber", doc_number)
            self.db.commit()

            message = "Created journal entry %s for appointment %s on %s" % (
                appointment.qb_journal_entry_doc_number,
                appointment.id,
                appointment.service_date.isoformat(),
            )
            logger.info(message)
            self.notify(message)
            run.created.append(
                {
                    "appointment_id": appointment.id,
                    "journal_entry_id": entry["Id"],
                    "doc_number": appointment.qb_journal_entry_doc_number,
                    "service_date": appointment.service_date.isoformat(),
                }
            )
            doc_number = next_doc_number(appointment.qb_journal_entry_doc_number)

        run.next_doc_number = doc_number
        return run

    def reconcile_unbilled(self, start_date: Optional[date] = None, end_date: Optional[date] = None) -> UnbilledReconciliation:
        """
        Compare accrued appointments with their journal entries.

        The balances are what the accrued revenue account should hold before
        ``start_date`` and through ``end_date``. Entries not yet reversed are
        fetched and their amount checked against the appointment charge.
        """
        appointments = self.appointments.find_reconcilable(end_date)
        start_balance = ZERO if start_date is not None else None
        end_balance = ZERO

        for appointment in appointments:
            reversed_entry = appointment.qb_reversing_journal_entry_id is not None
            if start_date is not None and appointment.service_date < start_date:
                start_balance = money_add(start_balance, appointment.charge)
                if reversed_entry and appointment.billed_date and appointment.billed_date < start_date:
                    start_balance = money_sub(start_balance, appointment.charge)

            if end_date is None or appointment.service_date <= end_date:
                end_balance = money_add(end_balance, appointment.charge)
            if reversed_entry and (end_date is None or (appointment.billed_date and appointment.billed_date < end_date)):
                end_balance = money_sub(end_balance, appointment.charge)

        mismatches = [
            mismatch
            for mismatch in (self._check_entry(appointment) for appointment in appointments)
            if mismatch is not None
        ]
        return UnbilledReconciliation(start_balance, end_balance, mismatches)

    def _check_entry(self, appointment: Appointment) -> Optional[Dict[str, str]]:
        if appointment.qb_reversing_journal_entry_id is not None:
            return None
        entry = self.documents.get_journal_entry(appointment.qb_journal_entry_id)
        amount = document_amount(entry["Line"][0].get("Amount"))
        if money_compare(amount, appointment.charge) == 0:
            return None
        return {
            "date": appointment.service_date.isoformat(),
            "journal_entry_ref": entry.get("DocNumber", ""),
            "expected": format_currency(appointment.charge, self.currency_code),
            "actual": format_currency(amount, self.currency_code),
        }
