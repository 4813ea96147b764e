"""
Claim creation from 837 files.

Each claim in the file is matched to stored charges, checked against the
next date due for billing, and then invoiced in the accounting system with
a credit memo for the contractual adjustment. Accrued revenue for the
billed appointments is deleted or reversed first.
"""
import re
import shutil
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Union

from sqlalchemy.orm import Session

from hcbilling.config.settings import BillingSettings, get_billing_settings
from hcbilling.models import Appointment, Charge, Claim
from hcbilling.services.accounting.documents import AccountingDocuments, document_amount
from hcbilling.services.billing.repositories import AppointmentRepository, ChargeRepository, ClaimRepository
from hcbilling.services.billing.summary import ClaimSummary
from hcbilling.services.edi.models import Edi837Claim
from hcbilling.services.edi.reader_837 import Edi837Reader, is_837
from hcbilling.utils.dates import first_day_of_month
from hcbilling.utils.decimal_utils import format_currency, money_compare
from hcbilling.utils.errors import ClaimCreationError
from hcbilling.utils.logger import get_logger

logger = get_logger(__name__)


def _natural_key(path: Path):
    return [int(part) if part.isdigit() else part.lower() for part in re.split(r"(\d+)", path.name)]


def find_claim_file(directory: Union[str, Path]) -> Optional[Path]:
    """First ``*.txt`` file in natural name order that holds an 837."""
    for path in sorted(Path(directory).glob("*.txt"), key=_natural_key):
        if is_837(path.read_bytes()):
            return path
        logger.debug("Skipping file that is not an 837", path=str(path))
    return None


@dataclass
class ClaimBatchResult:
    """Outcome of processing one 837 file."""

    claims: List[Claim] = field(default_factory=list)
    declined: List[str] = field(default_factory=list)
    messages: List[str] = field(default_factory=list)
    next_claim_date: Optional[date] = None
    moved_to: Optional[Path] = None

    @property
    def all_processed(self) -> bool:
        return not self.declined


class ClaimCreationService:
    """
    Creates claims in the database and the accounting system.

    Args:
        db: Database session; committed after each claim
        documents: Accounting document helper
        settings: Billing settings (processed directory, currency)
        confirm: Asked before each claim is sent; returns False to skip it
        notify: Receives progress messages meant for the operator
    """

    def __init__(
        self,
        db: Session,
        documents: AccountingDocuments,
        settings: Optional[BillingSettings] = None,
        confirm: Optional[Callable[[str], bool]] = None,
        notify: Optional[Callable[[str], None]] = None,
    ):
        self.db = db
        self.documents = documents
        self.settings = settings or get_billing_settings()
        self.confirm = confirm or (lambda prompt: True)
        self.notify = notify or (lambda message: None)
        self.charges = ChargeRepository(db)
        self.appointments = AppointmentRepository(db)
        self.claims = ClaimRepository(db)
        self._messages: List[str] = []

    def _money(self, amount) -> str:
        return format_currency(amount, self.settings.currency_code)

    def _say(self, message: str) -> None:
        logger.info(message)
        self._messages.append(message)
        self.notify(message)

    def process_file(self, path: Union[str, Path], move: bool = True) -> ClaimBatchResult:
        """Process every claim of an 837 file, moving the file once all are done."""
        path = Path(path)
        result = self.process_claims(Edi837Reader.from_path(path).process())
        if move and result.claims and result.all_processed:
            result.moved_to = self.move_processed(path)
        return result

    def process_directory(self, directory: Union[str, Path], move: bool = True) -> ClaimBatchResult:
        path = find_claim_file(directory)
        if path is None:
            raise ClaimCreationError("No valid EDI 837 files were found.", details={"directory": str(directory)})
        return self.process_file(path, move=move)

    def process_data(self, data: bytes, filename: str = "") -> ClaimBatchResult:
        return self.process_claims(Edi837Reader(data, filename=filename).process())

    def process_claims(self, edi_claims: Sequence[Edi837Claim]) -> ClaimBatchResult:
        """
        Create a claim for each 837 claim, in file order.

        Raises:
            ClaimCreationError: If a claim is not on the next claim date or
                cannot be matched to stored charges
        """
        self._messages = []
        result = ClaimBatchResult(messages=self._messages)

        next_claim_date = self.appointments.get_next_claim_date()
        result.next_claim_date = next_claim_date
        if next_claim_date is None:
            self._say("There are no more claims to process.")
            return result

        for index, edi_claim in enumerate(edi_claims, start=1):
            if edi_claim.billed_date != next_claim_date:
                raise ClaimCreationError(
                    "The next claim date should be %s but this claim is on %s."
                    % (next_claim_date.isoformat(), edi_claim.billed_date.isoformat() if edi_claim.billed_date else None)
                )

            self._say("Processing Claim %d of %d" % (index, len(edi_claims)))
            claim = self.process_claim(edi_claim)
            if claim is None:
                result.declined.append(edi_claim.claim_id)
            else:
                result.claims.append(claim)

        return result

    def get_summary(self, edi_claim: Edi837Claim) -> ClaimSummary:
        summary = self.charges.get_summary(edi_claim)
        if summary is None:
            raise ClaimCreationError("No charges found for the given parameters.")
        if money_compare(summary.billed_amount, edi_claim.billed) != 0:
            raise ClaimCreationError(
                "The total of the provided claim file does not match the total of the matched charges.",
                details={"claim_total": str(edi_claim.billed), "charges_total": str(summary.billed_amount)},
            )
        return summary

    def process_claim(self, edi_claim: Edi837Claim) -> Optional[Claim]:
        """
        Create one claim.

        Returns:
            The stored claim, or None if the operator declined it
        """
        summary = self.get_summary(edi_claim)
        prompt = "Create claim %s for %s from %s to %s for %s (contracted %s)?" % (
            summary.billing_id,
            summary.client,
            summary.start_date.strftime("%m/%d/%Y"),
            summary.end_date.strftime("%m/%d/%Y"),
            self._money(summary.billed_amount),
            self._money(summary.contract_amount),
        )
        if not self.confirm(prompt):
            logger.info("Claim declined", billing_id=summary.billing_id)
            return None

        charges = summary.charges
        unbilled = self.appointments.find_unbilled_from_charges(charges)
        validate_appointments(charges, unbilled)

        self.reverse_journal_entries(unbilled)
        self.db.commit()

        self.documents.require_payment_term()
        invoice = self.documents.create_invoice_from_charges(summary.billing_id, charges)
        self._say(
            "Created invoice %s for %s."
            % (invoice.get("DocNumber"), self._money(document_amount(invoice.get("TotalAmt"))))
        )

        credit_memo = None
        try:
            self.documents.require_contractual_adjustment_item()
            credit_memo = self.documents.create_contractual_adjustment_credit(summary.billing_id, charges)
            self._say(
                "Created credit memo %s for %s."
                % (credit_memo.get("DocNumber"), self._money(document_amount(credit_memo.get("TotalAmt"))))
            )
            claim = self.claims.create_claim(summary.billing_id, invoice["Id"], credit_memo["Id"], charges)
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.warning("Removing documents of failed claim", billing_id=summary.billing_id)
            self.documents.delete_invoice(invoice)
            if credit_memo is not None:
                self.documents.delete_credit_memo(credit_memo)
            raise

        self._say("Claim %s has been processed successfully." % claim.billing_id)
        return claim

    def reverse_journal_entries(self, appointments: Sequence[Appointment]) -> None:
        """
        Undo the revenue accrued for appointments that are now billed.

        An accrual in the billed month is deleted outright; one from an
        earlier month is left in place and reversed on the billed date.
        """
        accrued = [
            appointment
            for appointment in appointments
            if appointment.qb_journal_entry_id is not None and appointment.qb_reversing_journal_entry_id is None
        ]
        if not accrued:
            self._say("No unbilled appointments to reverse.")
            return

        for appointment in accrued:
            billed_date = appointment.billed_date or appointment.matched_charge.billed_date
            first_day = first_day_of_month(billed_date)
            if appointment.service_date >= first_day:
                entry = self.documents.delete_journal_entry(appointment.qb_journal_entry_id)
                appointment.qb_journal_entry_id = None
                appointment.qb_journal_entry_doc_number = None
                verb = "Deleted"
            else:
                entry = self.documents.create_reversing_entry(appointment, billed_date)
                appointment.qb_reversing_journal_entry_id = entry["Id"]
                verb = "Created"
            self._say(
                "%s journal entry %s for appointment %s on %s"
                % (verb, entry.get("DocNumber"), appointment.id, appointment.service_date.isoformat())
            )
        self.db.flush()

    def move_processed(self, path: Path) -> Path:
        target_dir = Path(self.settings.processed_claims_dir)
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / path.name
        shutil.move(str(path), str(target))
        logger.info("Moved processed claim file", source=str(path), target=str(target))
        return target


def validate_appointments(charges: Sequence[Charge], appointments: Sequence[Appointment]) -> None:
    """
    Raises:
        ClaimCreationError: If any charge has no unbilled appointment linked to it
    """
    remaining = [charge.charge_line for charge in charges]
    for appointment in appointments:
        if appointment.charge_line in remaining:
            remaining.remove(appointment.charge_line)

    if remaining:
        raise ClaimCreationError(
            "The remaining charges do not have connected appointments: %s" % ", ".join(remaining),
            details={"charges": remaining},
        )
