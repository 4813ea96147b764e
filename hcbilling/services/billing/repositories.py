"""
Queries over payers, charges, appointments, claims and payments.

Amount criteria are compared in Python with exact decimals after the SQL
filter, since not every backend stores ``Numeric`` columns exactly. Client
names are matched with a case-insensitive ``Last,? First`` pattern because
practice management exports are inconsistent about the comma.
"""
import re
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Pattern

from sqlalchemy.orm import Session

from hcbilling.models import (
    Appointment,
    Charge,
    Claim,
    ClaimStatus,
    Payer,
    Payment,
    Service,
)
from hcbilling.services.billing.summary import ClaimSummary, billing_id_for
from hcbilling.services.edi.models import Edi837Claim
from hcbilling.utils.decimal_utils import money_equals, money_sum
from hcbilling.utils.errors import ClaimCreationError
from hcbilling.utils.logger import get_logger

logger = get_logger(__name__)


def client_name_pattern(last_name: Optional[str], first_name: Optional[str]) -> Pattern:
    """
    Example:
        >>> bool(client_name_pattern("Doe", "Jane").search("DOE JANE"))
        True
    """
    return re.compile(
        "%s,? %s" % (re.escape(last_name or ""), re.escape(first_name or "")),
        re.IGNORECASE,
    )


class PayerRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, payer_id: str) -> Optional[Payer]:
        return self.db.get(Payer, payer_id)

    def find_one_by_name_and_service(self, name: str, billing_code: str) -> Optional[Payer]:
        return (
            self.db.query(Payer)
            .join(Service)
            .filter(Payer.name == name, Service.billing_code == billing_code)
            .first()
        )

    def find_one_by_name(self, name: str) -> Optional[Payer]:
        return self.db.query(Payer).filter(Payer.name == name).first()


class ChargeRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, charge_line: str) -> Optional[Charge]:
        return self.db.get(Charge, charge_line)

    def _unpaid(self):
        return (
            self.db.query(Charge)
            .join(Service, Charge.service_id == Service.id)
            .filter(Charge.billed_date.isnot(None), Charge.payment_ref.is_(None))
        )

    def find_claim_charges(self, claim: Edi837Claim) -> List[Charge]:
        """
        Match every service line of an 837 claim to exactly one stored charge.

        Candidates are charges not yet on a claim that have a matched
        appointment. A line matching nothing is skipped; if nothing matches at
        all an empty list is returned.

        Raises:
            ClaimCreationError: If a line matches several charges, a charge is
                matched twice, or only some lines match
        """
        pattern = client_name_pattern(claim.client_last_name, claim.client_first_name)
        selected: List[Charge] = []

        for line in claim.charges:
            candidates = (
                self.db.query(Charge)
                .join(Service, Charge.service_id == Service.id)
                .filter(
                    Charge.claim_id.is_(None),
                    Charge.appointments.any(),
                    Charge.billed_units == line.units,
                    Charge.service_date == line.service_date,
                    Charge.payer_id == claim.payer_id,
                    Charge.billed_date == claim.billed_date,
                    Service.billing_code == line.billing_code,
                )
                .order_by(Charge.charge_line)
                .all()
            )
            matches = [
                charge
                for charge in candidates
                if money_equals(charge.billed_amount, line.billed) and pattern.search(charge.client_name)
            ]

            if not matches:
                continue
            if len(matches) > 1:
                raise ClaimCreationError(
                    "More than one charge matches the provided criteria.",
                    details={"charges": [charge.charge_line for charge in matches]},
                )

            charge = matches[0]
            if charge in selected:
                raise ClaimCreationError("Charge %s has already been selected." % charge.charge_line)
            selected.append(charge)

        if not selected:
            return []
        if len(selected) != len(claim.charges):
            raise ClaimCreationError(
                "Not all charges could be matched.",
                details={"matched": len(selected), "expected": len(claim.charges)},
            )
        return selected

    def get_summary(self, claim: Edi837Claim) -> Optional[ClaimSummary]:
        charges = self.find_claim_charges(claim)
        if not charges:
            return None

        first = charges[0]
        return ClaimSummary(
            billing_id=billing_id_for(first.charge_line),
            payer=first.payer.name if first.payer else None,
            client=first.client_name,
            billed_amount=money_sum(charge.billed_amount for charge in charges),
            contract_amount=money_sum(charge.contract_amount for charge in charges),
            billed_date=first.billed_date,
            start_date=min(charge.service_date for charge in charges),
            end_date=max(charge.service_date for charge in charges),
            charges=charges,
        )

    def find_by_svc_data(
        self,
        billing_code: str,
        billed_amount: Decimal,
        units: int,
        service_date: Optional[date],
        last_name: Optional[str],
        first_name: Optional[str],
    ) -> List[Charge]:
        """Unpaid charges matching one remittance service line."""
        pattern = client_name_pattern(last_name, first_name)
        candidates = (
            self._unpaid()
            .filter(
                Charge.billed_units == units,
                Charge.service_date == service_date,
                Service.billing_code == billing_code,
            )
            .order_by(Charge.charge_line)
            .all()
        )
        return [
            charge
            for charge in candidates
            if money_equals(charge.billed_amount, billed_amount) and pattern.search(charge.client_name)
        ]

    def find_by_line_item(
        self,
        service_date: date,
        billing_code: str,
        billed_amount: Decimal,
        client_name: str,
    ) -> List[Charge]:
        """Unpaid charges matching a manually entered line item."""
        candidates = (
            self._unpaid()
            .filter(
                Charge.service_date == service_date,
                Charge.client_name == client_name,
                Service.billing_code == billing_code,
            )
            .order_by(Charge.charge_line)
            .all()
        )
        return [charge for charge in candidates if money_equals(charge.billed_amount, billed_amount)]

    def find_by_payment_ref(self, payment_ref: str) -> List[Charge]:
        return (
            self.db.query(Charge)
            .filter(Charge.payment_ref == payment_ref)
            .order_by(Charge.service_date, Charge.charge_line)
            .all()
        )

    def find_without_appointments(self) -> List[Charge]:
        return (
            self.db.query(Charge)
            .filter(~Charge.appointments.any())
            .order_by(Charge.service_date, Charge.charge_line)
            .all()
        )


class ClaimRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, claim_id: int) -> Optional[Claim]:
        return self.db.get(Claim, claim_id)

    def create_claim(
        self,
        billing_id: str,
        invoice_id: str,
        credit_memo_id: str,
        charges: Iterable[Charge],
    ) -> Claim:
        claim = Claim(
            billing_id=billing_id,
            status=ClaimStatus.PROCESSED,
            qb_invoice_id=invoice_id,
            qb_credit_memo_ids=[credit_memo_id],
        )
        claim.charges = list(charges)
        self.db.add(claim)
        self.db.flush()
        return claim

    def find_one_by_charges(self, charges: List[Charge]) -> Optional[Claim]:
        """The claim holding every one of ``charges``, if there is one."""
        claim_ids = {charge.claim_id for charge in charges}
        if len(claim_ids) != 1 or None in claim_ids:
            return None
        return self.get(claim_ids.pop())

    def find_one_by_billing_id(self, billing_id: str) -> Optional[Claim]:
        return self.db.query(Claim).filter(Claim.billing_id == billing_id).first()

    def mark_paid(self, payment_ref: str) -> List[Claim]:
        claims = (
            self.db.query(Claim)
            .join(Charge, Charge.claim_id == Claim.id)
            .filter(Charge.payment_ref == payment_ref)
            .distinct()
            .all()
        )
        for claim in claims:
            claim.status = ClaimStatus.PAID
            claim.payment_ref = payment_ref
        self.db.flush()
        logger.info("Marked claims paid", payment_ref=payment_ref, claims=len(claims))
        return claims

    def find_unpaid(self, end_date: Optional[date] = None) -> List[Claim]:
        """
        Claims awaiting payment.

        With ``end_date``, claims billed on or before that date that were
        unpaid at the end of it, whatever their status today.
        """
        if end_date is None:
            claims = self.db.query(Claim).filter(Claim.status == ClaimStatus.PROCESSED).all()
        else:
            claims = [
                claim
                for claim in self.db.query(Claim).filter(Claim.status != ClaimStatus.PENDING).all()
                if claim.billed_date is not None
                and claim.billed_date <= end_date
                and (claim.payment_date is None or claim.payment_date > end_date)
            ]
        return sorted(claims, key=lambda claim: (claim.billed_date or date.min, claim.billing_id or ""))


class AppointmentRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, appointment_id: str) -> Optional[Appointment]:
        return self.db.get(Appointment, appointment_id)

    def _completed(self):
        return self.db.query(Appointment).filter(Appointment.completed.is_(True))

    def _unbilled(self):
        # Not on a claim: no matched charge, or a charge without a claim
        return (
            self._completed()
            .outerjoin(Charge, Appointment.charge_line == Charge.charge_line)
            .filter(Charge.claim_id.is_(None))
        )

    @staticmethod
    def _default_sort(query):
        return query.order_by(Appointment.service_date, Appointment.id)

    def get_next_claim_date(self) -> Optional[date]:
        """Earliest billed date among completed appointments not yet on a claim."""
        appointment = (
            self._unbilled()
            .filter(Appointment.billed_date.isnot(None))
            .order_by(Appointment.billed_date)
            .first()
        )
        return appointment.billed_date if appointment else None

    def find_unbilled(self) -> List[Appointment]:
        return self._default_sort(self._unbilled()).all()

    def find_unbilled_without_journal_entries(self) -> List[Appointment]:
        return self._default_sort(self._unbilled().filter(Appointment.qb_journal_entry_id.is_(None))).all()

    def find_unbilled_from_charges(self, charges: Iterable[Charge]) -> List[Appointment]:
        charge_lines = [charge.charge_line for charge in charges]
        return self._default_sort(self._unbilled().filter(Appointment.charge_line.in_(charge_lines))).all()

    def find_reconcilable(self, end_date: Optional[date] = None) -> List[Appointment]:
        """Completed appointments that still have an accrual journal entry."""
        query = self._completed().filter(Appointment.qb_journal_entry_id.isnot(None))
        if end_date is not None:
            query = query.filter(Appointment.service_date <= end_date)
        return self._default_sort(query).all()

    def find_incomplete(self, end_date: Optional[date] = None) -> List[Appointment]:
        query = self.db.query(Appointment).filter(Appointment.completed.is_(False))
        if end_date is not None:
            query = query.filter(Appointment.service_date <= end_date)
        return self._default_sort(query).all()

    def find_by_charge_data(
        self,
        payer_id: str,
        service_date: date,
        client_name: str,
        billing_code: str,
    ) -> List[Appointment]:
        return self._default_sort(
            self._completed()
            .join(Service, Appointment.service_id == Service.id)
            .filter(
                Appointment.payer_id == payer_id,
                Appointment.service_date == service_date,
                Appointment.client_name == client_name,
                Service.billing_code == billing_code,
                Appointment.charge_line.is_(None),
            )
        ).all()

    def find_matches(self) -> int:
        """
        Link charges without appointments to their completed appointments.

        A single appointment with the same units as the charge is linked on
        its own; otherwise all candidates are linked when their units add up
        to the charge's units.

        Returns:
            Number of appointments linked
        """
        matched = 0
        for charge in ChargeRepository(self.db).find_without_appointments():
            matched += self._match_charge(charge)
        self.db.flush()
        return matched

    def _match_charge(self, charge: Charge) -> int:
        appointments = self.find_by_charge_data(
            payer_id=charge.payer_id,
            service_date=charge.service_date,
            client_name=charge.client_name,
            billing_code=charge.service.billing_code,
        )
        if not appointments:
            return 0

        for appointment in appointments:
            if appointment.units == charge.billed_units:
                appointment.charge_line = charge.charge_line
                return 1

        if sum(appointment.units for appointment in appointments) != charge.billed_units:
            return 0

        for appointment in appointments:
            appointment.charge_line = charge.charge_line
        return len(appointments)

    def last_journal_entry_doc_number(self) -> Optional[str]:
        numbers = [
            int(value)
            for (value,) in self.db.query(Appointment.qb_journal_entry_doc_number)
            .filter(Appointment.qb_journal_entry_doc_number.isnot(None))
            .all()
            if value.isdigit()
        ]
        return str(max(numbers)) if numbers else None

    def client_revenue(self, start_date: date, end_date: date) -> Dict[str, Decimal]:
        """Charges of completed appointments per client between two dates inclusive."""
        revenue: Dict[str, List[Decimal]] = {}
        appointments = self._completed().filter(
            Appointment.service_date >= start_date,
            Appointment.service_date <= end_date,
        )
        for appointment in appointments:
            revenue.setdefault(appointment.client_name, []).append(appointment.charge)
        return {client: money_sum(charges) for client, charges in sorted(revenue.items())}


class PaymentRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, payment_ref: str) -> Optional[Payment]:
        return self.db.get(Payment, payment_ref)
