"""
EDI 835 (remittance advice) reader.

Walks every interchange, functional group and transaction set of a file and
returns one :class:`Edi835Payment` per transaction set. Each transaction set
is scanned by a small state machine with three states, NO_CLAIM, IN_CLAIM
and IN_CHARGE. ``CLP`` moves any state to IN_CLAIM and ``SVC`` moves IN_CLAIM
or IN_CHARGE to IN_CHARGE.

``BPR``, ``TRN``, ``N1*PR`` and ``PLB`` apply to the payment in any state.
``NM1*QC`` and claim dates need a claim; ``CAS`` and service dates need a
charge. Anything out of place is a fatal :class:`EdiError`.

Every payment passes the reconciliation cascade in
:mod:`hcbilling.services.edi.validation` before it is returned; a file either
yields all of its payments or raises.
"""
import enum
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import Callable, Dict, List, Optional, Union

from hcbilling.services.edi.envelope import (
    TransactionSet,
    check_group_trailer,
    check_interchange_trailer,
    check_transaction_set_trailer,
    parse_interchanges,
)
from hcbilling.services.edi.models import (
    Edi835ChargePayment,
    Edi835ClaimPayment,
    Edi835Payment,
    ProviderAdjustment,
)
from hcbilling.services.edi.segments import (
    BprSegment,
    CasSegment,
    ClpSegment,
    DtmSegment,
    N1Segment,
    Nm1Segment,
    PlbSegment,
    SvcSegment,
    TrnSegment,
)
from hcbilling.services.edi.source import load_edi_bytes
from hcbilling.services.edi.tokenizer import Segment, tokenize
from hcbilling.services.edi.validation import validate_payment
from hcbilling.utils.decimal_utils import money_add
from hcbilling.utils.errors import EdiError
from hcbilling.utils.logger import get_logger

logger = get_logger(__name__)

SERVICE_DATE_QUALIFIERS = ("472", "150")
CLAIM_START_QUALIFIER = "232"
CLAIM_END_QUALIFIER = "233"

# (CAS01 group code, CAS02 reason) -> charge attribute
ADJUSTMENT_TARGETS = {
    ("CO", "45"): "contractual_adjustment",
    ("PR", "2"): "coinsurance",
}


class ScanState(str, enum.Enum):
    NO_CLAIM = "no_claim"
    IN_CLAIM = "in_claim"
    IN_CHARGE = "in_charge"


@dataclass
class ScanContext:
    """Everything a transaction set scan carries between segments."""

    payment: Edi835Payment
    state: ScanState = ScanState.NO_CLAIM
    claim: Optional[Edi835ClaimPayment] = None
    charge: Optional[Edi835ChargePayment] = None
    claim_start: Optional[date] = None
    claim_end: Optional[date] = None

    def start_claim(self, claim: Edi835ClaimPayment) -> None:
        self.payment.claims.append(claim)
        self.claim = claim
        self.charge = None
        self.claim_start = None
        self.claim_end = None
        self.state = ScanState.IN_CLAIM

    def start_charge(self, charge: Edi835ChargePayment) -> None:
        self.require_claim("SVC").charges.append(charge)
        if self.claim_start is not None and self.claim_start == self.claim_end:
            # Single-day claims may omit the service line date
            charge.service_date = self.claim_start
        self.charge = charge
        self.state = ScanState.IN_CHARGE

    def require_claim(self, tag: str) -> Edi835ClaimPayment:
        if self.state is ScanState.NO_CLAIM:
            raise EdiError("Segment %s found before any CLP segment." % tag)
        return self.claim

    def require_charge(self, tag: str) -> Edi835ChargePayment:
        if self.state is not ScanState.IN_CHARGE:
            raise EdiError("Segment %s found outside of a service line." % tag)
        return self.charge


class Edi835Reader:
    """
    Reads payments from one 835 file.

    Args:
        data: Raw file contents (or a zip archive holding a ``.835`` entry)
        filename: Name of the file; a ``.zip`` suffix triggers extraction
        currency_code: Currency used in reconciliation error messages

    Example:
        >>> payments = Edi835Reader.from_path("var/inbox/remit.zip").process()
    """

    def __init__(self, data: bytes, filename: str = "", currency_code: str = "USD"):
        self.filename = filename
        self.currency_code = currency_code
        self._segments = tokenize(load_edi_bytes(data, filename))
        self._handlers: Dict[str, Callable[[ScanContext, Segment], None]] = {
            "BPR": self._on_bpr,
            "TRN": self._on_trn,
            "N1": self._on_n1,
            "CLP": self._on_clp,
            "NM1": self._on_nm1,
            "SVC": self._on_svc,
            "DTM": self._on_dtm,
            "CAS": self._on_cas,
            "PLB": self._on_plb,
        }

    @classmethod
    def from_path(cls, path: Union[str, Path], currency_code: str = "USD") -> "Edi835Reader":
        path = Path(path)
        return cls(path.read_bytes(), filename=path.name, currency_code=currency_code)

    def process(self) -> List[Edi835Payment]:
        """
        Extract and validate every payment in the file.

        Raises:
            EdiError: On envelope mismatches, a non-835 transaction set or an
                unsupported adjustment
            ReconciliationError: If any declared total does not add up
        """
        payments: List[Edi835Payment] = []

        for interchange in parse_interchanges(self._segments):
            for group in interchange.groups:
                processed = 0
                for transaction_set in group.transaction_sets:
                    payments.append(self._process_transaction_set(transaction_set))
                    processed += 1
                check_group_trailer(group, processed)
            check_interchange_trailer(interchange)

        logger.info(
            "Processed 835 file",
            filename=self.filename,
            payments=len(payments),
            claims=sum(len(payment.claims) for payment in payments),
        )
        return payments

    def _process_transaction_set(self, transaction_set: TransactionSet) -> Edi835Payment:
        if transaction_set.header.transaction_set_code != "835":
            raise EdiError("This is not an EDI 835 file.")

        context = ScanContext(payment=Edi835Payment())

        for segment in transaction_set.segments:
            if segment.tag == "SE":
                check_transaction_set_trailer(transaction_set)
                break
            handler = self._handlers.get(segment.tag)
            if handler is not None:
                handler(context, segment)

        payment = context.payment
        if payment.payment is None:
            raise EdiError("Transaction set %s has no BPR segment." % transaction_set.header.control_number)
        if payment.payment_ref is None:
            raise EdiError("Transaction set %s has no TRN segment." % transaction_set.header.control_number)

        validate_payment(payment, self.currency_code)
        logger.debug("Validated payment", payment_ref=payment.payment_ref, claims=len(payment.claims))
        return payment

    @staticmethod
    def _on_bpr(context: ScanContext, segment: Segment) -> None:
        bpr = BprSegment.from_segment(segment)
        context.payment.payment = bpr.payment_amount
        context.payment.payment_date = bpr.payment_date

    @staticmethod
    def _on_trn(context: ScanContext, segment: Segment) -> None:
        context.payment.payment_ref = TrnSegment.from_segment(segment).reference

    @staticmethod
    def _on_n1(context: ScanContext, segment: Segment) -> None:
        n1 = N1Segment.from_segment(segment)
        if n1.entity_identifier == "PR":
            context.payment.payer = n1.name

    @staticmethod
    def _on_clp(context: ScanContext, segment: Segment) -> None:
        clp = ClpSegment.from_segment(segment)
        context.start_claim(
            Edi835ClaimPayment(
                claim_id=clp.claim_id,
                amount_claimed=clp.amount_claimed,
                amount_paid=clp.amount_paid,
                patient_responsibility=clp.patient_responsibility,
            )
        )

    @staticmethod
    def _on_nm1(context: ScanContext, segment: Segment) -> None:
        nm1 = Nm1Segment.from_segment(segment)
        if nm1.entity_identifier == "QC":
            claim = context.require_claim("NM1*QC")
            claim.client_last_name = nm1.last_name
            claim.client_first_name = nm1.first_name

    @staticmethod
    def _on_svc(context: ScanContext, segment: Segment) -> None:
        svc = SvcSegment.from_segment(segment)
        context.start_charge(
            Edi835ChargePayment(
                billing_code=svc.billing_code,
                billed=svc.billed,
                paid=svc.paid,
                units=svc.units,
            )
        )

    @staticmethod
    def _on_dtm(context: ScanContext, segment: Segment) -> None:
        dtm = DtmSegment.from_segment(segment)
        if dtm.qualifier in SERVICE_DATE_QUALIFIERS:
            context.require_charge("DTM*" + dtm.qualifier).service_date = dtm.date
        elif dtm.qualifier == CLAIM_START_QUALIFIER:
            context.require_claim("DTM*232")
            context.claim_start = dtm.date
        elif dtm.qualifier == CLAIM_END_QUALIFIER:
            context.require_claim("DTM*233")
            context.claim_end = dtm.date

    @staticmethod
    def _on_cas(context: ScanContext, segment: Segment) -> None:
        charge = context.require_charge("CAS")
        cas = CasSegment.from_segment(segment)
        for reason, amount in cas.adjustments:
            target = ADJUSTMENT_TARGETS.get((cas.group_code, reason))
            if target is None:
                raise EdiError(
                    "Encountered unexpected adjustment: %s with code %s" % (cas.group_code, reason),
                    details={"group_code": cas.group_code, "reason": reason},
                )
            setattr(charge, target, money_add(getattr(charge, target), amount))

    @staticmethod
    def _on_plb(context: ScanContext, segment: Segment) -> None:
        plb = PlbSegment.from_segment(segment)
        for reason, amount in plb.adjustments:
            context.payment.provider_adjustments.append(ProviderAdjustment.from_plb(reason, amount))
