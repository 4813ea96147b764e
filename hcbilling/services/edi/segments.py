"""
Typed views over the segments the 835 and 837 readers consume.

Each class names the elements it needs and converts them once: amounts to
``Decimal``, dates to ``date``, counts to ``int``. A required element that is
missing or malformed raises :class:`EdiError` naming the X12 position.
"""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Optional, Tuple

from hcbilling.services.edi.tokenizer import Segment
from hcbilling.utils.dates import parse_edi_date
from hcbilling.utils.decimal_utils import to_money, ZERO
from hcbilling.utils.errors import EdiError


def _position(segment: Segment, position: int) -> str:
    return f"{segment.tag}{position:02d}"


def _text(segment: Segment, position: int, required: bool = False) -> str:
    value = segment.element(position).strip()
    if required and not value:
        raise EdiError(
            f"Segment {segment.tag} is missing {_position(segment, position)}.",
            details={"segment": segment.raw},
        )
    return value


def _amount(segment: Segment, position: int, default: Optional[Decimal] = None) -> Decimal:
    value = _text(segment, position, required=default is None)
    if not value:
        return default
    try:
        return to_money(value)
    except ValueError:
        raise EdiError(
            f"{_position(segment, position)} is not a valid amount: {value}",
            details={"segment": segment.raw},
        ) from None


def _integer(segment: Segment, position: int, default: Optional[int] = None) -> int:
    value = _text(segment, position, required=default is None)
    if not value:
        return default
    try:
        # Unit counts are sometimes sent as "1.0"
        return int(Decimal(value))
    except (ArithmeticError, ValueError):
        raise EdiError(
            f"{_position(segment, position)} is not a valid number: {value}",
            details={"segment": segment.raw},
        ) from None


def _date(segment: Segment, position: int, value: Optional[str] = None) -> date:
    value = value if value is not None else _text(segment, position, required=True)
    try:
        return parse_edi_date(value)
    except ValueError:
        raise EdiError(
            f"{_position(segment, position)} is not a valid date: {value}",
            details={"segment": segment.raw},
        ) from None


# Envelope

@dataclass(frozen=True)
class IsaSegment:
    control_number: str

    @classmethod
    def from_segment(cls, segment: Segment) -> "IsaSegment":
        return cls(control_number=_text(segment, 13, required=True))


@dataclass(frozen=True)
class IeaSegment:
    group_count: int
    control_number: str

    @classmethod
    def from_segment(cls, segment: Segment) -> "IeaSegment":
        return cls(group_count=_integer(segment, 1), control_number=_text(segment, 2, required=True))


@dataclass(frozen=True)
class GsSegment:
    functional_code: str
    control_number: str

    @classmethod
    def from_segment(cls, segment: Segment) -> "GsSegment":
        return cls(functional_code=_text(segment, 1), control_number=_text(segment, 6, required=True))


@dataclass(frozen=True)
class GeSegment:
    transaction_set_count: int
    control_number: str

    @classmethod
    def from_segment(cls, segment: Segment) -> "GeSegment":
        return cls(transaction_set_count=_integer(segment, 1), control_number=_text(segment, 2, required=True))


@dataclass(frozen=True)
class StSegment:
    transaction_set_code: str
    control_number: str

    @classmethod
    def from_segment(cls, segment: Segment) -> "StSegment":
        return cls(transaction_set_code=_text(segment, 1), control_number=_text(segment, 2, required=True))


@dataclass(frozen=True)
class SeSegment:
    segment_count: int
    control_number: str

    @classmethod
    def from_segment(cls, segment: Segment) -> "SeSegment":
        return cls(segment_count=_integer(segment, 1, default=0), control_number=_text(segment, 2, required=True))


# Shared

@dataclass(frozen=True)
class Nm1Segment:
    entity_identifier: str
    last_name: str
    first_name: str
    identifier: str

    @classmethod
    def from_segment(cls, segment: Segment) -> "Nm1Segment":
        return cls(
            entity_identifier=_text(segment, 1),
            last_name=_text(segment, 3),
            first_name=_text(segment, 4),
            identifier=_text(segment, 9),
        )


# 835 remittance

@dataclass(frozen=True)
class BprSegment:
    payment_amount: Decimal
    payment_date: date

    @classmethod
    def from_segment(cls, segment: Segment) -> "BprSegment":
        return cls(payment_amount=_amount(segment, 2), payment_date=_date(segment, 16))


@dataclass(frozen=True)
class TrnSegment:
    reference: str

    @classmethod
    def from_segment(cls, segment: Segment) -> "TrnSegment":
        return cls(reference=_text(segment, 2, required=True))


@dataclass(frozen=True)
class N1Segment:
    entity_identifier: str
    name: str

    @classmethod
    def from_segment(cls, segment: Segment) -> "N1Segment":
        return cls(entity_identifier=_text(segment, 1), name=_text(segment, 2))


@dataclass(frozen=True)
class ClpSegment:
    claim_id: str
    amount_claimed: Decimal
    amount_paid: Decimal
    patient_responsibility: Decimal

    @classmethod
    def from_segment(cls, segment: Segment) -> "ClpSegment":
        return cls(
            claim_id=_text(segment, 1),
            amount_claimed=_amount(segment, 3),
            amount_paid=_amount(segment, 4),
            patient_responsibility=_amount(segment, 5, default=ZERO),
        )


@dataclass(frozen=True)
class SvcSegment:
    billing_code: str
    billed: Decimal
    paid: Decimal
    units: int

    @classmethod
    def from_segment(cls, segment: Segment) -> "SvcSegment":
        billing_code = segment.component(1, 2).strip()
        if not billing_code:
            raise EdiError("Segment SVC is missing SVC01-2.", details={"segment": segment.raw})
        return cls(
            billing_code=billing_code,
            billed=_amount(segment, 2),
            paid=_amount(segment, 3),
            # An absent unit count means one unit
            units=_integer(segment, 5, default=1),
        )


@dataclass(frozen=True)
class DtmSegment:
    qualifier: str
    date: date

    @classmethod
    def from_segment(cls, segment: Segment) -> "DtmSegment":
        return cls(qualifier=_text(segment, 1), date=_date(segment, 2))


@dataclass(frozen=True)
class CasSegment:
    """Claim adjustment: a group code and up to six (reason, amount) pairs."""

    group_code: str
    adjustments: Tuple[Tuple[str, Decimal], ...] = field(default_factory=tuple)

    @classmethod
    def from_segment(cls, segment: Segment) -> "CasSegment":
        adjustments = []
        # Reason/amount/quantity triplets start at CAS02
        for position in range(2, len(segment), 3):
            reason = _text(segment, position)
            if not reason:
                continue
            adjustments.append((reason, _amount(segment, position + 1)))
        if not adjustments:
            raise EdiError("Segment CAS carries no adjustment.", details={"segment": segment.raw})
        return cls(group_code=_text(segment, 1), adjustments=tuple(adjustments))


@dataclass(frozen=True)
class PlbSegment:
    """Provider level balance: (reason code, raw amount) pairs from PLB03 on."""

    provider_identifier: str
    adjustments: Tuple[Tuple[str, Decimal], ...] = field(default_factory=tuple)

    @classmethod
    def from_segment(cls, segment: Segment) -> "PlbSegment":
        adjustments = []
        for position in range(3, len(segment), 2):
            reason = segment.component(position, 1).strip()
            if not reason:
                continue
            adjustments.append((reason, _amount(segment, position + 1)))
        if not adjustments:
            raise EdiError("Segment PLB carries no adjustment.", details={"segment": segment.raw})
        return cls(provider_identifier=_text(segment, 1), adjustments=tuple(adjustments))


# 837 professional claim

@dataclass(frozen=True)
class BhtSegment:
    billed_date: date

    @classmethod
    def from_segment(cls, segment: Segment) -> "BhtSegment":
        return cls(billed_date=_date(segment, 4))


@dataclass(frozen=True)
class HlSegment:
    id: str
    parent_id: str
    level_code: str

    @classmethod
    def from_segment(cls, segment: Segment) -> "HlSegment":
        return cls(
            id=_text(segment, 1, required=True),
            parent_id=_text(segment, 2),
            level_code=_text(segment, 3),
        )


@dataclass(frozen=True)
class ClmSegment:
    claim_id: str
    billed: Decimal

    @classmethod
    def from_segment(cls, segment: Segment) -> "ClmSegment":
        return cls(claim_id=_text(segment, 1), billed=_amount(segment, 2))


@dataclass(frozen=True)
class Sv1Segment:
    billing_code: str
    billed: Decimal
    units: int

    @classmethod
    def from_segment(cls, segment: Segment) -> "Sv1Segment":
        billing_code = segment.component(1, 2).strip()
        if not billing_code:
            raise EdiError("Segment SV1 is missing SV101-2.", details={"segment": segment.raw})
        return cls(billing_code=billing_code, billed=_amount(segment, 2), units=_integer(segment, 4, default=1))


@dataclass(frozen=True)
class DtpSegment:
    qualifier: str
    date: date

    @classmethod
    def from_segment(cls, segment: Segment) -> "DtpSegment":
        value = _text(segment, 3, required=True)
        # RD8 ranges ("CCYYMMDD-CCYYMMDD") resolve to their first day
        if _text(segment, 2) == "RD8":
            value = value.split("-", 1)[0]
        return cls(qualifier=_text(segment, 1), date=_date(segment, 3, value))
