"""
EDI 837 (professional claim) reader.

Extracts the claims and service lines a practice submitted so they can be
matched against stored charges. Claims live inside subscriber HL loops,
which are children of billing provider loops:

    HL*1**20  billing provider
    HL*2*1*22 subscriber  -> NM1*IL, NM1*PR, CLM, LX, SV1, DTP*472 ...
"""
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Dict, List, Optional, Union

from hcbilling.services.edi.envelope import (
    TransactionSet,
    check_group_trailer,
    check_interchange_trailer,
    check_transaction_set_trailer,
    parse_interchanges,
)
from hcbilling.services.edi.models import Edi837Charge, Edi837Claim
from hcbilling.services.edi.segments import (
    BhtSegment,
    ClmSegment,
    DtpSegment,
    HlSegment,
    Nm1Segment,
    Sv1Segment,
)
from hcbilling.services.edi.tokenizer import Segment, tokenize
from hcbilling.utils.errors import EdiError
from hcbilling.utils.logger import get_logger

logger = get_logger(__name__)

SERVICE_DATE_QUALIFIER = "472"


@dataclass
class HlLoop:
    header: HlSegment
    segments: List[Segment] = field(default_factory=list)
    children: List["HlLoop"] = field(default_factory=list)


def build_hl_tree(segments: List[Segment]) -> List[HlLoop]:
    """
    Group the segments following each ``HL`` into loops and nest them by HL02.

    Returns:
        Top level loops (no parent) in file order

    Raises:
        EdiError: If an HL names a parent that has not appeared yet
    """
    roots: List[HlLoop] = []
    loops: Dict[str, HlLoop] = {}
    current: Optional[HlLoop] = None

    for segment in segments:
        if segment.tag == "HL":
            current = HlLoop(header=HlSegment.from_segment(segment))
            loops[current.header.id] = current
            if current.header.parent_id:
                parent = loops.get(current.header.parent_id)
                if parent is None:
                    raise EdiError("HL %s refers to unknown parent %s." % (current.header.id, current.header.parent_id))
                parent.children.append(current)
            else:
                roots.append(current)
        elif segment.tag == "SE":
            break
        elif current is not None:
            current.segments.append(segment)

    return roots


class Edi837Reader:
    """
    Reads claims from one 837 file.

    Example:
        >>> claims = Edi837Reader.from_path("var/inbox/claims/0312.txt").process()
        >>> claims[0].charges[0].billing_code
        'H2014'
    """

    def __init__(self, data: Union[bytes, str], filename: str = ""):
        self.filename = filename
        self._segments = tokenize(data)

    @classmethod
    def from_path(cls, path: Union[str, Path]) -> "Edi837Reader":
        path = Path(path)
        return cls(path.read_bytes(), filename=path.name)

    def process(self) -> List[Edi837Claim]:
        """
        Extract every claim in file order.

        Raises:
            EdiError: On envelope mismatches, a non-837 transaction set or a
                service line outside a claim
        """
        claims: List[Edi837Claim] = []

        for interchange in parse_interchanges(self._segments):
            for group in interchange.groups:
                for transaction_set in group.transaction_sets:
                    claims.extend(self._process_transaction_set(transaction_set))
                check_group_trailer(group, len(group.transaction_sets))
            check_interchange_trailer(interchange, check_group_count=True)

        logger.info("Processed 837 file", filename=self.filename, claims=len(claims))
        return claims

    def _process_transaction_set(self, transaction_set: TransactionSet) -> List[Edi837Claim]:
        if transaction_set.header.transaction_set_code != "837":
            raise EdiError("This is not an EDI 837 file.")
        check_transaction_set_trailer(transaction_set)

        billed_date = None
        for segment in transaction_set.segments:
            if segment.tag == "HL":
                break
            if segment.tag == "BHT":
                billed_date = BhtSegment.from_segment(segment).billed_date
        if billed_date is None:
            raise EdiError("Transaction set %s has no BHT segment." % transaction_set.header.control_number)

        claims: List[Edi837Claim] = []
        for provider in build_hl_tree(transaction_set.segments):
            for subscriber in provider.children:
                claims.extend(self._process_subscriber(subscriber, billed_date))
        return claims

    @staticmethod
    def _process_subscriber(subscriber: HlLoop, billed_date: date) -> List[Edi837Claim]:
        claims: List[Edi837Claim] = []
        claim: Optional[Edi837Claim] = None
        charge: Optional[Edi837Charge] = None

        first_name = None
        last_name = None
        payer_id = None

        for segment in subscriber.segments:
            tag = segment.tag

            if tag == "NM1":
                nm1 = Nm1Segment.from_segment(segment)
                if nm1.entity_identifier == "IL":
                    last_name = nm1.last_name
                    first_name = nm1.first_name
                elif nm1.entity_identifier == "PR":
                    payer_id = nm1.identifier

            elif tag == "CLM":
                clm = ClmSegment.from_segment(segment)
                claim = Edi837Claim(
                    claim_id=clm.claim_id,
                    payer_id=payer_id,
                    billed_date=billed_date,
                    client_last_name=last_name,
                    client_first_name=first_name,
                    billed=clm.billed,
                )
                claims.append(claim)
                charge = None

            elif tag == "LX":
                if claim is None:
                    raise EdiError("Segment LX found before any CLM segment.")
                charge = Edi837Charge()
                claim.charges.append(charge)

            elif tag == "SV1":
                if charge is None:
                    raise EdiError("Segment SV1 found outside of a service line.")
                sv1 = Sv1Segment.from_segment(segment)
                charge.billing_code = sv1.billing_code
                charge.billed = sv1.billed
                charge.units = sv1.units

            elif tag == "DTP" and segment.element(1) == SERVICE_DATE_QUALIFIER:
                if charge is None:
                    raise EdiError("Segment DTP*472 found outside of a service line.")
                charge.service_date = DtpSegment.from_segment(segment).date

        return claims


def is_837(data: Union[bytes, str]) -> bool:
    """Cheap check used when picking claim files out of a directory."""
    try:
        return any(
            transaction_set.header.transaction_set_code == "837"
            for interchange in parse_interchanges(tokenize(data))
            for group in interchange.groups
            for transaction_set in group.transaction_sets
        )
    except EdiError:
        return False
