"""
Interchange / functional group / transaction set envelopes.

``parse_interchanges`` partitions a flat segment list into the nested
ISA/GS/ST structure. It checks nesting only; the control number and count
checks are applied by the readers through the ``check_*`` helpers once a
scope has been processed, so a reader reports the count it actually handled.
"""
from dataclasses import dataclass, field
from typing import List, Optional

from hcbilling.services.edi.segments import (
    GeSegment,
    GsSegment,
    IeaSegment,
    IsaSegment,
    SeSegment,
    StSegment,
)
from hcbilling.services.edi.tokenizer import Segment
from hcbilling.utils.errors import EdiError


@dataclass
class TransactionSet:
    """``ST`` header plus every following segment up to and including ``SE``."""

    header: StSegment
    segments: List[Segment] = field(default_factory=list)
    trailer: Optional[SeSegment] = None


@dataclass
class FunctionalGroup:
    header: GsSegment
    transaction_sets: List[TransactionSet] = field(default_factory=list)
    trailer: Optional[GeSegment] = None


@dataclass
class Interchange:
    header: IsaSegment
    groups: List[FunctionalGroup] = field(default_factory=list)
    trailer: Optional[IeaSegment] = None


def parse_interchanges(segments: List[Segment]) -> List[Interchange]:
    """
    Nest segments into interchanges.

    Raises:
        EdiError: If a header or trailer appears out of order, a segment sits
            outside any transaction set, or an envelope is never closed
    """
    interchanges: List[Interchange] = []
    interchange: Optional[Interchange] = None
    group: Optional[FunctionalGroup] = None
    transaction_set: Optional[TransactionSet] = None

    for segment in segments:
        tag = segment.tag

        if tag == "ISA":
            if interchange is not None:
                raise EdiError("Interchange %s is not closed by an IEA segment." % interchange.header.control_number)
            interchange = Interchange(header=IsaSegment.from_segment(segment))
            interchanges.append(interchange)
        elif tag == "GS":
            if interchange is None or group is not None:
                raise EdiError("Unexpected GS segment.")
            group = FunctionalGroup(header=GsSegment.from_segment(segment))
            interchange.groups.append(group)
        elif tag == "ST":
            if group is None or transaction_set is not None:
                raise EdiError("Unexpected ST segment.")
            transaction_set = TransactionSet(header=StSegment.from_segment(segment))
            group.transaction_sets.append(transaction_set)
        elif tag == "SE":
            if transaction_set is None:
                raise EdiError("Unexpected SE segment.")
            transaction_set.segments.append(segment)
            transaction_set.trailer = SeSegment.from_segment(segment)
            transaction_set = None
        elif tag == "GE":
            if group is None or transaction_set is not None:
                raise EdiError("Unexpected GE segment.")
            group.trailer = GeSegment.from_segment(segment)
            group = None
        elif tag == "IEA":
            if interchange is None or group is not None:
                raise EdiError("Unexpected IEA segment.")
            interchange.trailer = IeaSegment.from_segment(segment)
            interchange = None
        else:
            if transaction_set is None:
                raise EdiError("Segment %s appears outside of a transaction set." % tag)
            transaction_set.segments.append(segment)

    if transaction_set is not None:
        raise EdiError("Transaction set %s is not closed by an SE segment." % transaction_set.header.control_number)
    if group is not None:
        raise EdiError("Functional group %s is not closed by a GE segment." % group.header.control_number)
    if interchange is not None:
        raise EdiError("Interchange %s is not closed by an IEA segment." % interchange.header.control_number)

    return interchanges


def check_transaction_set_trailer(transaction_set: TransactionSet) -> None:
    if transaction_set.trailer is None or transaction_set.trailer.control_number != transaction_set.header.control_number:
        raise EdiError("The transaction set control numbers do not match.")


def check_group_trailer(group: FunctionalGroup, processed: int) -> None:
    """Compare GE01 with the sets processed and GE02 with GS06."""
    if group.trailer.transaction_set_count != processed:
        raise EdiError(
            "The number of transaction sets do not match.",
            details={"declared": group.trailer.transaction_set_count, "processed": processed},
        )
    if group.trailer.control_number != group.header.control_number:
        raise EdiError("The group control numbers do not match.")


def check_interchange_trailer(interchange: Interchange, check_group_count: bool = False) -> None:
    """Compare IEA02 with ISA13 and, optionally, IEA01 with the groups present."""
    if check_group_count and interchange.trailer.group_count != len(interchange.groups):
        raise EdiError(
            "The number of functional groups do not match.",
            details={"declared": interchange.trailer.group_count, "processed": len(interchange.groups)},
        )
    if interchange.trailer.control_number != interchange.header.control_number:
        raise EdiError("The interchange control numbers do not match.")
