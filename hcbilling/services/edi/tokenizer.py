"""
X12 segment tokenizer.

Splits raw EDI text into segments (``~``), elements (``*``) and component
elements (``:``). Element positions follow X12 numbering: position 0 is the
segment tag, so ``CLP03`` is ``segment.element(3)``. Component positions are
1-based, so ``SVC01-2`` is ``segment.component(1, 2)``.

Also provides :class:`SegmentReader`, a forward-only cursor that answers ad hoc
lookups such as ``reader.read("BPR02")``.
"""
import re
from typing import Iterable, Iterator, List, Optional, Union

from hcbilling.utils.errors import InvalidQualifierError

SEGMENT_TERMINATOR = "~"
ELEMENT_SEPARATOR = "*"
COMPONENT_SEPARATOR = ":"

UTF8_BOM = b"\xef\xbb\xbf"

QUALIFIER_PATTERN = re.compile(r"^([A-Z0-9]{2,3})(\d{2})(?:-(\d+))?$")
ELEMENT_QUALIFIER_PATTERN = re.compile(r"^(\d{2})(?:-(\d+))?$")


class Segment:
    """
    One tokenized segment.

    Attributes:
        elements: Elements in order, each a list of its components. The tag
            is ``elements[0][0]``.
    """

    __slots__ = ("elements",)

    def __init__(self, elements: List[List[str]]):
        self.elements = elements

    @classmethod
    def parse(cls, raw: str) -> "Segment":
        return cls([element.split(COMPONENT_SEPARATOR) for element in raw.split(ELEMENT_SEPARATOR)])

    @property
    def tag(self) -> str:
        return self.elements[0][0]

    def element(self, position: int, default: str = "") -> str:
        """Return the whole element at ``position``, components re-joined."""
        if position >= len(self.elements):
            return default
        value = COMPONENT_SEPARATOR.join(self.elements[position])
        return value if value != "" else default

    def component(self, position: int, sub: int = 1, default: str = "") -> str:
        """Return component ``sub`` (1-based) of the element at ``position``."""
        if position >= len(self.elements):
            return default
        components = self.elements[position]
        if sub < 1 or sub > len(components):
            return default
        value = components[sub - 1]
        return value if value != "" else default

    def __len__(self) -> int:
        return len(self.elements)

    def __eq__(self, other: object) -> bool:
        return isinstance(other, Segment) and self.elements == other.elements

    def __repr__(self) -> str:
        return f"Segment({self.raw!r})"

    @property
    def raw(self) -> str:
        return ELEMENT_SEPARATOR.join(COMPONENT_SEPARATOR.join(e) for e in self.elements)


def strip_bom(data: Union[str, bytes]) -> Union[str, bytes]:
    """Remove a leading UTF-8 byte-order mark, if any."""
    if isinstance(data, bytes):
        return data[len(UTF8_BOM):] if data.startswith(UTF8_BOM) else data
    return data[1:] if data.startswith("\ufeff") else data


def decode(data: Union[str, bytes]) -> str:
    """Decode raw file bytes, dropping a BOM first."""
    data = strip_bom(data)
    if isinstance(data, bytes):
        data = data.decode("utf-8", errors="replace")
    return data


def iter_segments(data: Union[str, bytes]) -> Iterator[Segment]:
    """Yield segments in file order, skipping blank ones between terminators."""
    for raw in decode(data).split(SEGMENT_TERMINATOR):
        raw = raw.strip()
        if raw:
            yield Segment.parse(raw)


def tokenize(data: Union[str, bytes]) -> List[Segment]:
    """
    Split raw EDI data into segments.

    Args:
        data: File contents as text or bytes (BOM allowed)

    Returns:
        Segments in file order

    Example:
        >>> tokenize("CLP*1*100.00*85.00*15.00~")[0].element(4)
        '85.00'
    """
    return list(iter_segments(data))


class SegmentReader:
    """
    Forward cursor over tokenized segments for ad hoc lookups.

    ``read`` moves the cursor onto the next segment carrying the requested
    tag (the current one included) and returns the requested value. When no
    such segment exists the cursor stays where it was and ``None`` is returned.
    """

    def __init__(self, segments: Iterable[Segment]):
        self._segments = list(segments)
        self._cursor = 0

    @classmethod
    def from_data(cls, data: Union[str, bytes]) -> "SegmentReader":
        return cls(tokenize(data))

    @property
    def position(self) -> int:
        return self._cursor

    @property
    def current(self) -> Optional[Segment]:
        if self._cursor < len(self._segments):
            return self._segments[self._cursor]
        return None

    def read(self, qualifier: str) -> Optional[str]:
        """
        Read ``TAGnn[-m]`` from the next segment with that tag.

        Args:
            qualifier: e.g. ``"BPR02"`` or ``"SVC01-2"``; the component
                defaults to 1

        Returns:
            The value, or None if no later segment carries the tag or the
            segment lacks that element

        Raises:
            InvalidQualifierError: If the qualifier is malformed
        """
        match = QUALIFIER_PATTERN.match(qualifier or "")
        if match is None:
            raise InvalidQualifierError(qualifier)
        tag, position, sub = match.group(1), int(match.group(2)), int(match.group(3) or 1)

        for index in range(self._cursor, len(self._segments)):
            if self._segments[index].tag == tag:
                self._cursor = index
                return self._value(self._segments[index], position, sub)
        return None

    def read_segment(self, tag: str) -> Optional[Segment]:
        """Move onto the next segment with ``tag`` and return it, or None."""
        for index in range(self._cursor, len(self._segments)):
            if self._segments[index].tag == tag:
                self._cursor = index
                return self._segments[index]
        return None

    def read_element(self, qualifier: str) -> Optional[str]:
        """Read ``nn[-m]`` from the segment under the cursor."""
        match = ELEMENT_QUALIFIER_PATTERN.match(qualifier or "")
        if match is None:
            raise InvalidQualifierError(qualifier)
        segment = self.current
        if segment is None:
            return None
        return self._value(segment, int(match.group(1)), int(match.group(2) or 1))

    def next(self) -> Optional[str]:
        """Advance one segment and return its tag, or None past the end."""
        if self._cursor < len(self._segments):
            self._cursor += 1
        segment = self.current
        return segment.tag if segment is not None else None

    @staticmethod
    def _value(segment: Segment, position: int, sub: int) -> Optional[str]:
        if position >= len(segment.elements):
            return None
        components = segment.elements[position]
        if sub < 1 or sub > len(components):
            return None
        return components[sub - 1]
