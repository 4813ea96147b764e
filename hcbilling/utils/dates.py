"""Date helpers for EDI and operator input."""
from datetime import date, datetime
from typing import Optional


def parse_edi_date(value: str) -> date:
    """
    Parse a fixed-width ``CCYYMMDD`` EDI date.

    Raises:
        ValueError: If the value is not eight digits or not a real date
    """
    value = (value or "").strip()
    if len(value) != 8 or not value.isdigit():
        raise ValueError(f"Invalid EDI date: {value!r}")
    return date(int(value[0:4]), int(value[4:6]), int(value[6:8]))


def parse_us_date(value: str) -> date:
    """Parse an ``mm/dd/yyyy`` date as typed by an operator or found in CSV exports."""
    return datetime.strptime(value.strip(), "%m/%d/%Y").date()


def first_day_of_month(value: date) -> date:
    return value.replace(day=1)


def format_short_range(start: Optional[date], end: Optional[date]) -> str:
    """Render a service date range as ``n/j-n/j`` (e.g. ``3/4-3/18``)."""
    if start is None or end is None:
        return ""
    return f"{start.month}/{start.day}-{end.month}/{end.day}"


def parse_export_date(value: Optional[str]) -> Optional[date]:
    """Parse an ``mm-dd-yyyy`` date from a practice management CSV export; blank is None."""
    value = (value or "").strip()
    if not value:
        return None
    return datetime.strptime(value, "%m-%d-%Y").date()
