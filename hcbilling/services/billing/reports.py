"""
Read-only reports over appointments and claims.

Each report is a table of display strings (amounts already formatted) plus
a one-line summary, so the CLI and the API render the same thing.
"""
import calendar
import io
from dataclasses import dataclass, field
from datetime import date, timedelta
from decimal import Decimal
from typing import Dict, List, Optional

import pandas as pd
from sqlalchemy.orm import Session

from hcbilling.models import Appointment
from hcbilling.services.billing.repositories import AppointmentRepository, ClaimRepository
from hcbilling.utils.dates import format_short_range
from hcbilling.utils.decimal_utils import ZERO, format_currency, money_add, money_div, money_sum
from hcbilling.utils.errors import ValidationError


@dataclass
class Report:
    title: str
    headers: List[str]
    rows: List[List[str]] = field(default_factory=list)
    message: str = ""
    total: Optional[Decimal] = None

    @property
    def empty(self) -> bool:
        return not self.rows

    def as_dict(self) -> dict:
        return {
            "title": self.title,
            "message": self.message,
            "headers": self.headers,
            "rows": [dict(zip(self.headers, row)) for row in self.rows],
            "total": str(self.total) if self.total is not None else None,
        }

    def to_csv(self) -> str:
        buffer = io.StringIO()
        pd.DataFrame(self.rows, columns=self.headers).to_csv(buffer, index=False)
        return buffer.getvalue()


def _plural(count: int, singular: str, plural: str) -> str:
    return singular % count if count == 1 else plural % count


def _service_name(appointment: Appointment) -> str:
    return appointment.service.name if appointment.service is not None else ""


def unbilled_appointments(db: Session, currency_code: str = "USD") -> Report:
    """Completed appointments that are not on a claim yet, with their total."""
    report = Report("Unbilled Appointments", ["Date", "Service", "Client", "Units", "Rate", "Charge"])
    appointments = AppointmentRepository(db).find_unbilled()
    if not appointments:
        report.message = "There are currently no unbilled appointments."
        report.total = ZERO
        return report

    for appointment in appointments:
        rate = appointment.service.rate if appointment.service is not None else None
        report.rows.append(
            [
                appointment.service_date.isoformat(),
                _service_name(appointment),
                appointment.client_name,
                str(appointment.units),
                format_currency(rate, currency_code) if rate is not None else "",
                format_currency(appointment.charge, currency_code),
            ]
        )

    report.total = money_sum(appointment.charge for appointment in appointments)
    report.message = "%s for a total of %s." % (
        _plural(len(appointments), "There is %d unbilled appointment", "There are %d unbilled appointments"),
        format_currency(report.total, currency_code),
    )
    return report


def incomplete_appointments(db: Session, end_date: date, currency_code: str = "USD") -> Report:
    """Appointments on or before ``end_date`` not marked completed."""
    report = Report("Incomplete Appointments", ["Date", "Service", "Client", "Charge"])
    appointments = AppointmentRepository(db).find_incomplete(end_date)
    if not appointments:
        report.message = "There are currently no incomplete appointments."
        report.total = ZERO
        return report

    for appointment in appointments:
        report.rows.append(
            [
                appointment.service_date.isoformat(),
                _service_name(appointment),
                appointment.client_name,
                format_currency(appointment.charge, currency_code),
            ]
        )

    report.total = money_sum(appointment.charge for appointment in appointments)
    report.message = "As of %s, there were %d incomplete appointments for a total of %s." % (
        end_date.isoformat(),
        len(appointments),
        format_currency(report.total, currency_code),
    )
    return report


def unpaid_claims(db: Session, end_date: Optional[date] = None, currency_code: str = "USD") -> Report:
    """
    Claims awaiting payment, with a Total row.

    Args:
        end_date: Report claims that were unpaid at the end of this day
            instead of those unpaid now
    """
    report = Report("Unpaid Claims", ["Billed Date", "Dates", "Client", "Billed", "Contracted"])
    claims = ClaimRepository(db).find_unpaid(end_date)
    if not claims:
        report.message = "All claims have been paid."
        report.total = ZERO
        return report

    billed_total = ZERO
    contracted_total = ZERO
    for claim in claims:
        billed_total = money_add(billed_total, claim.billed_amount)
        contracted_total = money_add(contracted_total, claim.contract_amount)
        report.rows.append(
            [
                claim.billed_date.isoformat() if claim.billed_date else "",
                format_short_range(claim.start_date, claim.end_date),
                claim.client_name or "",
                format_currency(claim.billed_amount, currency_code),
                format_currency(claim.contract_amount, currency_code),
            ]
        )
    report.rows.append(
        [
            "Total",
            "",
            "",
            format_currency(billed_total, currency_code),
            format_currency(contracted_total, currency_code),
        ]
    )

    report.total = billed_total
    count = _plural(len(claims), "%d unpaid claim", "%d unpaid claims")
    if end_date is None:
        report.message = "There %s %s." % ("is" if len(claims) == 1 else "are", count)
    else:
        report.message = "As of %s, there were %s." % (end_date.isoformat(), count)
    return report


def last_day_of_month(value: date) -> date:
    return value.replace(day=calendar.monthrange(value.year, value.month)[1])


def previous_month_end(today: Optional[date] = None) -> date:
    today = today or date.today()
    return today.replace(day=1) - timedelta(days=1)


def _month_ends(start: date, end: date) -> List[date]:
    months = []
    current = last_day_of_month(start)
    while current <= end:
        months.append(current)
        current = last_day_of_month(current + timedelta(days=1))
    return months


def client_revenue(
    db: Session,
    start_month: Optional[date] = None,
    today: Optional[date] = None,
    currency_code: str = "USD",
) -> Report:
    """
    Revenue per client for each month through the end of last month.

    One column per month that has revenue, then an Average row (per
    client who had revenue that month) and a Total row.

    Args:
        start_month: Any day in the first month to report; defaults to
            last month
        today: Reference date, defaults to today

    Raises:
        ValidationError: If ``start_month`` is after last month
    """
    end = previous_month_end(today)
    start = last_day_of_month(start_month) if start_month else end
    if start > end:
        raise ValidationError(
            "Start month cannot be later than %s." % end.strftime("%B, %Y"),
            details={"start_month": start.isoformat()},
        )

    appointments = AppointmentRepository(db)
    months: Dict[str, Dict[str, Decimal]] = {}
    for month_end in _month_ends(start, end):
        revenue = appointments.client_revenue(month_end.replace(day=1), month_end)
        if revenue:
            months[month_end.strftime("%b %Y")] = revenue

    labels = list(months)
    headers = ["Client", "Revenue"] if len(labels) == 1 else ["Client"] + labels
    report = Report("Client Revenue", headers)
    if not months:
        report.message = "There are currently no clients to display."
        report.total = ZERO
        return report

    clients = sorted({client for revenue in months.values() for client in revenue})
    for client in clients:
        report.rows.append(
            [client]
            + [
                format_currency(months[label][client], currency_code) if client in months[label] else ""
                for label in labels
            ]
        )

    totals = [money_sum(months[label].values()) for label in labels]
    report.rows.append(
        ["Average"]
        + [format_currency(money_div(total, len(months[label])), currency_code) for total, label in zip(totals, labels)]
    )
    report.rows.append(["Total"] + [format_currency(total, currency_code) for total in totals])
    report.total = money_sum(totals)
    report.message = "Revenue from %s through %s." % (labels[0], labels[-1])
    return report
