"""
CSV imports from the practice management system.

Three exports are understood:

- Payers and services: one row per payer/billing code with rates
- Charges: one row per billed charge line
- Appointments: one row per scheduled session

Dates in the exports are ``mm-dd-yyyy``. Every column is read as text and
converted here so amounts never pass through floats.
"""
import io
import re
from dataclasses import dataclass, field
from datetime import date
from pathlib import Path
from typing import Any, BinaryIO, Dict, Iterable, List, Optional, Set, Union

import pandas as pd
from sqlalchemy.orm import Session

from hcbilling.models import Appointment, Charge, Payer, Service
from hcbilling.services.accounting.documents import AccountingDocuments
from hcbilling.services.billing.repositories import AppointmentRepository, ChargeRepository, PayerRepository
from hcbilling.utils.dates import parse_export_date
from hcbilling.utils.decimal_utils import money_mul, parse_financial_amount
from hcbilling.utils.errors import ValidationError
from hcbilling.utils.logger import get_logger

logger = get_logger(__name__)

CsvSource = Union[str, Path, bytes, BinaryIO]

CHARGE_COLUMNS = [
    "Charge Line",
    "Date of Service",
    "Client Name",
    "Billing Code",
    "Billed Amount",
    "Contract Amount",
    "Billed Units",
    "Primary Payer",
    "Primary Billed Date",
]

APPOINTMENT_COLUMNS = [
    "Appointment ID",
    "Payer Name",
    "Appt. Date",
    "Client Name",
    "Completed",
    "Billing Code",
    "Units",
    "Charge",
    "Date Billed",
    "Appointment Status",
]

SERVICE_COLUMNS = [
    "Payer ID",
    "Payer Name",
    "Type",
    "Billing Code",
    "Service Name",
    "Rate",
    "Contract Rate",
    "Unit Size",
]

ACTIVE_STATUS = "Active"

UNIT_SIZE_PATTERN = re.compile(r"^(\d+)\s+Minutes", re.IGNORECASE)


@dataclass
class ImportResult:
    """Counts reported back to the operator after an import."""

    new: int = 0
    modified: int = 0
    deleted: int = 0
    matched: int = 0
    skipped: int = 0

    @property
    def imported(self) -> int:
        return self.new + self.modified

    def as_dict(self) -> Dict[str, int]:
        return {
            "imported": self.imported,
            "new": self.new,
            "modified": self.modified,
            "deleted": self.deleted,
            "matched": self.matched,
            "skipped": self.skipped,
        }


def read_csv(source: CsvSource, required_columns: Iterable[str]) -> pd.DataFrame:
    """
    Load an export as a frame of stripped strings, blanks as ``""``.

    Raises:
        ValidationError: If a required column is missing
    """
    if isinstance(source, bytes):
        source = io.BytesIO(source)
    frame = pd.read_csv(source, dtype=str, keep_default_na=False, encoding="utf-8-sig")
    frame.columns = [str(column).strip() for column in frame.columns]
    frame = frame.apply(lambda column: column.str.strip())

    missing = [column for column in required_columns if column not in frame.columns]
    if missing:
        raise ValidationError("Missing columns: %s" % ", ".join(missing), details={"missing": missing})
    return frame


def _rows(frame: pd.DataFrame) -> List[Dict[str, str]]:
    return frame.to_dict(orient="records")


def _date(row: Dict[str, str], column: str, line: int) -> Optional[date]:
    try:
        return parse_export_date(row.get(column))
    except ValueError:
        raise ValidationError(
            "Line %d: %s must be a date in the format mm-dd-yyyy." % (line, column),
            details={"line": line, "column": column, "value": row.get(column)},
        ) from None


def _amount(row: Dict[str, str], column: str, line: int):
    value = row.get(column, "")
    if not value:
        return None
    amount = parse_financial_amount(value)
    if amount is None:
        raise ValidationError(
            "Line %d: %s must be a number." % (line, column),
            details={"line": line, "column": column, "value": value},
        )
    return amount


def _integer(row: Dict[str, str], column: str, line: int) -> Optional[int]:
    value = row.get(column, "")
    if not value:
        return None
    try:
        return int(value)
    except ValueError:
        raise ValidationError(
            "Line %d: %s must be a whole number." % (line, column),
            details={"line": line, "column": column, "value": value},
        ) from None


def parse_unit_size(value: str) -> int:
    """
    Example:
        >>> parse_unit_size("15 Minutes")
        15
    """
    match = UNIT_SIZE_PATTERN.match(value or "")
    if not match:
        raise ValidationError("Unit Size had an unexpected value of %s" % value)
    return int(match.group(1))


def _payer_and_service(payers: PayerRepository, name: str, billing_code: str, line: int):
    payer = payers.find_one_by_name_and_service(name, billing_code)
    if payer is None:
        raise ValidationError(
            "No payer found",
            details={"line": line, "payer": name, "billing_code": billing_code},
        )
    return payer, payer.get_service(billing_code)


def import_services(db: Session, source: CsvSource) -> ImportResult:
    """
    Create or update payers and their services.

    Optional ``QB Customer ID`` and ``QB Item ID`` columns link the records to
    the accounting system directly.
    """
    frame = read_csv(source, SERVICE_COLUMNS)
    result = ImportResult()
    seen: Dict[str, Payer] = {}

    for line, row in enumerate(_rows(frame), start=2):
        payer = seen.get(row["Payer ID"])
        if payer is None:
            payer = db.get(Payer, row["Payer ID"])
            if payer is None:
                payer = Payer(id=row["Payer ID"])
                db.add(payer)
                result.new += 1
            else:
                result.modified += 1
            seen[row["Payer ID"]] = payer

        payer.name = row["Payer Name"]
        payer.payer_type = row["Type"]
        for column, attribute in (
            ("Address", "address"),
            ("City", "city"),
            ("State", "state"),
            ("Zip", "zip"),
            ("Email", "email"),
            ("Phone", "phone"),
        ):
            setattr(payer, attribute, row.get(column) or None)
        if row.get("QB Customer ID"):
            payer.qb_customer_id = row["QB Customer ID"]

        service = payer.get_service(row["Billing Code"])
        if service is None:
            service = Service(billing_code=row["Billing Code"])
            payer.services.append(service)
        service.name = row["Service Name"]
        service.rate = _amount(row, "Rate", line)
        service.contract_rate = _amount(row, "Contract Rate", line)
        service.unit_size = parse_unit_size(row["Unit Size"])
        if row.get("QB Item ID"):
            service.qb_item_id = row["QB Item ID"]

    db.commit()
    logger.info("Imported payers", payers=len(seen), new=result.new, modified=result.modified)
    return result


def import_charges(db: Session, source: CsvSource) -> ImportResult:
    """
    Insert charges not seen before; existing charge lines are left alone.

    Appointments are matched to the charges afterwards.

    Raises:
        ValidationError: If a row names a payer/billing code pair that does
            not exist, or a value cannot be parsed
    """
    frame = read_csv(source, CHARGE_COLUMNS)
    payers = PayerRepository(db)
    charges = ChargeRepository(db)
    result = ImportResult()
    seen: Set[str] = set()

    for line, row in enumerate(_rows(frame), start=2):
        if row["Charge Line"] in seen or charges.get(row["Charge Line"]) is not None:
            result.skipped += 1
            continue
        seen.add(row["Charge Line"])

        payer, service = _payer_and_service(payers, row["Primary Payer"], row["Billing Code"], line)
        units = _integer(row, "Billed Units", line) or 1
        billed = _amount(row, "Billed Amount", line)
        contract = _amount(row, "Contract Amount", line)
        if contract is None:
            contract = money_mul(service.contract_rate, units)

        db.add(
            Charge(
                charge_line=row["Charge Line"],
                service_date=_date(row, "Date of Service", line),
                client_name=row["Client Name"],
                payer=payer,
                service=service,
                billed_amount=billed,
                contract_amount=contract,
                billed_units=units,
                billed_date=_date(row, "Primary Billed Date", line),
                payer_balance=billed,
            )
        )
        result.new += 1

    db.flush()
    result.matched = AppointmentRepository(db).find_matches()
    db.commit()
    logger.info("Imported charges", **result.as_dict())
    return result


def _is_active(row: Dict[str, str]) -> bool:
    return row["Appointment Status"] == ACTIVE_STATUS and bool(row["Units"]) and bool(row["Charge"])


def import_appointments(db: Session, source: CsvSource) -> ImportResult:
    """
    Upsert active appointments, drop cancelled ones, then match charges.

    A row is skipped unless its status is ``Active`` and it has units and a
    charge. Incomplete appointments that disappeared from the export (for a
    payer, from the export's first date on) are deleted.
    """
    frame = read_csv(source, APPOINTMENT_COLUMNS)
    payers = PayerRepository(db)
    result = ImportResult()
    rows = _rows(frame)
    seen: Dict[str, Appointment] = {}

    for line, row in enumerate(rows, start=2):
        if not _is_active(row):
            result.skipped += 1
            continue

        payer, service = _payer_and_service(payers, row["Payer Name"], row["Billing Code"], line)
        values: Dict[str, Any] = {
            "payer_id": payer.id,
            "service_id": service.id,
            "client_name": row["Client Name"],
            "service_date": _date(row, "Appt. Date", line),
            "units": _integer(row, "Units", line),
            "charge": _amount(row, "Charge", line),
            "billed_date": _date(row, "Date Billed", line),
            "completed": row["Completed"].lower() == "yes",
            "status": row["Appointment Status"],
        }

        appointment = seen.get(row["Appointment ID"]) or db.get(Appointment, row["Appointment ID"])
        if appointment is None:
            appointment = Appointment(id=row["Appointment ID"], **values)
            db.add(appointment)
            seen[appointment.id] = appointment
            result.new += 1
            continue
        seen[appointment.id] = appointment

        changed = False
        for name, value in values.items():
            if getattr(appointment, name) != value:
                setattr(appointment, name, value)
                changed = True
        if changed:
            result.modified += 1

    db.flush()
    result.deleted = delete_inactive(db, rows)
    result.matched = AppointmentRepository(db).find_matches()
    db.commit()
    logger.info("Imported appointments", **result.as_dict())
    return result


def delete_inactive(db: Session, rows: List[Dict[str, str]]) -> int:
    """
    Delete incomplete appointments that are cancelled or no longer exported.

    Returns:
        Number of appointments deleted
    """
    if not rows:
        return 0

    deleted = 0
    ids_by_payer: Dict[str, List[str]] = {}

    for row in rows:
        ids_by_payer.setdefault(row["Payer Name"], []).append(row["Appointment ID"])
        if _is_active(row):
            continue
        appointment = db.get(Appointment, row["Appointment ID"])
        if appointment is not None and not appointment.completed:
            db.delete(appointment)
            deleted += 1

    first_date = parse_export_date(rows[0]["Appt. Date"])
    if first_date is None:
        db.flush()
        return deleted

    for payer_name, ids in ids_by_payer.items():
        stale = (
            db.query(Appointment)
            .join(Payer, Appointment.payer_id == Payer.id)
            .filter(
                Payer.name == payer_name,
                Appointment.id.notin_(ids),
                Appointment.service_date >= first_date,
                Appointment.completed.is_(False),
            )
            .all()
        )
        for appointment in stale:
            db.delete(appointment)
        deleted += len(stale)

    db.flush()
    return deleted


@dataclass
class LinkResult:
    customers: Dict[str, str] = field(default_factory=dict)
    items: Dict[str, str] = field(default_factory=dict)
    unmatched: List[str] = field(default_factory=list)


def link_accounting_records(db: Session, documents: AccountingDocuments) -> LinkResult:
    """
    Attach payers to customers and services to items by name.

    Payers match a customer whose display name equals the payer name and
    services an item with the service's name, ignoring case. Records
    already linked are left alone; the rest are reported as unmatched.
    """
    result = LinkResult()
    customers = {customer["DisplayName"].lower(): customer["Id"] for customer in documents.find_customers()}
    items = {item["Name"].lower(): item["Id"] for item in documents.find_service_items()}

    for payer in db.query(Payer).order_by(Payer.name):
        if payer.qb_customer_id is None:
            customer_id = customers.get(payer.name.lower())
            if customer_id is None:
                result.unmatched.append("Payer %s" % payer.name)
            else:
                payer.qb_customer_id = customer_id
                result.customers[payer.id] = customer_id

        for service in payer.services:
            if service.qb_item_id is not None:
                continue
            item_id = items.get((service.name or "").lower())
            if item_id is None:
                result.unmatched.append("Service %s of %s" % (service.billing_code, payer.name))
            else:
                service.qb_item_id = item_id
                result.items["%s/%s" % (payer.id, service.billing_code)] = item_id

    db.commit()
    logger.info("Linked accounting records", customers=len(result.customers), items=len(result.items), unmatched=len(result.unmatched))
    return result
