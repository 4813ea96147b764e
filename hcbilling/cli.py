#!/usr/bin/env python3
"""
Command line for the billing workflows.

Examples:
    hcbilling import services payers.csv
    hcbilling claims                      # next 837 in the claims inbox
    hcbilling payments remit.zip
    hcbilling payments remit.zip --restore
    hcbilling manual-payment
    hcbilling journal-entries --start 1045
    hcbilling report unpaid --end-date 2024-03-31
"""
import argparse
import sys
from contextlib import contextmanager
from datetime import date
from pathlib import Path
from typing import Callable, Dict, Iterator, List, Optional, Sequence

from hcbilling.config.database import SessionLocal, init_db
from hcbilling.config.settings import get_accounting_settings, get_billing_settings
from hcbilling.core.setup import setup_application
from hcbilling.models.enums import ProviderAdjustmentType
from hcbilling.services.accounting.documents import AccountingDocuments
from hcbilling.services.accounting.quickbooks import QuickBooksAdapter
from hcbilling.services.billing import importers, reports
from hcbilling.services.billing.claim_service import ClaimCreationService
from hcbilling.services.billing.journal_entries import JournalEntryService
from hcbilling.services.billing.payment_service import (
    ManualClaimPayment,
    ManualLineItem,
    ManualPayment,
    ManualPaymentService,
    PaymentCreationService,
    restore_charges,
    restore_file,
    validate_amount,
    validate_date,
    validate_required,
)
from hcbilling.services.billing.reconciliation import ReconciliationService
from hcbilling.services.edi.models import ProviderAdjustment
from hcbilling.utils.errors import AppError, ValidationError
from hcbilling.utils.logger import get_logger

logger = get_logger(__name__)


def confirm(prompt: str) -> bool:
    return input("%s [y/N] " % prompt).strip().lower() in ("y", "yes")


def notify(message: str) -> None:
    print(message)


def ask(prompt: str, validate: Callable, default: Optional[str] = None):
    """Prompt until ``validate`` accepts the answer."""
    suffix = " [%s]" % default if default is not None else ""
    while True:
        answer = input("%s%s: " % (prompt, suffix)).strip()
        if not answer and default is not None:
            answer = default
        try:
            return validate(answer)
        except ValidationError as e:
            print(e.message)


def print_table(headers: Sequence[str], rows: Sequence[Sequence[str]]) -> None:
    widths = [len(header) for header in headers]
    for row in rows:
        widths = [max(width, len(str(cell))) for width, cell in zip(widths, row)]
    line = "  ".join("-" * width for width in widths)
    print("  ".join(header.ljust(width) for header, width in zip(headers, widths)))
    print(line)
    for row in rows:
        print("  ".join(str(cell).ljust(width) for cell, width in zip(row, widths)))


def print_report(report: reports.Report) -> None:
    print(report.title)
    print()
    print(report.message)
    if report.rows:
        print()
        print_table(report.headers, report.rows)


def print_dict_rows(rows: List[Dict[str, str]]) -> None:
    if rows:
        print_table(list(rows[0]), [list(row.values()) for row in rows])


@contextmanager
def accounting() -> Iterator[AccountingDocuments]:
    with QuickBooksAdapter.from_settings() as adapter:
        yield AccountingDocuments(adapter, get_accounting_settings())


def cmd_claims(db, args) -> int:
    settings = get_billing_settings()
    with accounting() as documents:
        service = ClaimCreationService(db, documents, settings=settings, confirm=confirm, notify=notify)
        if args.path is None:
            result = service.process_directory(settings.claims_inbox_dir, move=not args.no_move)
        else:
            result = service.process_file(args.path, move=not args.no_move)
    if result.moved_to:
        print("Moved file to %s" % result.moved_to)
    return 0


def cmd_payments(db, args) -> int:
    settings = get_billing_settings()
    if args.restore:
        restored = restore_file(db, args.path, settings.currency_code)
        print("Restored payments: %s" % (", ".join(restored) or "none"))
        return 0

    with accounting() as documents:
        reconciliation = ReconciliationService(db, documents, settings.currency_code, notify=notify)
        service = PaymentCreationService(
            db, reconciliation, settings=settings, confirm=confirm, notify=notify, review=print_dict_rows
        )
        result = service.process_file(args.path, move=not args.no_move)

    for outcome in result.payments:
        if outcome.status == "failed":
            print("Payment %s failed: %s" % (outcome.payment_ref, outcome.message))
    if result.moved_to:
        print("Moved file to %s" % result.moved_to)
    return 1 if result.has_errors else 0


def cmd_restore(db, args) -> int:
    charges = restore_charges(db, args.payment_ref)
    print("Restored %d charges." % len(charges))
    return 0


def _ask_line_item() -> ManualLineItem:
    service_date = ask("Service date (mm/dd/yyyy)", validate_date)
    billing_code = ask("Billing code", validate_required)
    billed = ask("Billed amount", validate_amount)
    paid = ask("Paid amount", validate_amount)
    contractual = ask("Contractual adjustment (blank for contracted)", _optional_amount, default="")
    coinsurance = ask("Coinsurance", validate_amount, default="0.00")
    return ManualLineItem(service_date, billing_code, billed, paid, contractual, coinsurance)


def _optional_amount(value: str):
    return validate_amount(value) if value else None


def _ask_provider_adjustment() -> ProviderAdjustment:
    choices = {str(index): kind for index, kind in enumerate(ProviderAdjustmentType, start=1)}
    for key, kind in choices.items():
        print("  [%s] %s" % (key, kind.label))

    def validate_choice(value: str) -> ProviderAdjustmentType:
        if value not in choices:
            raise ValidationError("Choose one of %s." % ", ".join(choices))
        return choices[value]

    kind = ask("Adjustment type", validate_choice)
    amount = ask("Adjustment amount", validate_amount)
    return ProviderAdjustment(type=kind, amount=amount)


def cmd_manual_payment(db, args) -> int:
    manual = ManualPayment(
        payment_ref=ask("Payment reference", validate_required),
        payment_date=ask("Payment date (mm/dd/yyyy)", validate_date),
        amount=ask("Payment amount", validate_amount),
    )
    while True:
        claim = ManualClaimPayment(ask("Billing ID", validate_required))
        claim.line_items.append(_ask_line_item())
        while confirm("Another line item for this claim?"):
            claim.line_items.append(_ask_line_item())
        manual.claims.append(claim)
        if not confirm("Another claim?"):
            break
    while confirm("Is there a provider level adjustment?"):
        manual.provider_adjustments.append(_ask_provider_adjustment())

    settings = get_billing_settings()
    with accounting() as documents:
        reconciliation = ReconciliationService(db, documents, settings.currency_code, notify=notify)
        service = ManualPaymentService(
            db, reconciliation, settings=settings, confirm=confirm, notify=notify, review=print_dict_rows
        )
        service.process(manual)
    return 0


def cmd_journal_entries(db, args) -> int:
    settings = get_billing_settings()
    with accounting() as documents:
        service = JournalEntryService(db, documents, settings.currency_code, notify=notify)
        start = args.start or service.default_starting_doc_number()
        run = service.generate_unbilled_entries(start)
    print("Created %d journal entries." % run.count)
    return 0


def cmd_reconcile(db, args) -> int:
    settings = get_billing_settings()
    with accounting() as documents:
        result = JournalEntryService(db, documents, settings.currency_code).reconcile_unbilled(
            args.start_date, args.end_date
        )
    if result.start_balance is not None:
        print("Starting balance: %s" % result.start_balance)
    print("Ending balance: %s" % result.end_balance)
    if result.reconciled:
        print("All journal entries match their appointments.")
        return 0
    print_dict_rows(result.mismatches)
    return 1


def cmd_import(db, args) -> int:
    handlers = {
        "services": importers.import_services,
        "charges": importers.import_charges,
        "appointments": importers.import_appointments,
    }
    result = handlers[args.kind](db, Path(args.path))
    for key, value in result.as_dict().items():
        print("%s: %d" % (key.capitalize(), value))
    return 0


def cmd_link(db, args) -> int:
    with accounting() as documents:
        result = importers.link_accounting_records(db, documents)
    print("Linked %d customers and %d items." % (len(result.customers), len(result.items)))
    for name in result.unmatched:
        print("No match for %s" % name)
    return 0


def cmd_report(db, args) -> int:
    currency = get_billing_settings().currency_code
    if args.kind == "unbilled":
        report = reports.unbilled_appointments(db, currency)
    elif args.kind == "incomplete":
        report = reports.incomplete_appointments(db, args.end_date or date.today(), currency)
    elif args.kind == "unpaid":
        report = reports.unpaid_claims(db, args.end_date, currency)
    else:
        report = reports.client_revenue(db, args.start_month, currency_code=currency)
    print_report(report)
    if args.export:
        Path(args.export).write_text(report.to_csv())
        print("Exported to %s" % args.export)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="hcbilling", description="Healthcare billing reconciliation")
    subparsers = parser.add_subparsers(dest="command", required=True)

    claims = subparsers.add_parser("claims", help="Create claims from an 837 file")
    claims.add_argument("path", nargs="?", help="837 file; defaults to the next file in the claims inbox")
    claims.add_argument("--no-move", action="store_true", help="Leave the file in place")
    claims.set_defaults(handler=cmd_claims)

    payments = subparsers.add_parser("payments", help="Apply payments from an 835 file")
    payments.add_argument("path", help="835 file or zip archive")
    payments.add_argument("--restore", action="store_true", help="Undo half applied payments of the file")
    payments.add_argument("--no-move", action="store_true", help="Leave the file in place")
    payments.set_defaults(handler=cmd_payments)

    restore = subparsers.add_parser("restore", help="Clear a payment that was applied but never recorded")
    restore.add_argument("payment_ref")
    restore.set_defaults(handler=cmd_restore)

    manual = subparsers.add_parser("manual-payment", help="Enter a paper payment")
    manual.set_defaults(handler=cmd_manual_payment)

    journal = subparsers.add_parser("journal-entries", help="Accrue revenue for unbilled appointments")
    journal.add_argument("--start", help="First journal entry number")
    journal.set_defaults(handler=cmd_journal_entries)

    reconcile = subparsers.add_parser("reconcile-unbilled", help="Check accrued revenue journal entries")
    reconcile.add_argument("--start-date", type=date.fromisoformat)
    reconcile.add_argument("--end-date", type=date.fromisoformat)
    reconcile.set_defaults(handler=cmd_reconcile)

    imports = subparsers.add_parser("import", help="Import a practice management export")
    imports.add_argument("kind", choices=["services", "charges", "appointments"])
    imports.add_argument("path")
    imports.set_defaults(handler=cmd_import)

    link = subparsers.add_parser("link-accounting", help="Link payers and services to accounting records")
    link.set_defaults(handler=cmd_link)

    report = subparsers.add_parser("report", help="Print a report")
    report.add_argument("kind", choices=["unbilled", "incomplete", "unpaid", "client-revenue"])
    report.add_argument("--end-date", type=date.fromisoformat)
    report.add_argument("--start-month", type=date.fromisoformat)
    report.add_argument("--export", help="Also write the report as CSV")
    report.set_defaults(handler=cmd_report)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_application(log_format="console")
    init_db()

    db = SessionLocal()
    try:
        return args.handler(db, args)
    except AppError as e:
        logger.error("Command failed", command=args.command, error=e.message, code=e.code)
        print("Error: %s" % e.message, file=sys.stderr)
        return 1
    finally:
        db.close()


if __name__ == "__main__":
    sys.exit(main())
