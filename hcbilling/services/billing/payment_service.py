"""
Payment creation from 835 remittances and from manually entered checks.

Remittance lines are applied to the stored charges first. Only when every
touched claim is fully paid are the claims reconciled against the accounting
system and the payment recorded there. Any failure puts the charges back the
way they were.
"""
import shutil
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Sequence, Tuple, Union

from sqlalchemy.orm import Session

from hcbilling.config.settings import BillingSettings, get_billing_settings
from hcbilling.models import Charge, Claim
from hcbilling.services.billing.reconciliation import ReconciliationService
from hcbilling.services.billing.repositories import (
    ChargeRepository,
    ClaimRepository,
    PayerRepository,
    PaymentRepository,
)
from hcbilling.services.edi.models import Edi835ChargePayment, Edi835ClaimPayment, Edi835Payment, ProviderAdjustment
from hcbilling.services.edi.reader_835 import Edi835Reader
from hcbilling.utils.dates import format_short_range, parse_us_date
from hcbilling.utils.decimal_utils import (
    ZERO,
    format_currency,
    money_add,
    money_compare,
    money_sub,
    money_sum,
    parse_financial_amount,
)
from hcbilling.utils.errors import AppError, NotFoundError, PaymentCreationError, ValidationError
from hcbilling.utils.logger import get_logger, log_context

logger = get_logger(__name__)

PAID_CLAIMS_HEADERS = ("Billing ID", "Billed Date", "Dates", "Client", "Paid")


# -- operator input validation -------------------------------------------------


def validate_required(value: Optional[str]) -> str:
    if value is None or not str(value).strip():
        raise ValidationError("A value is required.")
    return str(value).strip()


def validate_amount(value: Union[str, Decimal, int, None]) -> Decimal:
    """
    Example:
        >>> validate_amount("12.5")
        Decimal('12.50')
    """
    validate_required(None if value is None else str(value))
    amount = parse_financial_amount(value)
    if amount is None:
        raise ValidationError("Value must be a number.", details={"value": str(value)})
    return amount


def validate_date(value: Optional[str]) -> date:
    try:
        return parse_us_date(value or "")
    except ValueError:
        raise ValidationError("Date must be in the format: mm/dd/yyyy.", details={"value": value}) from None


# -- shared helpers -------------------------------------------------------------


def validate_charge_adjustments(
    charge: Charge,
    contractual_adjustment: Decimal,
    coinsurance: Optional[Decimal] = None,
    billed: Optional[Decimal] = None,
    paid: Optional[Decimal] = None,
    currency_code: str = "USD",
) -> None:
    """
    Check the adjustments reported for one charge.

    The contractual adjustment must be exactly billed minus contracted. When
    ``billed`` and ``paid`` are given, the adjustments must also explain the
    whole difference between them.

    Raises:
        PaymentCreationError: If either check fails
    """
    expected = charge.contractual_adjustment
    if money_compare(contractual_adjustment, expected) != 0:
        raise PaymentCreationError(
            "This line includes a contractual adjustment of %s, but %s was expected."
            % (format_currency(contractual_adjustment, currency_code), format_currency(expected, currency_code)),
            details={"charge_line": charge.charge_line},
        )

    if billed is None or paid is None:
        return

    total = money_sub(billed, contractual_adjustment)
    if coinsurance is not None:
        total = money_sub(total, coinsurance)

    if money_compare(total, paid) != 0:
        raise PaymentCreationError(
            "Adjustments add up to %s, but %s was expected."
            % (
                format_currency(money_sub(billed, total), currency_code),
                format_currency(money_sub(billed, paid), currency_code),
            ),
            details={"charge_line": charge.charge_line},
        )


def single_charge(charges: Sequence[Charge]) -> Charge:
    if not charges:
        raise PaymentCreationError("No charges match this line item.")
    if len(charges) > 1:
        raise PaymentCreationError(
            "Multiple charges matched. Unable to continue.",
            details={"charges": [charge.charge_line for charge in charges]},
        )
    return charges[0]


def paid_claims_table(
    claims: Sequence[Claim],
    provider_adjustments: Sequence[ProviderAdjustment] = (),
    currency_code: str = "USD",
) -> List[Dict[str, str]]:
    """
    Rows summarizing what a payment pays, ending with a Total row.

    Keys follow ``PAID_CLAIMS_HEADERS``.
    """
    rows = []
    for claim in claims:
        rows.append(
            {
                "Billing ID": claim.billing_id,
                "Billed Date": claim.billed_date.isoformat() if claim.billed_date else "",
                "Dates": format_short_range(claim.start_date, claim.end_date),
                "Client": claim.client_name or "",
                "Paid": format_currency(claim.paid_amount, currency_code),
            }
        )
    for adjustment in provider_adjustments:
        rows.append(
            {
                "Billing ID": adjustment.type.label,
                "Billed Date": "",
                "Dates": "",
                "Client": "",
                "Paid": format_currency(adjustment.amount, currency_code),
            }
        )

    total = money_add(
        money_sum(claim.paid_amount for claim in claims),
        money_sum(adjustment.amount for adjustment in provider_adjustments),
    )
    rows.append({"Billing ID": "Total", "Billed Date": "", "Dates": "", "Client": "", "Paid": format_currency(total, currency_code)})
    return rows


@dataclass
class PaymentOutcome:
    """What happened to one payment. ``status`` is processed, skipped, declined or failed."""

    payment_ref: str
    status: str
    message: str = ""
    rows: List[Dict[str, str]] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {"payment_ref": self.payment_ref, "status": self.status, "message": self.message, "rows": self.rows}


@dataclass
class PaymentBatchResult:
    payments: List[PaymentOutcome] = field(default_factory=list)
    messages: List[str] = field(default_factory=list)
    moved_to: Optional[Path] = None

    @property
    def has_errors(self) -> bool:
        return any(outcome.status == "failed" for outcome in self.payments)

    @property
    def all_processed(self) -> bool:
        return all(outcome.status in ("processed", "skipped") for outcome in self.payments)


class _ChargeLedger:
    """Remembers charges as they were before a payment touched them."""

    def __init__(self, db: Session):
        self.db = db
        self._snapshots: List[Tuple[Charge, Dict[str, Any]]] = []

    def apply(self, charge: Charge, payment_date: date, paid: Decimal, payment_ref: str, coinsurance: Decimal) -> None:
        self._snapshots.append((charge, charge.payment_snapshot()))
        charge.apply_payment(payment_date, paid, payment_ref, coinsurance)
        self.db.flush()

    def restore(self) -> None:
        for charge, snapshot in reversed(self._snapshots):
            charge.restore_payment(snapshot)
        self._snapshots = []
        self.db.commit()
        logger.info("Restored charges after failed payment")


class _PaymentServiceBase:
    def __init__(
        self,
        db: Session,
        reconciliation: ReconciliationService,
        settings: Optional[BillingSettings] = None,
        confirm: Optional[Callable[[str], bool]] = None,
        notify: Optional[Callable[[str], None]] = None,
        review: Optional[Callable[[List[Dict[str, str]]], None]] = None,
    ):
        self.db = db
        self.reconciliation = reconciliation
        self.review = review or (lambda rows: None)
        self.settings = settings or get_billing_settings()
        self.confirm = confirm or (lambda prompt: True)
        self.notify = notify or (lambda message: None)
        self.charges = ChargeRepository(db)
        self.claims = ClaimRepository(db)
        self.payments = PaymentRepository(db)
        self.payers = PayerRepository(db)
        self._messages: List[str] = []

    def _money(self, amount) -> str:
        return format_currency(amount, self.settings.currency_code)

    def _say(self, message: str) -> None:
        logger.info(message)
        self._messages.append(message)
        self.notify(message)


class PaymentCreationService(_PaymentServiceBase):
    """
    Applies 835 remittances.

    Args:
        db: Database session
        reconciliation: Service that verifies claims and records the payment
        settings: Billing settings (processed directory, currency)
        confirm: Asked before a payment is applied and again before it is
            recorded; returning False leaves the charges untouched
        notify: Receives progress messages meant for the operator
        review: Shown the paid claims table before the final confirmation
    """

    def process_file(self, path: Union[str, Path], move: bool = True) -> PaymentBatchResult:
        path = Path(path)
        reader = Edi835Reader.from_path(path, currency_code=self.settings.currency_code)
        result = self.process_payments(reader.process())
        if move and result.payments and result.all_processed:
            result.moved_to = self.move_processed(path)
        return result

    def process_data(self, data: bytes, filename: str = "") -> PaymentBatchResult:
        reader = Edi835Reader(data, filename=filename, currency_code=self.settings.currency_code)
        return self.process_payments(reader.process())

    def process_payments(self, payments: Sequence[Edi835Payment]) -> PaymentBatchResult:
        """Apply each payment in turn; a failed payment does not stop the rest."""
        self._messages = []
        result = PaymentBatchResult(messages=self._messages)

        for index, payment in enumerate(payments, start=1):
            self._say("Processing Payment %d of %d" % (index, len(payments)))
            with log_context(payment_ref=payment.payment_ref):
                try:
                    outcome = self.process_payment(payment)
                except AppError as e:
                    logger.error("Payment failed", error=e.message)
                    outcome = PaymentOutcome(payment.payment_ref, "failed", e.message)
            result.payments.append(outcome)

        return result

    def process_payment(self, payment: Edi835Payment) -> PaymentOutcome:
        """
        Apply one remittance and record it in the accounting system.

        Raises:
            PaymentCreationError: If a line cannot be matched, a claim is not
                fully paid, or reconciliation fails; charges are restored first
        """
        if self.payments.get(payment.payment_ref) is not None:
            message = "Payment %s has already been processed." % payment.payment_ref
            self._say(message)
            return PaymentOutcome(payment.payment_ref, "skipped", message)

        payer = None
        if not payment.claims:
            # Interest or fee only remittance
            if not payment.provider_adjustments:
                raise PaymentCreationError("Payment %s has no claims to apply." % payment.payment_ref)
            payer = self.payers.find_one_by_name(payment.payer)
            if payer is None:
                raise PaymentCreationError(
                    "Payment %s has no claims and no payer named %s was found." % (payment.payment_ref, payment.payer)
                )

        prompt = "Did you receive a payment from %s for %s on %s?" % (
            payment.payer,
            self._money(payment.payment),
            payment.payment_date.isoformat(),
        )
        if not self.confirm(prompt):
            return PaymentOutcome(payment.payment_ref, "declined")

        ledger = _ChargeLedger(self.db)
        claims: List[Claim] = []
        unfinished: List[str] = []

        try:
            for claim_payment in payment.claims:
                claim = self._apply_claim(ledger, payment.payment_ref, payment.payment_date, claim_payment)
                if money_compare(claim.balance, ZERO) == 0:
                    if claim not in claims:
                        claims.append(claim)
                    if claim.billing_id in unfinished:
                        unfinished.remove(claim.billing_id)
                elif claim.billing_id not in unfinished:
                    unfinished.append(claim.billing_id)
        except Exception:
            ledger.restore()
            raise

        if unfinished:
            ledger.restore()
            raise PaymentCreationError(
                "The following claims have remaining balances after the payment is applied: %s"
                % ", ".join(unfinished),
                details={"claims": unfinished},
            )

        rows = paid_claims_table(claims, payment.provider_adjustments, self.settings.currency_code)
        self.review(rows)
        if not self.confirm("Continue?"):
            ledger.restore()
            return PaymentOutcome(payment.payment_ref, "declined", rows=rows)

        try:
            self.reconciliation.sync(
                payment.payment_ref, payment.payment_date, claims, payment.provider_adjustments, payer=payer
            )
            self.db.commit()
        except Exception:
            ledger.restore()
            raise

        message = "Payment %s has been processed successfully." % payment.payment_ref
        self._say(message)
        return PaymentOutcome(payment.payment_ref, "processed", message, rows)

    def _apply_claim(
        self,
        ledger: _ChargeLedger,
        payment_ref: str,
        payment_date: date,
        claim_payment: Edi835ClaimPayment,
    ) -> Claim:
        charges = [
            self._apply_charge(ledger, payment_ref, payment_date, claim_payment, charge_payment)
            for charge_payment in claim_payment.charges
        ]

        claim = self.claims.find_one_by_charges(charges)
        if claim is None:
            raise PaymentCreationError(
                "No claim found for the matched charges.",
                details={"charges": [charge.charge_line for charge in charges]},
            )
        if claim.billing_id is None:
            raise PaymentCreationError(
                "The claim billed on %s for %s, for client %s, with charges from %s to %s, does not have a billing ID."
                % (
                    claim.billed_date,
                    self._money(claim.billed_amount),
                    claim.client_name,
                    claim.start_date,
                    claim.end_date,
                )
            )
        return claim

    def _apply_charge(
        self,
        ledger: _ChargeLedger,
        payment_ref: str,
        payment_date: date,
        claim_payment: Edi835ClaimPayment,
        charge_payment: Edi835ChargePayment,
    ) -> Charge:
        charge = single_charge(
            self.charges.find_by_svc_data(
                billing_code=charge_payment.billing_code,
                billed_amount=charge_payment.billed,
                units=charge_payment.units,
                service_date=charge_payment.service_date,
                last_name=claim_payment.client_last_name,
                first_name=claim_payment.client_first_name,
            )
        )
        validate_charge_adjustments(
            charge, charge_payment.contractual_adjustment, currency_code=self.settings.currency_code
        )
        ledger.apply(charge, payment_date, charge_payment.paid, payment_ref, charge_payment.coinsurance)
        return charge

    def move_processed(self, path: Path) -> Path:
        target_dir = Path(self.settings.processed_payments_dir)
        target_dir.mkdir(parents=True, exist_ok=True)
        target = target_dir / path.name
        shutil.move(str(path), str(target))
        logger.info("Moved processed payment file", source=str(path), target=str(target))
        return target


def restore_charges(db: Session, payment_ref: str) -> List[Charge]:
    """
    Clear payment information applied to charges under ``payment_ref``.

    Raises:
        NotFoundError: If no charge carries the reference
        PaymentCreationError: If the payment was already recorded in the
            accounting system
    """
    if PaymentRepository(db).get(payment_ref) is not None:
        raise PaymentCreationError(
            "Payment %s has already been recorded and cannot be restored." % payment_ref
        )
    charges = ChargeRepository(db).find_by_payment_ref(payment_ref)
    if not charges:
        raise NotFoundError("Charges for payment", payment_ref)

    for charge in charges:
        charge.clear_payment()
    db.commit()
    logger.info("Restored charges", payment_ref=payment_ref, charges=len(charges))
    return charges


@dataclass
class ManualLineItem:
    """One paid service line as read off a paper remittance."""

    service_date: date
    billing_code: str
    billed: Decimal
    paid: Decimal
    contractual_adjustment: Optional[Decimal] = None
    coinsurance: Decimal = ZERO


@dataclass
class ManualClaimPayment:
    billing_id: str
    line_items: List[ManualLineItem] = field(default_factory=list)


@dataclass
class ManualPayment:
    payment_ref: str
    payment_date: date
    amount: Decimal
    claims: List[ManualClaimPayment] = field(default_factory=list)
    provider_adjustments: List[ProviderAdjustment] = field(default_factory=list)


class ManualPaymentService(_PaymentServiceBase):
    """
    Applies a check entered by an operator.

    Example:
        >>> service.process(ManualPayment(
        ...     payment_ref="100234",
        ...     payment_date=validate_date("03/29/2024"),
        ...     amount=validate_amount("85.00"),
        ...     claims=[ManualClaimPayment("IN00004521", [line])],
        ... ))
    """

    def process(self, manual: ManualPayment) -> PaymentOutcome:
        """
        Raises:
            NotFoundError: If a billing id is unknown
            PaymentCreationError: If lines do not match the claims or the
                totals do not add up to the payment amount
        """
        self._messages = []
        if self.payments.get(manual.payment_ref) is not None:
            raise PaymentCreationError("Payment %s has already been processed." % manual.payment_ref)

        ledger = _ChargeLedger(self.db)
        claims: List[Claim] = []

        try:
            for claim_payment in manual.claims:
                claims.append(self._apply_claim(ledger, manual, claim_payment))

            payment_total = money_add(
                money_sum(claim.paid_amount for claim in claims),
                money_sum(adjustment.amount for adjustment in manual.provider_adjustments),
            )
            if money_compare(payment_total, manual.amount) != 0:
                raise PaymentCreationError(
                    "Payment total is not adding up. Please try again.",
                    details={"expected": str(manual.amount), "actual": str(payment_total)},
                )
        except AppError:
            ledger.restore()
            raise

        rows = paid_claims_table(claims, manual.provider_adjustments, self.settings.currency_code)
        self.review(rows)
        if not self.confirm("Continue?"):
            ledger.restore()
            return PaymentOutcome(manual.payment_ref, "declined", rows=rows)

        try:
            self.reconciliation.sync(manual.payment_ref, manual.payment_date, claims, manual.provider_adjustments)
            self.db.commit()
        except Exception:
            ledger.restore()
            raise

        message = "Payment %s has been processed successfully." % manual.payment_ref
        self._say(message)
        return PaymentOutcome(manual.payment_ref, "processed", message, rows)

    def _apply_claim(self, ledger: _ChargeLedger, manual: ManualPayment, claim_payment: ManualClaimPayment) -> Claim:
        claim = self.claims.find_one_by_billing_id(claim_payment.billing_id)
        if claim is None:
            raise NotFoundError("Claim", claim_payment.billing_id)

        remaining = [charge.charge_line for charge in claim.charges]
        total_billed = ZERO

        for line in claim_payment.line_items:
            charge = single_charge(
                self.charges.find_by_line_item(
                    service_date=line.service_date,
                    billing_code=line.billing_code,
                    billed_amount=line.billed,
                    client_name=claim.client_name,
                )
            )
            if charge.charge_line not in remaining:
                raise PaymentCreationError(
                    "Claim %s does not contain charge %s." % (claim.billing_id, charge.charge_line)
                )
            remaining.remove(charge.charge_line)

            contractual = line.contractual_adjustment
            if contractual is None:
                contractual = charge.contractual_adjustment
            validate_charge_adjustments(
                charge,
                contractual,
                line.coinsurance,
                line.billed,
                line.paid,
                currency_code=self.settings.currency_code,
            )
            ledger.apply(charge, manual.payment_date, line.paid, manual.payment_ref, line.coinsurance)
            total_billed = money_add(total_billed, charge.billed_amount)

        if money_compare(total_billed, claim.billed_amount) != 0:
            raise PaymentCreationError(
                "Claim %s was billed for %s, but line items for %s were entered."
                % (claim.billing_id, self._money(claim.billed_amount), self._money(total_billed))
            )

        return claim


def restore_file(db: Session, path: Union[str, Path], currency_code: str = "USD") -> List[str]:
    """Restore every payment of an 835 file whose charges were left half applied."""
    payments = PaymentRepository(db)
    charges = ChargeRepository(db)
    restored = []
    for payment in Edi835Reader.from_path(path, currency_code=currency_code).process():
        if payments.get(payment.payment_ref) is not None:
            continue
        if charges.find_by_payment_ref(payment.payment_ref):
            restore_charges(db, payment.payment_ref)
            restored.append(payment.payment_ref)
    return restored
