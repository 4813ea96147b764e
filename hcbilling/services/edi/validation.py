"""Sum checks applied to every payment an 835 reader returns.

Three levels, innermost first. Every comparison is exact at two decimal
places; the first failure raises :class:`ReconciliationError` with the
expected and actual totals.

- charge: billed - paid == contractual adjustment + coinsurance
- claim: the charges' billed, paid and coinsurance sums equal the amount
  claimed, amount paid and patient responsibility
- payment: claim payments plus provider adjustments equal the payment
"""
from decimal import Decimal

from hcbilling.services.edi.models import (
    Edi835ChargePayment,
    Edi835ClaimPayment,
    Edi835Payment,
)
from hcbilling.utils.decimal_utils import (
    format_currency,
    money_add,
    money_equals,
    money_sub,
    money_sum,
)
from hcbilling.utils.errors import ReconciliationError


def _mismatch(template: str, first: Decimal, second: Decimal, expected: Decimal, actual: Decimal,
              currency_code: str, **details) -> ReconciliationError:
    return ReconciliationError(
        template % (format_currency(first, currency_code), format_currency(second, currency_code)),
        expected=expected,
        actual=actual,
        details=details,
    )


def validate_charge(charge: Edi835ChargePayment, currency_code: str = "USD") -> None:
    expected = money_sub(charge.billed, charge.paid)
    actual = money_add(charge.contractual_adjustment, charge.coinsurance)
    if not money_equals(expected, actual):
        raise _mismatch(
            "Charge adjustments should total %s, but actually add up to %s.",
            expected, actual, expected, actual, currency_code,
            billing_code=charge.billing_code,
        )


def validate_claim(claim: Edi835ClaimPayment, currency_code: str = "USD") -> None:
    """Validate each charge, then the claim totals against the charge sums."""
    for charge in claim.charges:
        validate_charge(charge, currency_code)

    billed = money_sum(charge.billed for charge in claim.charges)
    if not money_equals(billed, claim.amount_claimed):
        raise _mismatch(
            "Charges add up to %s, but %s expected.",
            billed, claim.amount_claimed, claim.amount_claimed, billed, currency_code,
            claim_id=claim.claim_id,
        )

    paid = money_sum(charge.paid for charge in claim.charges)
    if not money_equals(paid, claim.amount_paid):
        raise _mismatch(
            "Total charge payments add up to %s, but %s expected.",
            paid, claim.amount_paid, claim.amount_paid, paid, currency_code,
            claim_id=claim.claim_id,
        )

    coinsurance = money_sum(charge.coinsurance for charge in claim.charges)
    if not money_equals(coinsurance, claim.patient_responsibility):
        raise _mismatch(
            "Patient responsibility adds up to %s, but %s expected.",
            coinsurance, claim.patient_responsibility, claim.patient_responsibility, coinsurance, currency_code,
            claim_id=claim.claim_id,
        )


def validate_payment(payment: Edi835Payment, currency_code: str = "USD") -> None:
    """
    Run the full cascade for one payment.

    Raises:
        ReconciliationError: On the first total that does not add up
    """
    for claim in payment.claims:
        validate_claim(claim, currency_code)

    total = money_add(
        money_sum(claim.amount_paid for claim in payment.claims),
        money_sum(adjustment.amount for adjustment in payment.provider_adjustments),
    )
    if not money_equals(total, payment.payment):
        raise _mismatch(
            "Claims and other adjustments add up to %s, but %s expected.",
            total, payment.payment, payment.payment, total, currency_code,
            payment_ref=payment.payment_ref,
        )
