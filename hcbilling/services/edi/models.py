"""Values extracted from 835 remittance and 837 claim files.

These are plain dataclasses built while a reader scans one file. They are
handed to the billing services and never stored as they are.
"""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional

from hcbilling.models.enums import ProviderAdjustmentType
from hcbilling.utils.decimal_utils import ZERO
from hcbilling.utils.errors import EdiError

# PLB03-1 reason codes this system handles
PROVIDER_ADJUSTMENT_REASONS = {
    "L6": ProviderAdjustmentType.INTEREST,
    "AH": ProviderAdjustmentType.ORIGINATION_FEE,
}


@dataclass
class Edi835ChargePayment:
    billing_code: str
    billed: Decimal
    paid: Decimal
    units: int
    service_date: Optional[date] = None
    contractual_adjustment: Decimal = ZERO
    coinsurance: Decimal = ZERO


@dataclass
class Edi835ClaimPayment:
    amount_claimed: Decimal
    amount_paid: Decimal
    patient_responsibility: Decimal = ZERO
    claim_id: str = ""
    client_first_name: Optional[str] = None
    client_last_name: Optional[str] = None
    charges: List[Edi835ChargePayment] = field(default_factory=list)


@dataclass
class ProviderAdjustment:
    """
    A payment level adjustment outside any claim.

    ``amount`` is the effect on the payment total: the PLB amount with its
    sign inverted, so interest paid to the provider is positive and a fee
    withheld is negative.
    """

    type: ProviderAdjustmentType
    amount: Decimal

    @classmethod
    def from_plb(cls, reason: str, raw_amount: Decimal) -> "ProviderAdjustment":
        if reason not in PROVIDER_ADJUSTMENT_REASONS:
            raise EdiError(
                "Do not know how to handle provider adjustment reason %s." % reason,
                details={"reason": reason},
            )
        return cls(type=PROVIDER_ADJUSTMENT_REASONS[reason], amount=-raw_amount + ZERO)


@dataclass
class Edi835Payment:
    payment: Optional[Decimal] = None
    payment_date: Optional[date] = None
    payment_ref: Optional[str] = None
    payer: Optional[str] = None
    claims: List[Edi835ClaimPayment] = field(default_factory=list)
    provider_adjustments: List[ProviderAdjustment] = field(default_factory=list)


@dataclass
class Edi837Charge:
    billing_code: Optional[str] = None
    service_date: Optional[date] = None
    billed: Optional[Decimal] = None
    units: Optional[int] = None


@dataclass
class Edi837Claim:
    payer_id: Optional[str]
    billed_date: Optional[date]
    client_last_name: Optional[str]
    client_first_name: Optional[str]
    billed: Decimal
    claim_id: str = ""
    charges: List[Edi837Charge] = field(default_factory=list)

    @property
    def client_name(self) -> str:
        return f"{self.client_last_name}, {self.client_first_name}"
