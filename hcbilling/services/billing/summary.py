"""Totals of a set of charges about to be billed as one claim."""
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import List, Optional

from hcbilling.models import Charge
from hcbilling.utils.decimal_utils import ZERO, money_add, money_sub


@dataclass
class ClaimSummary:
    """
    What a claim will invoice.

    Attributes:
        billing_id: ``IN`` followed by the first charge line, zero padded to 8
        billed_amount: Sum of billed amounts
        contract_amount: Sum of contracted amounts
        coinsurance: Coinsurance already known for the charges (usually 0)
    """

    billing_id: str
    payer: Optional[str]
    client: str
    billed_amount: Decimal
    contract_amount: Decimal
    billed_date: Optional[date]
    start_date: date
    end_date: date
    charges: List[Charge] = field(default_factory=list)
    coinsurance: Decimal = ZERO

    @property
    def contractual_adjustment(self) -> Decimal:
        return money_sub(self.billed_amount, self.contract_amount)

    @property
    def total_discount(self) -> Decimal:
        return money_add(self.contractual_adjustment, self.coinsurance)

    @property
    def total(self) -> Decimal:
        return money_sub(self.contract_amount, self.coinsurance)

    def as_dict(self) -> dict:
        return {
            "billing_id": self.billing_id,
            "payer": self.payer,
            "client": self.client,
            "billed_date": self.billed_date.isoformat() if self.billed_date else None,
            "start_date": self.start_date.isoformat(),
            "end_date": self.end_date.isoformat(),
            "billed_amount": str(self.billed_amount),
            "contract_amount": str(self.contract_amount),
            "contractual_adjustment": str(self.contractual_adjustment),
            "charges": [charge.charge_line for charge in self.charges],
        }


def billing_id_for(charge_line: str) -> str:
    """
    Example:
        >>> billing_id_for("4521")
        'IN00004521'
    """
    return "IN%s" % charge_line.rjust(8, "0")
