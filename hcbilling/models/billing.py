"""
Billing records: charges, appointments, claims and payments.

A Charge is one billed service line exported from the practice management
system. Charges are grouped into a Claim when the 837 that billed them is
processed, and receive payment information when the matching 835 arrives.
Appointments are the scheduled sessions behind charges; unbilled ones are
accrued as revenue through journal entries.
"""
from datetime import date
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    Enum as SQLEnum,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
)
from sqlalchemy.orm import relationship

from hcbilling.config.database import Base, TimestampMixin
from hcbilling.models.enums import ClaimStatus, ProviderAdjustmentType
from hcbilling.utils.decimal_utils import ZERO, money_sub, money_sum

# Payment columns copied aside before a remittance is applied to a charge
PAYMENT_FIELDS = (
    "payment_date",
    "payment",
    "payment_ref",
    "coinsurance",
    "payer_balance",
)


class Charge(Base, TimestampMixin):
    """
    One billed service line.

    Attributes:
        charge_line: Charge id from the practice management export
        billed_amount: units * service rate
        contract_amount: units * contracted rate
        billed_date: Date the charge was billed to the payer (None if unbilled)
        payment_ref: Reference of the remittance that paid it (None if unpaid)
        payer_balance: Amount still owed by the payer
    """

    __tablename__ = "charges"

    charge_line = Column(String(50), primary_key=True)
    service_date = Column(Date, nullable=False, index=True)
    client_name = Column(String(255), nullable=False, index=True)
    payer_id = Column(String(50), ForeignKey("payers.id"), index=True)
    service_id = Column(Integer, ForeignKey("services.id"), index=True)
    billed_amount = Column(Numeric(12, 2), nullable=False)
    contract_amount = Column(Numeric(12, 2), nullable=False)
    billed_units = Column(Integer, nullable=False, default=1)
    billed_date = Column(Date, index=True)

    payment_date = Column(Date)
    payment = Column(Numeric(12, 2))
    payment_ref = Column(String(100), index=True)
    copay = Column(Numeric(12, 2), default=ZERO)
    coinsurance = Column(Numeric(12, 2), default=ZERO)
    deductible = Column(Numeric(12, 2), default=ZERO)
    posted_date = Column(Date)
    payer_balance = Column(Numeric(12, 2))

    claim_id = Column(Integer, ForeignKey("claims.id"), index=True)

    payer = relationship("Payer")
    service = relationship("Service")
    claim = relationship("Claim", back_populates="charges")
    appointments = relationship("Appointment", back_populates="matched_charge")

    @property
    def contractual_adjustment(self) -> Decimal:
        return money_sub(self.billed_amount, self.contract_amount)

    @property
    def is_paid(self) -> bool:
        return self.payment_ref is not None

    def payment_snapshot(self) -> Dict[str, Any]:
        return {name: getattr(self, name) for name in PAYMENT_FIELDS}

    def restore_payment(self, snapshot: Dict[str, Any]) -> None:
        for name, value in snapshot.items():
            setattr(self, name, value)

    def apply_payment(self, payment_date: date, payment: Decimal, payment_ref: str, coinsurance: Decimal) -> None:
        """Record a remittance line; the payer owes nothing afterwards."""
        self.payer_balance = ZERO
        self.payment_date = payment_date
        self.payment_ref = payment_ref
        self.payment = payment
        self.coinsurance = coinsurance

    def clear_payment(self) -> None:
        """Undo a remittance: the full billed amount is owed again."""
        self.payer_balance = self.billed_amount
        self.payment_date = None
        self.payment_ref = None
        self.payment = None
        self.coinsurance = ZERO


class Appointment(Base, TimestampMixin):
    """
    A scheduled session from the practice management export.

    Completed, unbilled appointments are accrued as revenue with a journal
    entry; once billed, that entry is deleted or reversed.
    """

    __tablename__ = "appointments"

    id = Column(String(50), primary_key=True)
    payer_id = Column(String(50), ForeignKey("payers.id"), index=True)
    service_id = Column(Integer, ForeignKey("services.id"), index=True)
    client_name = Column(String(255), nullable=False, index=True)
    service_date = Column(Date, nullable=False, index=True)
    units = Column(Integer, nullable=False, default=1)
    charge = Column(Numeric(12, 2), nullable=False, default=ZERO)
    billed_date = Column(Date, index=True)
    completed = Column(Boolean, nullable=False, default=False)
    status = Column(String(50))
    charge_line = Column(String(50), ForeignKey("charges.charge_line"), index=True)
    qb_journal_entry_id = Column(String(50))
    qb_journal_entry_doc_number = Column(String(50))
    qb_reversing_journal_entry_id = Column(String(50))

    payer = relationship("Payer")
    service = relationship("Service")
    matched_charge = relationship("Charge", back_populates="appointments")


class Claim(Base, TimestampMixin):
    """
    A group of charges billed together.

    Totals are derived from the charges so they always agree with what was
    invoiced.

    Relationships:
        charges: Charges in service date order
        payment: The remittance that paid this claim
    """

    __tablename__ = "claims"

    id = Column(Integer, primary_key=True, index=True)
    billing_id = Column(String(20), unique=True, index=True)
    status = Column(SQLEnum(ClaimStatus), default=ClaimStatus.PENDING, nullable=False, index=True)
    qb_invoice_id = Column(String(50))
    qb_credit_memo_ids = Column(JSON, default=list)
    payment_ref = Column(String(100), ForeignKey("payments.payment_ref"), index=True)

    charges = relationship(
        "Charge",
        back_populates="claim",
        order_by="(Charge.service_date, Charge.charge_line)",
    )
    payment = relationship("Payment", back_populates="claims")

    def add_credit_memo(self, credit_memo_id: str) -> None:
        # Reassign so the JSON column is flagged dirty
        self.qb_credit_memo_ids = list(self.qb_credit_memo_ids or []) + [credit_memo_id]

    @property
    def billed_amount(self) -> Decimal:
        return money_sum(charge.billed_amount for charge in self.charges)

    @property
    def contract_amount(self) -> Decimal:
        return money_sum(charge.contract_amount for charge in self.charges)

    @property
    def paid_amount(self) -> Decimal:
        return money_sum(charge.payment or ZERO for charge in self.charges)

    @property
    def coinsurance(self) -> Decimal:
        return money_sum(charge.coinsurance or ZERO for charge in self.charges)

    @property
    def balance(self) -> Decimal:
        return money_sum(
            charge.payer_balance if charge.payer_balance is not None else charge.billed_amount
            for charge in self.charges
        )

    @property
    def start_date(self) -> Optional[date]:
        return min((charge.service_date for charge in self.charges), default=None)

    @property
    def end_date(self) -> Optional[date]:
        return max((charge.service_date for charge in self.charges), default=None)

    @property
    def client_name(self) -> Optional[str]:
        return self.charges[0].client_name if self.charges else None

    @property
    def payer(self):
        return self.charges[0].payer if self.charges else None

    @property
    def billed_date(self) -> Optional[date]:
        return self.charges[0].billed_date if self.charges else None

    @property
    def payment_date(self) -> Optional[date]:
        return self.charges[0].payment_date if self.charges else None


class Payment(Base, TimestampMixin):
    """A remittance applied in the accounting system."""

    __tablename__ = "payments"

    payment_ref = Column(String(100), primary_key=True)
    qb_payment_id = Column(String(50))
    payment_date = Column(Date, nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    payer_id = Column(String(50), ForeignKey("payers.id"), index=True)

    payer = relationship("Payer")
    claims = relationship("Claim", back_populates="payment")
    provider_adjustments = relationship(
        "ProviderAdjustmentRecord", back_populates="payment", cascade="all, delete-orphan"
    )


class ProviderAdjustmentRecord(Base, TimestampMixin):
    """A stored provider level adjustment and the document created for it."""

    __tablename__ = "provider_adjustments"

    id = Column(Integer, primary_key=True, index=True)
    payment_ref = Column(String(100), ForeignKey("payments.payment_ref"), nullable=False, index=True)
    type = Column(SQLEnum(ProviderAdjustmentType), nullable=False)
    amount = Column(Numeric(12, 2), nullable=False)
    qb_entity_id = Column(String(50))

    payment = relationship("Payment", back_populates="provider_adjustments")
