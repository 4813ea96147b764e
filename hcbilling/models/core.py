"""
Payer and service catalog models.

- Payer: an insurance payer, mapped to a customer in the accounting system
- Service: a billable service offered to one payer, with its billed rate and
  the contracted rate the payer actually pays
"""
from decimal import Decimal

from sqlalchemy import Column, ForeignKey, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import relationship

from hcbilling.config.database import Base, TimestampMixin
from hcbilling.utils.decimal_utils import money_sub


class Payer(Base, TimestampMixin):
    """
    Insurance payer.

    Attributes:
        id: Payer identifier as used in 837 files (NM1*PR NM109)
        name: Payer name as printed on remittances (N1*PR N102)
        qb_customer_id: Customer id of this payer in the accounting system

    Relationships:
        services: Services billed to this payer
    """

    __tablename__ = "payers"

    id = Column(String(50), primary_key=True)
    name = Column(String(255), nullable=False, index=True)
    payer_type = Column(String(50))
    address = Column(String(255))
    city = Column(String(100))
    state = Column(String(20))
    zip = Column(String(20))
    email = Column(String(255))
    phone = Column(String(50))
    qb_customer_id = Column(String(50))

    services = relationship("Service", back_populates="payer", cascade="all, delete-orphan")

    def get_service(self, billing_code: str):
        for service in self.services:
            if service.billing_code == billing_code:
                return service
        return None


class Service(Base, TimestampMixin):
    """
    A billing code offered to a payer.

    ``rate`` is what is billed per unit; ``contract_rate`` is what the payer
    has agreed to pay per unit. The difference is written off as a
    contractual adjustment.
    """

    __tablename__ = "services"
    __table_args__ = (UniqueConstraint("payer_id", "billing_code", name="uq_service_payer_code"),)

    id = Column(Integer, primary_key=True, index=True)
    payer_id = Column(String(50), ForeignKey("payers.id"), nullable=False, index=True)
    billing_code = Column(String(20), nullable=False, index=True)
    name = Column(String(255))
    rate = Column(Numeric(12, 2), nullable=False)
    contract_rate = Column(Numeric(12, 2), nullable=False)
    unit_size = Column(Integer)  # minutes per unit
    qb_item_id = Column(String(50))

    payer = relationship("Payer", back_populates="services")

    @property
    def unit_adjustment(self) -> Decimal:
        """Contractual adjustment per billed unit."""
        return money_sub(self.rate, self.contract_rate)
