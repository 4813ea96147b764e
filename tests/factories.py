"""Test data factories using factory-boy."""
from datetime import date
from decimal import Decimal

import factory

from hcbilling.models import (
    Appointment,
    Charge,
    Claim,
    ClaimStatus,
    Payer,
    Service,
)
from hcbilling.utils.decimal_utils import money_mul


class PayerFactory(factory.alchemy.SQLAlchemyModelFactory):
    """Factory for Payer model."""

    class Meta:
        model = Payer
        sqlalchemy_session_persistence = "commit"
        abstract = False

    id = factory.Sequence(lambda n: f"PAYER{n:03d}")
    name = factory.Faker("company")
    payer_type = factory.Iterator(["Commercial", "Medicaid", "EAP"])
    address = factory.Faker("street_address")
    city = factory.Faker("city")
    state = factory.Faker("state_abbr")
    zip = factory.Faker("postcode")
    qb_customer_id = factory.Sequence(lambda n: str(500 + n))


class ServiceFactory(factory.alchemy.SQLAlchemyModelFactory):
    """Factory for Service model."""

    class Meta:
        model = Service
        sqlalchemy_session_persistence = "commit"
        abstract = False

    payer = factory.SubFactory(PayerFactory)
    billing_code = "90837"
    name = "Psychotherapy, 60 minutes"
    rate = Decimal("150.00")
    contract_rate = Decimal("100.00")
    unit_size = 60
    qb_item_id = factory.Sequence(lambda n: str(700 + n))


class ChargeFactory(factory.alchemy.SQLAlchemyModelFactory):
    """Factory for Charge model. Amounts follow the service rates."""

    class Meta:
        model = Charge
        sqlalchemy_session_persistence = "commit"
        abstract = False

    charge_line = factory.Sequence(lambda n: str(4000 + n))
    service = factory.SubFactory(ServiceFactory)
    payer = factory.SelfAttribute("service.payer")
    service_date = date(2024, 3, 4)
    client_name = "Doe, Jane"
    billed_units = 1
    billed_amount = factory.LazyAttribute(lambda o: money_mul(o.service.rate, o.billed_units))
    contract_amount = factory.LazyAttribute(lambda o: money_mul(o.service.contract_rate, o.billed_units))
    billed_date = date(2024, 3, 20)
    payer_balance = factory.LazyAttribute(lambda o: o.billed_amount)


class AppointmentFactory(factory.alchemy.SQLAlchemyModelFactory):
    """Factory for Appointment model. Completed and unbilled by default."""

    class Meta:
        model = Appointment
        sqlalchemy_session_persistence = "commit"
        abstract = False

    id = factory.Sequence(lambda n: f"A{n:05d}")
    service = factory.SubFactory(ServiceFactory)
    payer = factory.SelfAttribute("service.payer")
    client_name = "Doe, Jane"
    service_date = date(2024, 3, 4)
    units = 1
    charge = factory.LazyAttribute(lambda o: money_mul(o.service.rate, o.units))
    completed = True
    status = "Active"


class ClaimFactory(factory.alchemy.SQLAlchemyModelFactory):
    """Factory for Claim model."""

    class Meta:
        model = Claim
        sqlalchemy_session_persistence = "commit"
        abstract = False

    billing_id = factory.Sequence(lambda n: f"IN{n:08d}")
    status = ClaimStatus.PROCESSED
    qb_credit_memo_ids = factory.LazyFunction(list)
