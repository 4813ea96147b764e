"""
Database models package.

Models are organized by domain but can be imported from this package:

    from hcbilling.models import Charge, Claim
    from hcbilling.models.enums import ClaimStatus
"""

from hcbilling.models.enums import ClaimStatus, ProviderAdjustmentType

from hcbilling.models.core import Payer, Service

from hcbilling.models.billing import (
    Appointment,
    Charge,
    Claim,
    Payment,
    ProviderAdjustmentRecord,
)

__all__ = [
    # Enums
    "ClaimStatus",
    "ProviderAdjustmentType",
    # Catalog
    "Payer",
    "Service",
    # Billing
    "Appointment",
    "Charge",
    "Claim",
    "Payment",
    "ProviderAdjustmentRecord",
]
