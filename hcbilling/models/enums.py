"""
Status and type enumerations for database models.

String enums so they serialize to JSON and store as readable values.
"""
import enum


class ClaimStatus(str, enum.Enum):
    """Claim lifecycle: created locally, submitted to accounting, paid."""

    PENDING = "pending"
    PROCESSED = "processed"
    PAID = "paid"


class ProviderAdjustmentType(str, enum.Enum):
    """Payment level adjustments a remittance may carry."""

    INTEREST = "interest"
    ORIGINATION_FEE = "origination_fee"

    @property
    def label(self) -> str:
        return {
            ProviderAdjustmentType.INTEREST: "Interest owed",
            ProviderAdjustmentType.ORIGINATION_FEE: "Origination fee",
        }[self]
