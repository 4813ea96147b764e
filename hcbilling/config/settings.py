"""Billing workflow and accounting API settings."""
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings


class BillingSettings(BaseSettings):
    """Where files are read from and moved to, and how amounts are displayed."""

    currency_code: str = Field("USD", alias="CURRENCY_CODE")
    claims_inbox_dir: Path = Field(Path("var/inbox/claims"), alias="CLAIMS_INBOX_DIR")
    processed_claims_dir: Path = Field(Path("var/processed/claims"), alias="PROCESSED_CLAIMS_DIR")
    processed_payments_dir: Path = Field(Path("var/processed/payments"), alias="PROCESSED_PAYMENTS_DIR")
    upload_dir: Path = Field(Path("var/uploads"), alias="UPLOAD_DIR")

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"
        populate_by_name = True


class AccountingSettings(BaseSettings):
    """
    Connection to the accounting API and the company-level references it needs.

    The item and account ids are the QuickBooks ids of the items used on
    invoice/credit memo lines that are not tied to a billed service.
    """

    base_url: str = Field("https://quickbooks.api.intuit.com", alias="QB_BASE_URL")
    realm_id: Optional[str] = Field(None, alias="QB_REALM_ID")
    access_token: Optional[str] = Field(None, alias="QB_ACCESS_TOKEN")
    minor_version: int = Field(65, alias="QB_MINOR_VERSION")
    timeout: float = Field(30.0, alias="QB_TIMEOUT")

    payment_term_id: Optional[str] = Field(None, alias="QB_PAYMENT_TERM_ID")
    contractual_adjustment_item_id: Optional[str] = Field(None, alias="QB_CONTRACTUAL_ADJUSTMENT_ITEM_ID")
    coinsurance_item_id: Optional[str] = Field(None, alias="QB_COINSURANCE_ITEM_ID")
    interest_item_id: Optional[str] = Field(None, alias="QB_INTEREST_ITEM_ID")
    origination_fee_item_id: Optional[str] = Field(None, alias="QB_ORIGINATION_FEE_ITEM_ID")
    accrued_revenue_account_id: Optional[str] = Field(None, alias="QB_ACCRUED_REVENUE_ACCOUNT_ID")

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"
        populate_by_name = True


@lru_cache()
def get_billing_settings() -> BillingSettings:
    return BillingSettings()


@lru_cache()
def get_accounting_settings() -> AccountingSettings:
    return AccountingSettings()
