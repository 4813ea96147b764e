"""
Shared FastAPI dependencies.

Routes get the database session from ``hcbilling.config.database.get_db``
and the accounting helpers from here. Tests override ``get_documents``
to use an in-memory adapter.
"""
from typing import Generator

from fastapi import Depends

from hcbilling.config.settings import BillingSettings, get_accounting_settings, get_billing_settings
from hcbilling.services.accounting.base_adapter import AccountingAdapter
from hcbilling.services.accounting.documents import AccountingDocuments
from hcbilling.services.accounting.quickbooks import QuickBooksAdapter


def get_accounting_adapter() -> Generator[AccountingAdapter, None, None]:
    """Open a QuickBooks connection for the duration of a request."""
    adapter = QuickBooksAdapter.from_settings()
    with adapter:
        yield adapter


def get_documents(adapter: AccountingAdapter = Depends(get_accounting_adapter)) -> AccountingDocuments:
    return AccountingDocuments(adapter, get_accounting_settings())


def get_settings() -> BillingSettings:
    return get_billing_settings()
