"""Base adapter interface for the accounting system."""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from hcbilling.utils.logger import get_logger

logger = get_logger(__name__)

# Intuit error code for a journal entry doc number that is already in use
DUPLICATE_DOC_NUMBER_CODE = "6140"


class AccountingAdapter(ABC):
    """
    Base adapter interface for accounting system integrations.

    Documents are exchanged as plain dictionaries shaped like the QuickBooks
    Online v3 entities (``Invoice``, ``CreditMemo``, ``Payment``,
    ``JournalEntry``, ``Item``). Implementations raise
    :class:`~hcbilling.utils.errors.AccountingApiError` when the remote system
    rejects a request.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        """
        Initialize adapter with configuration.

        Args:
            config: Connection details (base URL, realm, credentials)
        """
        self.config = config or {}
        self.connected = False

    @abstractmethod
    def connect(self) -> bool:
        """
        Connect to the accounting system.

        Returns:
            True if connection successful, False otherwise
        """

    @abstractmethod
    def disconnect(self) -> None:
        """Disconnect from the accounting system."""

    @abstractmethod
    def test_connection(self) -> bool:
        """
        Test connection to the accounting system.

        Returns:
            True if connection is working, False otherwise
        """

    @abstractmethod
    def create(self, entity: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        """
        Create a document.

        Args:
            entity: Entity name, e.g. ``"Invoice"``
            payload: Document body

        Returns:
            The stored document including ``Id``, ``DocNumber`` and ``TotalAmt``
        """

    @abstractmethod
    def get(self, entity: str, entity_id: str) -> Dict[str, Any]:
        """Fetch one document by id."""

    @abstractmethod
    def delete(self, entity: str, document: Dict[str, Any]) -> None:
        """Delete a document previously returned by ``create`` or ``get``."""

    @abstractmethod
    def query(self, statement: str) -> List[Dict[str, Any]]:
        """Run a query statement and return the matching documents."""

    def __enter__(self):
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit."""
        self.disconnect()
