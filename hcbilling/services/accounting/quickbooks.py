"""
QuickBooks Online adapter.

Talks to the v3 REST API with an OAuth2 bearer token obtained elsewhere.
Every response is JSON; failures carry a ``Fault`` object whose first error
code (e.g. ``6140`` for a duplicate doc number) is surfaced on
:class:`AccountingApiError`.
"""
import json
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from hcbilling.config.settings import AccountingSettings, get_accounting_settings
from hcbilling.services.accounting.base_adapter import AccountingAdapter
from hcbilling.utils.errors import AccountingApiError
from hcbilling.utils.logger import get_logger

logger = get_logger(__name__)


class QuickBooksAdapter(AccountingAdapter):
    """
    Adapter for QuickBooks Online.

    Example:
        >>> with QuickBooksAdapter.from_settings() as qb:
        ...     invoice = qb.get("Invoice", "130")
        >>> invoice["TotalAmt"]
        Decimal('340.00')
    """

    def __init__(
        self,
        config: Optional[Dict[str, Any]] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        super().__init__(config)
        self._transport = transport
        self._client: Optional[httpx.Client] = None

    @classmethod
    def from_settings(
        cls,
        settings: Optional[AccountingSettings] = None,
        transport: Optional[httpx.BaseTransport] = None,
    ) -> "QuickBooksAdapter":
        settings = settings or get_accounting_settings()
        return cls(
            config={
                "base_url": settings.base_url,
                "realm_id": settings.realm_id,
                "access_token": settings.access_token,
                "minor_version": settings.minor_version,
                "timeout": settings.timeout,
            },
            transport=transport,
        )

    @property
    def company_url(self) -> str:
        return f"{self.config['base_url'].rstrip('/')}/v3/company/{self.config['realm_id']}"

    def connect(self) -> bool:
        if self._client is None:
            if not self.config.get("realm_id") or not self.config.get("access_token"):
                raise AccountingApiError("QuickBooks realm id and access token must be configured.")
            self._client = httpx.Client(
                base_url=self.company_url,
                headers={
                    "Authorization": f"Bearer {self.config['access_token']}",
                    "Accept": "application/json",
                    "Content-Type": "application/json",
                },
                params={"minorversion": str(self.config.get("minor_version", 65))},
                timeout=self.config.get("timeout", 30.0),
                transport=self._transport,
            )
            logger.info("Connected to QuickBooks", realm_id=self.config["realm_id"])
        self.connected = True
        return True

    def disconnect(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None
        self.connected = False

    def test_connection(self) -> bool:
        try:
            self._request("GET", f"/companyinfo/{self.config['realm_id']}")
        except AccountingApiError as e:
            logger.warning("QuickBooks connection test failed", error=e.message)
            return False
        return True

    def create(self, entity: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        data = self._request("POST", f"/{entity.lower()}", content=encode_payload(payload))
        document = data[entity]
        logger.debug("Created QuickBooks document", entity=entity, id=document.get("Id"))
        return document

    def get(self, entity: str, entity_id: str) -> Dict[str, Any]:
        return self._request("GET", f"/{entity.lower()}/{entity_id}")[entity]

    def delete(self, entity: str, document: Dict[str, Any]) -> None:
        self._request(
            "POST",
            f"/{entity.lower()}",
            params={"operation": "delete"},
            content=encode_payload({"Id": document["Id"], "SyncToken": document.get("SyncToken", "0")}),
        )
        logger.info("Deleted QuickBooks document", entity=entity, id=document["Id"])

    def query(self, statement: str) -> List[Dict[str, Any]]:
        data = self._request("GET", "/query", params={"query": statement})
        response = data.get("QueryResponse", {})
        for value in response.values():
            if isinstance(value, list):
                return value
        return []

    def _request(self, method: str, path: str, **kwargs: Any) -> Dict[str, Any]:
        if self._client is None:
            self.connect()
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise AccountingApiError(f"QuickBooks request failed: {e}") from e

        try:
            data = response.json(parse_float=Decimal)
        except ValueError:
            data = {}

        fault = data.get("Fault") if isinstance(data, dict) else None
        if response.is_error or fault:
            raise self._fault_error(fault, response.status_code)
        return data

    @staticmethod
    def _fault_error(fault: Optional[Dict[str, Any]], http_status: int) -> AccountingApiError:
        errors = (fault or {}).get("Error") or [{}]
        first = errors[0]
        message = first.get("Detail") or first.get("Message") or f"QuickBooks returned HTTP {http_status}"
        return AccountingApiError(
            message,
            intuit_code=first.get("code"),
            http_status=http_status,
            details={"fault_type": (fault or {}).get("type")},
        )


def encode_payload(payload: Dict[str, Any]) -> str:
    """JSON-encode a document; amounts go out as exact decimal strings."""
    return json.dumps(payload, default=_encode_value)


def _encode_value(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if hasattr(value, "isoformat"):
        return value.isoformat()
    raise TypeError(f"Cannot encode {type(value).__name__} for QuickBooks")
