"""In-memory accounting system used in place of QuickBooks in tests."""
import copy
import re
from typing import Any, Dict, List, Optional, Set, Tuple

from hcbilling.services.accounting.base_adapter import AccountingAdapter, DUPLICATE_DOC_NUMBER_CODE
from hcbilling.utils.decimal_utils import money_sum
from hcbilling.utils.errors import AccountingApiError

QUERY_ENTITY_PATTERN = re.compile(r"from\s+(\w+)", re.IGNORECASE)


class FakeAccountingAdapter(AccountingAdapter):
    """
    Stores documents per entity the way QuickBooks returns them.

    - ``create`` assigns ``Id`` and ``SyncToken``, numbers documents sent
      with ``AutoDocNumber`` and totals sales lines into ``TotalAmt``
    - Journal entry doc numbers are unique; ``taken_doc_numbers`` can be
      seeded to simulate numbers used outside this system
    - ``fail_on`` maps an entity name to an error raised on its next create
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        super().__init__(config)
        self.documents: Dict[str, Dict[str, Dict[str, Any]]] = {}
        self.calls: List[Tuple[str, str]] = []
        self.deleted: List[Tuple[str, str]] = []
        self.taken_doc_numbers: Set[str] = set()
        self.fail_on: Dict[str, AccountingApiError] = {}
        self._next_id = 100
        self._next_doc_number = 1000

    def connect(self) -> bool:
        self.connected = True
        return True

    def disconnect(self) -> None:
        self.connected = False

    def test_connection(self) -> bool:
        return True

    def seed(self, entity: str, document: Dict[str, Any]) -> Dict[str, Any]:
        """Store a document as if it had been created in the accounting system earlier."""
        self.documents.setdefault(entity, {})[document["Id"]] = copy.deepcopy(document)
        return document

    def create(self, entity: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        self.calls.append(("create", entity))
        if entity in self.fail_on:
            raise self.fail_on.pop(entity)

        document = copy.deepcopy(payload)
        if entity == "JournalEntry":
            doc_number = document.get("DocNumber")
            if doc_number in self.taken_doc_numbers:
                raise AccountingApiError(
                    "Duplicate Document Number Error",
                    intuit_code=DUPLICATE_DOC_NUMBER_CODE,
                    http_status=400,
                )
            self.taken_doc_numbers.add(doc_number)

        if document.pop("AutoDocNumber", False):
            self._next_doc_number += 1
            document["DocNumber"] = str(self._next_doc_number)
        if "TotalAmt" not in document:
            document["TotalAmt"] = money_sum(
                line["Amount"]
                for line in document.get("Line", [])
                if line.get("DetailType") == "SalesItemLineDetail"
            )

        self._next_id += 1
        document["Id"] = str(self._next_id)
        document["SyncToken"] = "0"
        self.documents.setdefault(entity, {})[document["Id"]] = document
        return copy.deepcopy(document)

    def get(self, entity: str, entity_id: str) -> Dict[str, Any]:
        self.calls.append(("get", entity))
        document = self.documents.get(entity, {}).get(entity_id)
        if document is None:
            raise AccountingApiError("Object Not Found", intuit_code="610", http_status=400)
        return copy.deepcopy(document)

    def delete(self, entity: str, document: Dict[str, Any]) -> None:
        self.calls.append(("delete", entity))
        if self.documents.get(entity, {}).pop(document["Id"], None) is None:
            raise AccountingApiError("Object Not Found", intuit_code="610", http_status=400)
        self.deleted.append((entity, document["Id"]))

    def query(self, statement: str) -> List[Dict[str, Any]]:
        self.calls.append(("query", statement))
        match = QUERY_ENTITY_PATTERN.search(statement)
        if match is None:
            return []
        return [copy.deepcopy(document) for document in self.documents.get(match.group(1), {}).values()]

    def all(self, entity: str) -> List[Dict[str, Any]]:
        """Every stored document of ``entity`` in creation order."""
        return list(self.documents.get(entity, {}).values())
