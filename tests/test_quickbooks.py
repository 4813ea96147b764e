"""Tests for the QuickBooks Online adapter using a mocked HTTP transport."""
import json
from datetime import date
from decimal import Decimal

import httpx
import pytest

from hcbilling.config.settings import AccountingSettings
from hcbilling.services.accounting.quickbooks import QuickBooksAdapter, encode_payload
from hcbilling.utils.errors import AccountingApiError


class Recorder:
    """Collects requests and answers them from a handler."""

    def __init__(self, handler):
        self.handler = handler
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.handler(request)


def adapter_for(handler) -> QuickBooksAdapter:
    settings = AccountingSettings(
        base_url="https://sandbox-quickbooks.api.intuit.com",
        realm_id="4620816365",
        access_token="test-token",
    )
    return QuickBooksAdapter.from_settings(settings, transport=httpx.MockTransport(handler))


@pytest.mark.unit
class TestQuickBooksAdapter:
    """Tests for QuickBooksAdapter."""

    def test_create_posts_to_entity_endpoint(self):
        """Test the URL, auth header, minor version and body of a create."""
        recorder = Recorder(
            lambda request: httpx.Response(
                200, content=b'{"Invoice": {"Id": "130", "DocNumber": "1037", "TotalAmt": 300.00}}'
            )
        )

        with adapter_for(recorder) as qb:
            invoice = qb.create("Invoice", {"TxnDate": date(2024, 3, 20), "Line": [{"Amount": Decimal("150.00")}]})

        request = recorder.requests[0]
        assert request.method == "POST"
        assert request.url.path == "/v3/company/4620816365/invoice"
        assert request.url.params["minorversion"] == "65"
        assert request.headers["Authorization"] == "Bearer test-token"
        assert json.loads(request.content) == {"TxnDate": "2024-03-20", "Line": [{"Amount": "150.00"}]}
        assert invoice["Id"] == "130"

    def test_amounts_are_parsed_as_decimal(self):
        """Test JSON numbers never become floats."""
        recorder = Recorder(lambda request: httpx.Response(200, content=b'{"Invoice": {"Id": "130", "TotalAmt": 340.10}}'))

        with adapter_for(recorder) as qb:
            invoice = qb.get("Invoice", "130")

        assert recorder.requests[0].url.path.endswith("/invoice/130")
        assert invoice["TotalAmt"] == Decimal("340.10")
        assert isinstance(invoice["TotalAmt"], Decimal)

    def test_query_returns_first_list(self):
        """Test the entity list is unwrapped from QueryResponse."""
        body = {"QueryResponse": {"Customer": [{"Id": "58"}], "startPosition": 1, "maxResults": 1}}
        recorder = Recorder(lambda request: httpx.Response(200, json=body))

        with adapter_for(recorder) as qb:
            customers = qb.query("select * from Customer")

        assert customers == [{"Id": "58"}]
        assert recorder.requests[0].url.params["query"] == "select * from Customer"

    def test_query_without_results(self):
        recorder = Recorder(lambda request: httpx.Response(200, json={"QueryResponse": {}}))

        with adapter_for(recorder) as qb:
            assert qb.query("select * from Item") == []

    def test_delete_sends_id_and_sync_token(self):
        """Test deletes use operation=delete with Id and SyncToken."""
        recorder = Recorder(lambda request: httpx.Response(200, json={"JournalEntry": {"status": "Deleted"}}))

        with adapter_for(recorder) as qb:
            qb.delete("JournalEntry", {"Id": "77", "SyncToken": "2", "Line": []})

        request = recorder.requests[0]
        assert request.url.params["operation"] == "delete"
        assert json.loads(request.content) == {"Id": "77", "SyncToken": "2"}

    def test_fault_raises_with_intuit_code(self):
        """Test the first Fault error code and detail are surfaced."""
        fault = {
            "Fault": {
                "Error": [
                    {
                        "Message": "Duplicate Document Number Error",
                        "Detail": "Duplicate Document Number Error : You must specify a different number.",
                        "code": "6140",
                    }
                ],
                "type": "ValidationFault",
            }
        }
        recorder = Recorder(lambda request: httpx.Response(400, json=fault))

        with adapter_for(recorder) as qb:
            with pytest.raises(AccountingApiError) as exc_info:
                qb.create("JournalEntry", {"DocNumber": "1045"})

        assert exc_info.value.intuit_code == "6140"
        assert exc_info.value.http_status == 400
        assert exc_info.value.message.startswith("Duplicate Document Number Error :")
        assert exc_info.value.details["fault_type"] == "ValidationFault"

    def test_http_error_without_body(self):
        """Test a bare HTTP failure still raises."""
        recorder = Recorder(lambda request: httpx.Response(401, content=b"Unauthorized"))

        with adapter_for(recorder) as qb:
            with pytest.raises(AccountingApiError, match="QuickBooks returned HTTP 401"):
                qb.get("Invoice", "130")

    def test_transport_error(self):
        """Test network failures are wrapped."""

        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        with adapter_for(handler) as qb:
            with pytest.raises(AccountingApiError, match="QuickBooks request failed"):
                qb.get("Invoice", "130")

    def test_connection_test(self):
        """Test test_connection reports failures instead of raising."""
        with adapter_for(lambda request: httpx.Response(500, json={})) as qb:
            assert qb.test_connection() is False

    def test_connect_requires_credentials(self):
        """Test a missing realm id is reported before any request."""
        adapter = QuickBooksAdapter(config={"base_url": "https://example.test", "access_token": "t"})

        with pytest.raises(AccountingApiError, match="realm id and access token"):
            adapter.connect()

    def test_disconnect(self):
        adapter = adapter_for(lambda request: httpx.Response(200, json={}))
        adapter.connect()

        adapter.disconnect()

        assert adapter.connected is False


@pytest.mark.unit
def test_encode_payload_rejects_unknown_types():
    """Test only decimals and dates get special treatment."""
    with pytest.raises(TypeError):
        encode_payload({"value": object()})
