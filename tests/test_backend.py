"""
Tests for the embedding backend client.
"""

import pytest
import requests

from embedregen.backend import BatchRequest, BatchResult, EmbeddingBackendClient, parse_batch_response
from embedregen.errors import NetworkError, OpaqueBackendError, TransientBackendError


class FakeResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else ""

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class FakeSession:
    def __init__(self, response=None, exc=None):
        self.response = response
        self.exc = exc
        self.headers = {}
        self.calls = []
        self.closed = False

    def post(self, url, json=None, timeout=None):
        self.calls.append({"url": url, "json": json, "timeout": timeout})
        if self.exc is not None:
            raise self.exc
        return self.response

    def close(self):
        self.closed = True


@pytest.fixture
def batch_request():
    return BatchRequest(
        table="dataset_recipes", offset=200, limit=100,
        model="text-embedding-3-large", dimensions=1024, only_missing=True,
    )


def client_for(settings, session):
    return EmbeddingBackendClient(settings, session=session)


class TestRequest:
    def test_posts_contract_payload(self, settings, batch_request):
        session = FakeSession(FakeResponse(payload={
            "processed": 100, "nextOffset": 300, "hasMore": True, "totalCount": 1000,
        }))
        client_for(settings, session).process_batch(batch_request)

        call = session.calls[0]
        assert call["url"] == settings.backend_url
        assert call["json"] == {
            "table": "dataset_recipes",
            "offset": 200,
            "limit": 100,
            "model": "text-embedding-3-large",
            "dimensions": 1024,
            "onlyMissing": True,
        }
        assert call["timeout"] == settings.request_timeout
        assert session.headers["Authorization"] == "Bearer anon-key"

    def test_success_response(self, settings, batch_request):
        session = FakeSession(FakeResponse(payload={
            "success": True, "processed": 100, "nextOffset": 300, "hasMore": True, "totalCount": 1000,
        }))
        result = client_for(settings, session).process_batch(batch_request)

        assert result == BatchResult(processed=100, next_offset=300, has_more=True, total_count=1000)
        assert not result.restart_sweep

    def test_close(self, settings):
        session = FakeSession()
        client_for(settings, session).close()
        assert session.closed


class TestFailureClassification:
    """Every failure surfaces as a typed backend error."""

    def test_bad_gateway_is_transient(self, settings, batch_request):
        session = FakeSession(FakeResponse(status_code=502, text="<html>502 Bad Gateway cloudflare</html>"))
        with pytest.raises(TransientBackendError) as exc_info:
            client_for(settings, session).process_batch(batch_request)
        assert exc_info.value.status_code == 502

    def test_plain_client_error_is_opaque(self, settings, batch_request):
        session = FakeSession(FakeResponse(status_code=400, text='{"error": "Invalid table"}'))
        with pytest.raises(OpaqueBackendError) as exc_info:
            client_for(settings, session).process_batch(batch_request)
        assert exc_info.value.status_code == 400
        assert "Invalid table" in exc_info.value.message

    def test_error_field_in_200_payload(self, settings, batch_request):
        session = FakeSession(FakeResponse(payload={"error": "OpenAI API error: Request Timeout"}))
        with pytest.raises(TransientBackendError):
            client_for(settings, session).process_batch(batch_request)

    def test_opaque_error_field(self, settings, batch_request):
        session = FakeSession(FakeResponse(payload={"error": "Fetch error: column does not exist"}))
        with pytest.raises(OpaqueBackendError):
            client_for(settings, session).process_batch(batch_request)

    def test_connection_failure_is_network_error(self, settings, batch_request):
        session = FakeSession(exc=requests.exceptions.ConnectionError("Max retries exceeded"))
        with pytest.raises(NetworkError):
            client_for(settings, session).process_batch(batch_request)

    def test_read_timeout_is_network_error(self, settings, batch_request):
        session = FakeSession(exc=requests.exceptions.ReadTimeout("read timed out"))
        with pytest.raises(NetworkError) as exc_info:
            client_for(settings, session).process_batch(batch_request)
        assert "ReadTimeout" in str(exc_info.value)

    def test_non_json_body(self, settings, batch_request):
        session = FakeSession(FakeResponse(status_code=200, payload=None, text="<html>oops</html>"))
        with pytest.raises(OpaqueBackendError):
            client_for(settings, session).process_batch(batch_request)


class TestParseBatchResponse:
    def test_no_more_rows_reply(self, batch_request):
        result = parse_batch_response(
            {"success": True, "message": "No more rows to process", "processed": 0,
             "offset": 200, "totalCount": 200},
            batch_request,
        )
        assert result.next_offset == 200
        assert result.has_more is False
        assert result.total_count == 200

    def test_restart_sentinel(self, batch_request):
        result = parse_batch_response(
            {"processed": 37, "nextOffset": 0, "hasMore": True, "totalCount": 900,
             "message": "Processed 37 rows. Restart from offset=0 to continue"},
            batch_request,
        )
        assert result.restart_sweep

    def test_zero_offset_without_sentinel(self, batch_request):
        result = parse_batch_response(
            {"processed": 0, "nextOffset": 0, "hasMore": False, "totalCount": 0},
            batch_request,
        )
        assert not result.restart_sweep

    def test_non_object_payload(self, batch_request):
        with pytest.raises(OpaqueBackendError):
            parse_batch_response(["not", "an", "object"], batch_request)
