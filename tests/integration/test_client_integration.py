"""Integration tests: restcall Client against the mock FastAPI server.

These go over real sockets, so they exercise the default httpx transport,
timeouts, redirects and chunked uploads end to end.
"""

from datetime import datetime, timezone
from pathlib import Path

import pytest

from restcall.client import Client
from restcall.config_loader import configure
from restcall.errors import HttpStatusError, ParseError, TransportError

SEEDED_WIDGET = "10000000-0000-0000-0000-000000000001"


class TestJsonResources:
    """CRUD against /widgets."""

    def test_get_object(self, server_client: Client) -> None:
        response = server_client.get(f"/widgets/{SEEDED_WIDGET}").ensure_success().as_json_object()

        assert response.status_code == 200
        assert response.body["name"] == "Gizmo Pro"
        assert response.content_type == "application/json"
        assert response.date is not None

    def test_get_array_with_query(self, server_client: Client) -> None:
        response = server_client.get("/widgets").param("category", "tools").as_json_array()

        assert [w["name"] for w in response.body] == ["Super Wrench"]
        assert response.header("x-total-count") == "1"

    def test_create_update_delete(self, server_client: Client) -> None:
        created = (
            server_client.post("/widgets")
            .json({"name": "Sprocket", "price": 3.5, "category": "parts"})
            .ensure_success()
            .as_json_object()
        )
        assert created.status_code == 201
        widget_id = created.body["id"]
        assert created.header("location") == f"/widgets/{widget_id}"

        updated = (
            server_client.put(f"/widgets/{widget_id}")
            .json({"price": 4.0})
            .ensure_success()
            .as_json_object()
        )
        assert updated.body["price"] == 4.0

        deleted = server_client.delete(f"/widgets/{widget_id}").ensure_success().as_json_object()
        assert deleted.status_code == 204
        assert deleted.body is None

        gone = server_client.get(f"/widgets/{widget_id}").as_json_object()
        assert gone.status_code == 404

    def test_not_found_with_ensure_success(self, server_client: Client) -> None:
        with pytest.raises(HttpStatusError) as exc_info:
            server_client.get("/widgets/does-not-exist").ensure_success().as_json_object()

        error = exc_info.value
        assert error.status_code == 404
        assert error.response.status_message == "Not Found"
        assert b"not_found" in error.response.content

    def test_validation_error_body_available(self, server_client: Client) -> None:
        response = server_client.post("/widgets").json({"name": ""}).as_json_object()

        assert response.status_code == 422
        assert "detail" in response.body


class TestBodiesAndHeaders:
    """What the server receives, via /echo."""

    def test_query_encoding(self, server_client: Client) -> None:
        response = server_client.get("/echo").param("q", "a b").param("n", 1).as_json_object()

        assert response.body["query"] == "q=a%20b&n=1"

    def test_form_post(self, server_client: Client) -> None:
        response = server_client.post("/echo").form({"user": "jo", "tags": ["a", "b"]}).as_json_object()

        assert response.body["body"] == "user=jo&tags=a&tags=b"
        assert response.body["headers"]["content-type"] == "application/x-www-form-urlencoded"

    def test_headers_from_every_scope(self, mock_server) -> None:
        configure(headers={"X-Process": "p"})
        client = Client(base_uri=mock_server.base_url, headers={"X-Client": "c"})

        response = client.get("/echo").header("X-Request", "r").as_json_object()

        headers = response.body["headers"]
        assert (headers["x-process"], headers["x-client"], headers["x-request"]) == ("p", "c", "r")
        assert headers["accept"] == "application/json"
        assert headers["user-agent"].startswith("restcall/")

    def test_file_upload_streamed(self, server_client: Client, tmp_path: Path) -> None:
        upload = tmp_path / "upload.txt"
        upload.write_bytes(b"0123456789" * 3000)

        response = server_client.put("/echo").body(upload).as_json_object()

        assert response.body["body_size"] == 30000
        assert response.body["headers"]["content-type"] == "application/octet-stream"

    def test_if_modified_since(self, server_client: Client) -> None:
        fresh = server_client.get("/conditional").as_json_object()
        cached = (
            server_client.get("/conditional")
            .if_modified_since(datetime(2024, 1, 1, tzinfo=timezone.utc))
            .as_void()
        )

        assert fresh.body == {"fresh": True}
        assert cached.status_code == 304


class TestResponseHandling:
    """Empty bodies, charsets, malformed JSON, redirects."""

    def test_empty_200_is_parse_error(self, server_client: Client) -> None:
        with pytest.raises(ParseError, match="no content to parse") as exc_info:
            server_client.get("/empty").as_json_object()

        assert exc_info.value.response.status_code == 200

    def test_empty_200_as_text(self, server_client: Client) -> None:
        assert server_client.get("/empty").as_text().body == ""

    def test_latin1_text(self, server_client: Client) -> None:
        assert server_client.get("/latin1").as_text().body == "café"

    def test_malformed_json(self, server_client: Client) -> None:
        with pytest.raises(ParseError) as exc_info:
            server_client.get("/not-json").as_json_object()

        assert exc_info.value.response.content == b"<html>oops</html>"

    def test_redirect_not_followed(self, server_client: Client) -> None:
        response = server_client.get("/redirect").as_void()

        assert response.status_code == 302
        assert response.header("location") == "/health"

    def test_redirect_followed_when_enabled(self, mock_server) -> None:
        client = Client(base_uri=mock_server.base_url, follow_redirects=True)

        response = client.get("/redirect").as_json_object()

        assert response.status_code == 200
        assert response.body["status"] == "healthy"


class TestTransportFailures:
    def test_read_timeout(self, server_client: Client) -> None:
        with pytest.raises(TransportError, match="timeout") as exc_info:
            server_client.get("/slow").param("delay", 2).read_timeout(0.2).as_json_object()

        assert exc_info.value.response.status_code is None

    def test_connection_refused(self) -> None:
        from tests.conftest import find_free_port

        client = Client(base_uri=f"http://127.0.0.1:{find_free_port()}")

        with pytest.raises(TransportError):
            client.get("/health").connect_timeout(1).as_void()
