from __future__ import annotations

import json
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, urlparse

import pytest

from buildsubmit.api import (
    ApiError,
    BuildServiceClient,
    RemoteServiceError,
    ServiceArtifactUploader,
    UploadKind,
)
from buildsubmit.errors import NotFoundError
from buildsubmit.models import Platform


def _build(build_id: str, updated_at: str, status: str = "finished") -> dict[str, Any]:
    return {
        "id": build_id,
        "platform": "IOS",
        "status": status.upper(),
        "createdAt": "2026-10-01T10:00:00Z",
        "updatedAt": updated_at,
        "appVersion": "1.2.0",
        "buildProfile": "production",
        "artifacts": {"buildUrl": f"https://cdn.example/{build_id}.ipa"},
        "initiatingActor": {"displayName": "jane"},
    }


class _Handler(BaseHTTPRequestHandler):
    server: "_FakeBuildService"

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        return None

    def _reply(self, status: int, payload: Any = None) -> None:
        body = json.dumps(payload).encode("utf-8") if payload is not None else b""
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _body(self) -> bytes:
        length = int(self.headers.get("Content-Length") or 0)
        return self.rfile.read(length) if length else b""

    def do_GET(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        self.server.requests.append(("GET", parsed.path, parse_qs(parsed.query), dict(self.headers)))
        if parsed.path == "/v2/projects/p1/builds":
            self._reply(
                200,
                {
                    "builds": [
                        _build("older", "2026-10-02T10:00:00Z"),
                        _build("newer", "2026-10-05T10:00:00Z"),
                    ]
                },
            )
        elif parsed.path == "/v2/builds/b1":
            self._reply(200, {"build": _build("b1", "2026-10-05T10:00:00Z", status="in_progress")})
        elif parsed.path == "/v2/projects/p1/credentials":
            self._reply(200, {"credentials": {"distributionCertificate": "cert"}})
        elif parsed.path == "/v2/projects/empty/credentials":
            self._reply(200, {})
        elif parsed.path == "/v2/broken":
            self.send_response(200)
            self.send_header("Content-Length", "3")
            self.end_headers()
            self.wfile.write(b"{{{")
        else:
            self._reply(404)

    def do_POST(self) -> None:  # noqa: N802
        body = json.loads(self._body().decode("utf-8"))
        self.server.requests.append(("POST", self.path, body, dict(self.headers)))
        if self.path == "/v2/projects/p1/builds":
            self._reply(
                200,
                {
                    "build": _build("new-1", "2026-10-05T10:00:00Z", status="new"),
                    "deprecationInfo": [{"message": "job format v1 is deprecated"}],
                },
            )
        elif self.path == "/v2/projects/busy/builds":
            self._reply(
                429,
                {"error": {"code": "EAS_BUILD_TOO_MANY_PENDING_BUILDS", "message": "too many"}},
            )
        elif self.path == "/v2/upload-sessions":
            port = self.server.server_address[1]
            self._reply(
                200,
                {
                    "uploadUrl": f"http://127.0.0.1:{port}/upload/obj-1",
                    "bucketKey": "obj-1",
                    "url": "https://cdn.example/obj-1",
                },
            )
        else:
            self._reply(404)

    def do_PUT(self) -> None:  # noqa: N802
        self.server.uploads.append((self.path, self._body()))
        self._reply(200)


class _FakeBuildService(HTTPServer):
    def __init__(self) -> None:
        super().__init__(("127.0.0.1", 0), _Handler)
        self.requests: list[tuple] = []
        self.uploads: list[tuple[str, bytes]] = []


@pytest.fixture
def service():
    server = _FakeBuildService()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield server
    finally:
        server.shutdown()
        server.server_close()


def _client(server: _FakeBuildService) -> BuildServiceClient:
    port = server.server_address[1]
    return BuildServiceClient(
        api_url=f"http://127.0.0.1:{port}/v2/", access_token="secret", timeout=5.0
    )


def test_get_recent_sorts_newest_first_and_sends_filters(service: _FakeBuildService) -> None:
    jobs = _client(service).get_recent(Platform.IOS, "p1", limit=4)

    assert [job.id for job in jobs] == ["newer", "older"]
    assert jobs[0].platform is Platform.IOS
    assert jobs[0].status == "finished"
    assert jobs[0].artifacts.build_url == "https://cdn.example/newer.ipa"
    assert jobs[0].initiated_by == "jane"

    method, path, query, headers = service.requests[0]
    assert (method, path) == ("GET", "/v2/projects/p1/builds")
    assert query == {"platform": ["ios"], "status": ["finished"], "limit": ["4"]}
    assert headers["Authorization"] == "Bearer secret"


def test_get_by_id(service: _FakeBuildService) -> None:
    job = _client(service).get_by_id("b1")
    assert job.id == "b1"
    assert job.status == "in_progress"


def test_missing_build_raises_not_found(service: _FakeBuildService) -> None:
    with pytest.raises(NotFoundError):
        _client(service).get_by_id("missing")


def test_create_returns_job_and_deprecation_notices(service: _FakeBuildService) -> None:
    result = _client(service).create(
        "p1", Platform.IOS, {"type": "managed"}, {"cliVersion": "1.0"}
    )
    assert result.job.id == "new-1"
    assert result.deprecation_notices == ["job format v1 is deprecated"]
    _, _, body, _ = service.requests[0]
    assert body == {"platform": "ios", "job": {"type": "managed"}, "metadata": {"cliVersion": "1.0"}}


def test_error_payload_code_is_preserved(service: _FakeBuildService) -> None:
    with pytest.raises(RemoteServiceError) as excinfo:
        _client(service).create("busy", Platform.ANDROID, {}, {})
    assert excinfo.value.code == "EAS_BUILD_TOO_MANY_PENDING_BUILDS"
    assert excinfo.value.status == 429
    assert str(excinfo.value) == "too many"


def test_invalid_json_raises_api_error(service: _FakeBuildService) -> None:
    with pytest.raises(ApiError, match="invalid JSON"):
        _client(service)._request("GET", "/broken")


def test_unreachable_service_raises_api_error() -> None:
    server = _FakeBuildService()
    port = server.server_address[1]
    server.server_close()
    client = BuildServiceClient(api_url=f"http://127.0.0.1:{port}/v2", timeout=2.0)
    with pytest.raises(ApiError) as excinfo:
        client.get_by_id("b1")
    assert not isinstance(excinfo.value, RemoteServiceError)


def test_credentials_lookup(service: _FakeBuildService) -> None:
    client = _client(service)
    assert client.get_credentials(Platform.IOS, "p1") == {"distributionCertificate": "cert"}
    with pytest.raises(NotFoundError):
        client.get_credentials(Platform.IOS, "empty")


def test_uploader_returns_url_or_bucket_key(service: _FakeBuildService, tmp_path: Path) -> None:
    archive = tmp_path / "app.ipa"
    archive.write_bytes(b"ipa-bytes")
    client = _client(service)

    assert ServiceArtifactUploader(client, UploadKind.APP_ARCHIVE).upload(str(archive)) == (
        "https://cdn.example/obj-1"
    )
    assert ServiceArtifactUploader(client, UploadKind.PROJECT_SOURCES).upload(str(archive)) == "obj-1"
    assert service.uploads == [("/upload/obj-1", b"ipa-bytes"), ("/upload/obj-1", b"ipa-bytes")]
    sessions = [body for method, path, body, _ in service.requests if path == "/v2/upload-sessions"]
    assert sessions == [{"type": "EAS_SUBMIT_APP_ARCHIVE"}, {"type": "EAS_BUILD_PROJECT_SOURCES"}]


def test_client_rejects_non_positive_timeout() -> None:
    with pytest.raises(ValueError):
        BuildServiceClient(timeout=0)
