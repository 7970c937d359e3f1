from __future__ import annotations

"""HTTP transport for the remote build service.

The service speaks JSON over HTTPS. Failed requests carry a body of the form
`{"error": {"code": "...", "message": "..."}}`; the code is preserved on
`RemoteServiceError` so callers can classify rejections.
"""

import json
import os
from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping
from urllib.error import HTTPError, URLError
from urllib.parse import quote, urlencode
from urllib.request import Request, urlopen

from .collaborators import (
    ArtifactUploader,
    RemoteJobCatalog,
    RemoteJobSubmission,
    SubmissionResult,
)
from .errors import NotFoundError
from .models import JobStatus, Platform, RemoteJob

DEFAULT_API_URL = "https://api.expo.dev/v2"


class ApiError(RuntimeError):
    """Raised when the build service cannot be reached or answers unexpectedly."""


class RemoteServiceError(ApiError):
    """Raised when the build service answers with an error payload."""

    def __init__(self, message: str, *, code: str | None = None, status: int | None = None) -> None:
        super().__init__(message)
        self.code = code
        self.status = status


class UploadKind(str, Enum):
    """Upload sessions supported by the build service."""

    PROJECT_SOURCES = "EAS_BUILD_PROJECT_SOURCES"
    APP_ARCHIVE = "EAS_SUBMIT_APP_ARCHIVE"


@dataclass
class UploadSession:
    upload_url: str
    bucket_key: str
    url: str | None = None


def _decode_error(body: bytes) -> tuple[str | None, str | None]:
    try:
        payload = json.loads(body.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        return None, None
    if not isinstance(payload, dict):
        return None, None
    error = payload.get("error")
    if isinstance(error, dict):
        code = error.get("code")
        message = error.get("message")
        return (str(code) if code else None, str(message) if message else None)
    return None, None


class BuildServiceClient(RemoteJobCatalog, RemoteJobSubmission):
    """Client for build listing, lookup, creation, uploads and credentials."""

    def __init__(
        self,
        *,
        api_url: str = DEFAULT_API_URL,
        access_token: str | None = None,
        timeout: float = 30.0,
        user_agent: str = "buildsubmit",
    ) -> None:
        if timeout <= 0:
            raise ValueError("timeout must be positive")
        self.api_url = api_url.rstrip("/")
        self.access_token = access_token
        self.timeout = timeout
        self.user_agent = user_agent

    def _request(
        self,
        method: str,
        path: str,
        *,
        query: Mapping[str, Any] | None = None,
        body: Any = None,
    ) -> Any:
        url = self.api_url + path
        if query:
            url += "?" + urlencode({k: v for k, v in query.items() if v is not None})
        headers = {"Accept": "application/json", "User-Agent": self.user_agent}
        data: bytes | None = None
        if body is not None:
            data = json.dumps(body).encode("utf-8")
            headers["Content-Type"] = "application/json"
        if self.access_token:
            headers["Authorization"] = f"Bearer {self.access_token}"

        request = Request(url, data=data, headers=headers, method=method)
        try:
            with urlopen(request, timeout=self.timeout) as response:
                raw = response.read()
        except HTTPError as exc:
            code, message = _decode_error(exc.read())
            if exc.code == 404 and code is None:
                raise NotFoundError(message or f"{method} {path}: not found") from exc
            raise RemoteServiceError(
                message or f"{method} {path} failed with HTTP {exc.code}",
                code=code,
                status=exc.code,
            ) from exc
        except (URLError, OSError) as exc:
            raise ApiError(f"{method} {path} failed: {exc}") from exc

        if not raw:
            return None
        try:
            return json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as exc:
            raise ApiError(f"{method} {path} returned invalid JSON") from exc

    def get_recent(
        self, platform: Platform, project_id: str, limit: int | None = None
    ) -> list[RemoteJob]:
        if limit is not None and limit < 1:
            raise ValueError("limit must be positive")
        payload = self._request(
            "GET",
            f"/projects/{quote(project_id, safe='')}/builds",
            query={
                "platform": platform.value,
                "status": JobStatus.FINISHED.value,
                "limit": limit,
            },
        )
        builds = payload.get("builds", []) if isinstance(payload, dict) else []
        jobs = [RemoteJob.from_dict(item) for item in builds]
        jobs.sort(
            key=lambda job: job.updated_at.timestamp() if job.updated_at else 0.0,
            reverse=True,
        )
        return jobs[:limit] if limit is not None else jobs

    def get_by_id(self, job_id: str) -> RemoteJob:
        payload = self._request("GET", f"/builds/{quote(job_id, safe='')}")
        if not isinstance(payload, dict) or "build" not in payload:
            raise ApiError(f"unexpected response for build {job_id}")
        return RemoteJob.from_dict(payload["build"])

    def create(
        self,
        project_id: str,
        platform: Platform,
        payload: dict[str, Any],
        metadata: dict[str, Any],
    ) -> SubmissionResult:
        response = self._request(
            "POST",
            f"/projects/{quote(project_id, safe='')}/builds",
            body={"platform": platform.value, "job": payload, "metadata": metadata},
        )
        if not isinstance(response, dict) or "build" not in response:
            raise ApiError("unexpected response while creating build")
        notices = [
            str(item.get("message", item)) if isinstance(item, dict) else str(item)
            for item in response.get("deprecationInfo") or []
        ]
        return SubmissionResult(
            job=RemoteJob.from_dict(response["build"]),
            deprecation_notices=notices,
        )

    def create_upload_session(self, kind: UploadKind) -> UploadSession:
        response = self._request("POST", "/upload-sessions", body={"type": kind.value})
        if not isinstance(response, dict) or "uploadUrl" not in response:
            raise ApiError("unexpected response while creating upload session")
        return UploadSession(
            upload_url=str(response["uploadUrl"]),
            bucket_key=str(response.get("bucketKey", "")),
            url=response.get("url"),
        )

    def upload_file(self, kind: UploadKind, local_path: str) -> UploadSession:
        session = self.create_upload_session(kind)
        with open(local_path, "rb") as fp:
            data = fp.read()
        request = Request(
            session.upload_url,
            data=data,
            headers={
                "Content-Type": "application/octet-stream",
                "Content-Length": str(len(data)),
            },
            method="PUT",
        )
        try:
            with urlopen(request, timeout=self.timeout) as response:
                response.read()
        except HTTPError as exc:
            raise RemoteServiceError(
                f"upload of {os.path.basename(local_path)} failed with HTTP {exc.code}",
                status=exc.code,
            ) from exc
        except (URLError, OSError) as exc:
            raise ApiError(f"upload of {os.path.basename(local_path)} failed: {exc}") from exc
        return session

    def get_credentials(self, platform: Platform, project_id: str) -> dict[str, Any]:
        response = self._request(
            "GET",
            f"/projects/{quote(project_id, safe='')}/credentials",
            query={"platform": platform.value},
        )
        if not isinstance(response, dict):
            raise ApiError("unexpected response while fetching credentials")
        credentials = response.get("credentials")
        if not isinstance(credentials, dict):
            raise NotFoundError(
                f"no {platform.display_name} credentials are configured for {project_id}"
            )
        return credentials


class ServiceArtifactUploader(ArtifactUploader):
    """Upload files through a `BuildServiceClient` upload session.

    App archives resolve to a download URL; project sources resolve to the
    bucket key the build farm reads from.
    """

    def __init__(self, client: BuildServiceClient, kind: UploadKind) -> None:
        self.client = client
        self.kind = kind

    def upload(self, local_path: str) -> str:
        session = self.client.upload_file(self.kind, local_path)
        if self.kind is UploadKind.APP_ARCHIVE:
            if not session.url:
                raise ApiError("upload session did not return an archive URL")
            return session.url
        if not session.bucket_key:
            raise ApiError("upload session did not return a bucket key")
        return session.bucket_key
