from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping


class Platform(str, Enum):
    """Target platforms accepted by the build service."""

    ANDROID = "android"
    IOS = "ios"

    @property
    def display_name(self) -> str:
        return "Android" if self is Platform.ANDROID else "iOS"


class IntentKind(str, Enum):
    """Variants of a submission intent."""

    URL = "url"
    LATEST = "latest"
    PATH = "path"
    BUILD_ID = "build_id"
    BUILD_LIST = "build_list"
    PROMPT = "prompt"


_INTENT_PAYLOAD_FIELDS = {
    IntentKind.URL: "url",
    IntentKind.PATH: "path",
    IntentKind.BUILD_ID: "build_id",
}


@dataclass(frozen=True)
class SubmissionIntent:
    """The user's declared archive source, before resolution.

    Exactly the payload field required by `kind` is set (`url` for URL, `path`
    for PATH, `build_id` for BUILD_ID); the other variants carry none.
    """

    kind: IntentKind
    platform: Platform
    project_id: str
    non_interactive: bool = False
    url: str | None = None
    path: str | None = None
    build_id: str | None = None

    def __post_init__(self) -> None:
        required = _INTENT_PAYLOAD_FIELDS.get(self.kind)
        for name in _INTENT_PAYLOAD_FIELDS.values():
            value = getattr(self, name)
            if name == required:
                if value is None:
                    raise ValueError(f"{self.kind.value} intent requires {name}")
            elif value is not None:
                raise ValueError(f"{self.kind.value} intent cannot carry {name}")

    def transition(self, kind: IntentKind, **payload: str) -> "SubmissionIntent":
        """Return a new intent of `kind` sharing platform, project and mode."""
        cleared = {name: None for name in _INTENT_PAYLOAD_FIELDS.values()}
        cleared.update(payload)
        return dataclasses.replace(self, kind=kind, **cleared)


class JobStatus(str, Enum):
    """Build status as reported by the build service."""

    NEW = "new"
    IN_QUEUE = "in_queue"
    IN_PROGRESS = "in_progress"
    FINISHED = "finished"
    ERRORED = "errored"
    CANCELED = "canceled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset(
    {JobStatus.FINISHED, JobStatus.ERRORED, JobStatus.CANCELED}
)


def _parse_timestamp(value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _format_timestamp(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


@dataclass
class JobError:
    """Error payload attached to an errored build."""

    error_code: str
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {"errorCode": self.error_code, "message": self.message}


@dataclass
class JobArtifacts:
    """Artifact manifest of a finished build."""

    build_url: str | None = None
    logs_url: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {"buildUrl": self.build_url, "logsUrl": self.logs_url}


@dataclass
class RemoteJob:
    """Read-only snapshot of one build owned by the build service.

    `status` keeps the raw service value so an unrecognized status can be
    detected by the tracker instead of failing at parse time.
    """

    id: str
    platform: Platform
    status: str
    created_at: datetime | None = None
    updated_at: datetime | None = None
    error: JobError | None = None
    artifacts: JobArtifacts | None = None
    app_version: str | None = None
    app_build_version: str | None = None
    sdk_version: str | None = None
    runtime_version: str | None = None
    profile: str | None = None
    release_channel: str | None = None
    initiated_by: str | None = None

    @classmethod
    def from_dict(cls, payload: Mapping[str, Any]) -> "RemoteJob":
        """Build a snapshot from the service JSON representation."""
        error_payload = payload.get("error")
        artifacts_payload = payload.get("artifacts")
        actor = payload.get("initiatingActor")
        return cls(
            id=str(payload["id"]),
            platform=Platform(str(payload["platform"]).lower()),
            status=str(payload["status"]).lower(),
            created_at=_parse_timestamp(payload.get("createdAt")),
            updated_at=_parse_timestamp(payload.get("updatedAt")),
            error=(
                JobError(
                    error_code=str(error_payload.get("errorCode", "UNKNOWN_ERROR")),
                    message=str(error_payload.get("message", "")),
                )
                if isinstance(error_payload, Mapping)
                else None
            ),
            artifacts=(
                JobArtifacts(
                    build_url=artifacts_payload.get("buildUrl"),
                    logs_url=artifacts_payload.get("logsUrl"),
                )
                if isinstance(artifacts_payload, Mapping)
                else None
            ),
            app_version=payload.get("appVersion"),
            app_build_version=payload.get("appBuildVersion"),
            sdk_version=payload.get("sdkVersion"),
            runtime_version=payload.get("runtimeVersion"),
            profile=payload.get("buildProfile"),
            release_channel=payload.get("releaseChannel"),
            initiated_by=(
                actor.get("displayName") if isinstance(actor, Mapping) else None
            ),
        )

    def to_dict(self) -> dict[str, Any]:
        """Serialize to the service JSON representation."""
        return {
            "id": self.id,
            "platform": self.platform.value,
            "status": self.status,
            "createdAt": _format_timestamp(self.created_at),
            "updatedAt": _format_timestamp(self.updated_at),
            "error": self.error.to_dict() if self.error is not None else None,
            "artifacts": self.artifacts.to_dict() if self.artifacts is not None else None,
            "appVersion": self.app_version,
            "appBuildVersion": self.app_build_version,
            "sdkVersion": self.sdk_version,
            "runtimeVersion": self.runtime_version,
            "buildProfile": self.profile,
            "releaseChannel": self.release_channel,
            "initiatingActor": (
                {"displayName": self.initiated_by} if self.initiated_by else None
            ),
        }


@dataclass(frozen=True)
class Archive:
    """Resolved, submission-ready reference: an archive URL or an existing build."""

    intent: SubmissionIntent
    url: str | None = None
    job: RemoteJob | None = None

    def __post_init__(self) -> None:
        if (self.url is None) == (self.job is None):
            raise ValueError("archive requires exactly one of url or job")

    def to_dict(self) -> dict[str, Any]:
        return {
            "source": self.intent.kind.value,
            "platform": self.intent.platform.value,
            "url": self.url,
            "build": self.job.to_dict() if self.job is not None else None,
        }


class CredentialsSource(str, Enum):
    """Where build credentials come from."""

    LOCAL = "local"
    REMOTE = "remote"


@dataclass(frozen=True)
class CredentialsPolicy:
    """What the orchestrator asks a credentials provider for."""

    platform: Platform
    project_id: str
    source: CredentialsSource
    project_dir: str = "."
    non_interactive: bool = False


@dataclass
class CredentialsResult:
    """Credentials and the source they were obtained from."""

    source: CredentialsSource
    credentials: Mapping[str, Any]


class ProjectArchiveType(str, Enum):
    """How the build farm reaches the project sources."""

    PATH = "PATH"
    S3 = "S3"


@dataclass(frozen=True)
class ProjectArchive:
    """Location of the packaged project sources for one build job."""

    type: ProjectArchiveType
    path: str | None = None
    bucket_key: str | None = None

    def __post_init__(self) -> None:
        if self.type is ProjectArchiveType.PATH and not self.path:
            raise ValueError("PATH project archive requires path")
        if self.type is ProjectArchiveType.S3 and not self.bucket_key:
            raise ValueError("S3 project archive requires bucket_key")

    def to_dict(self) -> dict[str, Any]:
        if self.type is ProjectArchiveType.PATH:
            return {"type": self.type.value, "path": self.path}
        return {"type": self.type.value, "bucketKey": self.bucket_key}


@dataclass
class BuildProfile:
    """Build profile settings consumed by the submission protocol."""

    name: str = "production"
    credentials_source: CredentialsSource = CredentialsSource.REMOTE
    without_credentials: bool = False
    distribution: str = "store"
    environment: Mapping[str, str] = field(default_factory=dict)


@dataclass
class LocalBuildOptions:
    """Local build mode; when enabled nothing is sent to the build service."""

    enable: bool = False
    command: list[str] = field(default_factory=lambda: ["eas-cli-local-build-plugin"])
    artifact_path: str | None = None
    skip_cleanup: bool = False


@dataclass
class BuildContext:
    """Everything one build submission needs besides its collaborators."""

    platform: Platform
    project_id: str
    project_dir: str = "."
    profile: BuildProfile = field(default_factory=BuildProfile)
    non_interactive: bool = False
    skip_project_configuration: bool = False
    local_build: LocalBuildOptions = field(default_factory=LocalBuildOptions)
    message: str | None = None
    username: str | None = None

    def __post_init__(self) -> None:
        if not self.project_id.strip():
            raise ValueError("project_id must be a non-empty string")


@dataclass
class JobData:
    """Inputs handed to the platform-specific payload builder."""

    project_archive: ProjectArchive
    credentials: CredentialsResult | None = None


@dataclass
class PreparedBuild:
    """Output of the prepare phase, ready to be dispatched exactly once."""

    context: BuildContext
    payload: dict[str, Any]
    metadata: dict[str, Any]
    project_archive: ProjectArchive
    credentials: CredentialsResult | None = None


@dataclass
class JobHandle:
    """A build created on the build service."""

    job_id: str
    platform: Platform
    deprecation_notices: list[str] = field(default_factory=list)
    job: RemoteJob | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "platform": self.platform.value,
            "deprecation_notices": list(self.deprecation_notices),
        }


@dataclass
class LocalBuildRun:
    """Result of a build executed by the local runner."""

    platform: Platform
    returncode: int
    artifact_path: str | None = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "platform": self.platform.value,
            "returncode": self.returncode,
            "artifact_path": self.artifact_path,
        }
