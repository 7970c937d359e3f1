from __future__ import annotations

import os
import tarfile
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest

from buildsubmit.api import RemoteServiceError
from buildsubmit.builder import GenericJobPayloadBuilder
from buildsubmit.collaborators import (
    ArtifactUploader,
    CredentialsProvider,
    LocalBuildRunner,
    ProjectConfigurator,
    RemoteJobSubmission,
    SubmissionResult,
    VersionControlClient,
)
from buildsubmit.errors import (
    DeprecatedJobFormatRejection,
    MaintenanceRejection,
    NonInteractiveModeError,
    PendingJobQuotaRejection,
    ServerRejection,
    TierDisabledRejection,
    ValidationError,
)
from buildsubmit.models import (
    BuildContext,
    BuildProfile,
    CredentialsPolicy,
    CredentialsResult,
    CredentialsSource,
    JobHandle,
    LocalBuildOptions,
    LocalBuildRun,
    Platform,
)
from buildsubmit.orchestrator import (
    GENERIC_REJECTION_MESSAGE,
    SubmissionOrchestrator,
    classify_server_error,
)

from fakes import FakePrompter, RecordingProgress, make_job


class _Events:
    def __init__(self) -> None:
        self.items: List[str] = []


class _Credentials(CredentialsProvider):
    def __init__(self, events: _Events, error: Optional[Exception] = None) -> None:
        self.events = events
        self.error = error
        self.policies: List[CredentialsPolicy] = []

    def resolve(self, policy: CredentialsPolicy) -> CredentialsResult:
        self.events.items.append("credentials")
        self.policies.append(policy)
        if self.error is not None:
            raise self.error
        return CredentialsResult(source=policy.source, credentials={"keystore": "abc"})


class _Configurator(ProjectConfigurator):
    def __init__(self, events: _Events) -> None:
        self.events = events

    def ensure_configured(self, context: BuildContext) -> None:
        self.events.items.append("configure")


class _Vcs(VersionControlClient):
    def __init__(self, events: _Events, commit_required: bool = False) -> None:
        self.events = events
        self.commit_required = commit_required
        self.commits: List[str] = []

    def is_commit_required(self) -> bool:
        self.events.items.append("vcs-check")
        return self.commit_required

    def commit_and_review(self, message: str) -> None:
        self.events.items.append("commit")
        self.commits.append(message)

    def get_commit_hash(self) -> Optional[str]:
        return "abc123"


class _Uploader(ArtifactUploader):
    def __init__(self, events: _Events, error: Optional[Exception] = None) -> None:
        self.events = events
        self.error = error
        self.paths: List[str] = []
        self.members: List[str] = []

    def upload(self, local_path: str) -> str:
        self.events.items.append("upload")
        self.paths.append(local_path)
        with tarfile.open(local_path, "r:gz") as archive:
            self.members = archive.getnames()
        if self.error is not None:
            raise self.error
        return "bucket/key-1"


class _Submission(RemoteJobSubmission):
    def __init__(
        self,
        events: _Events,
        error: Optional[Exception] = None,
        notices: Optional[List[str]] = None,
    ) -> None:
        self.events = events
        self.error = error
        self.notices = notices or []
        self.calls: List[Dict[str, Any]] = []

    def create(
        self,
        project_id: str,
        platform: Platform,
        payload: Dict[str, Any],
        metadata: Dict[str, Any],
    ) -> SubmissionResult:
        self.events.items.append("create")
        self.calls.append(
            {"project_id": project_id, "platform": platform, "payload": payload, "metadata": metadata}
        )
        if self.error is not None:
            raise self.error
        return SubmissionResult(
            job=make_job("job-1", platform=platform, status="new"),
            deprecation_notices=list(self.notices),
        )


class _LocalRunner(LocalBuildRunner):
    def __init__(self, events: _Events) -> None:
        self.events = events
        self.archive_existed: Optional[bool] = None

    def run(self, payload: Dict[str, Any], options: LocalBuildOptions) -> LocalBuildRun:
        self.events.items.append("local-run")
        self.archive_existed = os.path.exists(payload["projectArchive"]["path"])
        return LocalBuildRun(platform=Platform(payload["platform"]), returncode=0)


def _project(tmp_path: Path) -> Path:
    project = tmp_path / "app"
    (project / ".git").mkdir(parents=True)
    (project / ".git" / "HEAD").write_text("ref: refs/heads/main\n", encoding="utf-8")
    (project / "src").mkdir()
    (project / "src" / "index.js").write_text("console.log('hi')\n", encoding="utf-8")
    (project / "eas.json").write_text('{"build": {"production": {}}}', encoding="utf-8")
    return project


def _context(project: Path, **overrides: Any) -> BuildContext:
    values: Dict[str, Any] = {
        "platform": Platform.IOS,
        "project_id": "p1",
        "project_dir": str(project),
        "username": "tester",
    }
    values.update(overrides)
    return BuildContext(**values)


def _orchestrator(
    events: _Events,
    tmp_path: Path,
    *,
    credentials: Optional[_Credentials] = None,
    vcs: Optional[_Vcs] = None,
    uploader: Optional[_Uploader] = None,
    submission: Optional[_Submission] = None,
    local_runner: Optional[_LocalRunner] = None,
    prompter: Optional[FakePrompter] = None,
    progress: Optional[RecordingProgress] = None,
) -> SubmissionOrchestrator:
    work_dir = tmp_path / "work"
    work_dir.mkdir(exist_ok=True)
    return SubmissionOrchestrator(
        credentials_provider=credentials or _Credentials(events),
        project_configurator=_Configurator(events),
        vcs=vcs or _Vcs(events),
        uploader=uploader or _Uploader(events),
        payload_builder=GenericJobPayloadBuilder(),
        submission=submission or _Submission(events),
        local_runner=local_runner or _LocalRunner(events),
        prompter=prompter or FakePrompter(),
        progress=progress or RecordingProgress(),
        client_version="9.9.9",
        work_dir=str(work_dir),
    )


def test_remote_submit_runs_phases_in_order(tmp_path: Path) -> None:
    events = _Events()
    uploader = _Uploader(events)
    submission = _Submission(events)
    orchestrator = _orchestrator(events, tmp_path, uploader=uploader, submission=submission)

    handle = orchestrator.submit(_context(_project(tmp_path)))

    assert isinstance(handle, JobHandle)
    assert handle.job_id == "job-1"
    assert handle.platform is Platform.IOS
    assert events.items == ["credentials", "configure", "vcs-check", "upload", "create"]
    assert not os.path.exists(uploader.paths[0])
    assert "project/src/index.js" in uploader.members
    assert not any(name.startswith("project/.git") for name in uploader.members)

    call = submission.calls[0]
    assert call["payload"]["projectArchive"] == {"type": "S3", "bucketKey": "bucket/key-1"}
    assert call["payload"]["secrets"]["source"] == "remote"
    assert call["metadata"]["cliVersion"] == "9.9.9"
    assert call["metadata"]["gitCommitHash"] == "abc123"
    assert call["metadata"]["credentialsSource"] == "remote"


def test_profile_without_credentials_and_skipped_configuration(tmp_path: Path) -> None:
    events = _Events()
    submission = _Submission(events)
    orchestrator = _orchestrator(events, tmp_path, submission=submission)
    context = _context(
        _project(tmp_path),
        profile=BuildProfile(without_credentials=True),
        skip_project_configuration=True,
    )

    orchestrator.submit(context)

    assert events.items == ["vcs-check", "upload", "create"]
    assert "secrets" not in submission.calls[0]["payload"]
    assert submission.calls[0]["metadata"]["credentialsSource"] is None


def test_local_credentials_policy_is_forwarded(tmp_path: Path) -> None:
    events = _Events()
    credentials = _Credentials(events)
    orchestrator = _orchestrator(events, tmp_path, credentials=credentials)
    project = _project(tmp_path)

    orchestrator.submit(
        _context(
            project,
            platform=Platform.ANDROID,
            profile=BuildProfile(credentials_source=CredentialsSource.LOCAL),
            non_interactive=True,
        )
    )

    policy = credentials.policies[0]
    assert policy.platform is Platform.ANDROID
    assert policy.source is CredentialsSource.LOCAL
    assert policy.project_dir == str(project)
    assert policy.non_interactive is True


def test_credentials_failure_stops_before_any_upload(tmp_path: Path) -> None:
    events = _Events()
    orchestrator = _orchestrator(
        events, tmp_path, credentials=_Credentials(events, error=ValidationError("no keystore"))
    )
    with pytest.raises(ValidationError, match="no keystore"):
        orchestrator.submit(_context(_project(tmp_path)))
    assert events.items == ["credentials"]


def test_upload_failure_removes_tarball_and_never_submits(tmp_path: Path) -> None:
    events = _Events()
    uploader = _Uploader(events, error=OSError("network down"))
    orchestrator = _orchestrator(events, tmp_path, uploader=uploader)

    with pytest.raises(OSError, match="network down"):
        orchestrator.submit(_context(_project(tmp_path)))

    assert "create" not in events.items
    assert not os.path.exists(uploader.paths[0])
    assert os.listdir(tmp_path / "work") == []


def test_commit_required_in_non_interactive_mode_fails(tmp_path: Path) -> None:
    events = _Events()
    orchestrator = _orchestrator(events, tmp_path, vcs=_Vcs(events, commit_required=True))
    with pytest.raises(NonInteractiveModeError):
        orchestrator.submit(_context(_project(tmp_path), non_interactive=True))
    assert "upload" not in events.items
    assert "create" not in events.items


def test_commit_required_confirmed_commits_before_upload(tmp_path: Path) -> None:
    events = _Events()
    vcs = _Vcs(events, commit_required=True)
    orchestrator = _orchestrator(
        events, tmp_path, vcs=vcs, prompter=FakePrompter(confirms=[True])
    )
    orchestrator.submit(_context(_project(tmp_path)))
    assert events.items.index("commit") < events.items.index("upload")
    assert vcs.commits == ["[build] Run build for iOS"]


def test_commit_required_declined_fails(tmp_path: Path) -> None:
    events = _Events()
    orchestrator = _orchestrator(
        events,
        tmp_path,
        vcs=_Vcs(events, commit_required=True),
        prompter=FakePrompter(confirms=[False]),
    )
    with pytest.raises(ValidationError):
        orchestrator.submit(_context(_project(tmp_path)))
    assert "create" not in events.items


def test_local_build_never_contacts_service_and_cleans_up(tmp_path: Path) -> None:
    events = _Events()
    runner = _LocalRunner(events)
    orchestrator = _orchestrator(events, tmp_path, local_runner=runner)

    outcome = orchestrator.submit(
        _context(_project(tmp_path), local_build=LocalBuildOptions(enable=True))
    )

    assert isinstance(outcome, LocalBuildRun)
    assert outcome.ok
    assert "upload" not in events.items
    assert "create" not in events.items
    assert runner.archive_existed is True
    assert os.listdir(tmp_path / "work") == []


def test_prepare_then_dispatch_sends_once(tmp_path: Path) -> None:
    events = _Events()
    submission = _Submission(events)
    orchestrator = _orchestrator(events, tmp_path, submission=submission)

    prepared = orchestrator.prepare(_context(_project(tmp_path)))
    assert "create" not in events.items
    orchestrator.dispatch(prepared)
    assert events.items.count("create") == 1
    assert events.items.count("upload") == 1


@pytest.mark.parametrize(
    "code,expected_type",
    [
        ("TURTLE_DEPRECATED_JOB_FORMAT", DeprecatedJobFormatRejection),
        ("EAS_BUILD_DOWN_FOR_MAINTENANCE", MaintenanceRejection),
        ("EAS_BUILD_FREE_TIER_DISABLED", TierDisabledRejection),
        ("EAS_BUILD_TOO_MANY_PENDING_BUILDS", PendingJobQuotaRejection),
    ],
)
def test_known_server_codes_are_classified(code: str, expected_type: type) -> None:
    rejection = classify_server_error(RemoteServiceError("boom", code=code), Platform.ANDROID)
    assert type(rejection) is expected_type
    assert rejection.code == code
    assert rejection.platform is Platform.ANDROID


def test_unknown_server_code_maps_to_generic_rejection() -> None:
    rejection = classify_server_error(
        RemoteServiceError("weird", code="SOMETHING_NEW"), Platform.IOS
    )
    assert type(rejection) is ServerRejection
    assert str(rejection).startswith(GENERIC_REJECTION_MESSAGE)


def test_pending_quota_rejection_names_platform(tmp_path: Path) -> None:
    events = _Events()
    progress = RecordingProgress()
    submission = _Submission(
        events, error=RemoteServiceError("quota", code="EAS_BUILD_TOO_MANY_PENDING_BUILDS")
    )
    orchestrator = _orchestrator(events, tmp_path, submission=submission, progress=progress)

    with pytest.raises(PendingJobQuotaRejection) as excinfo:
        orchestrator.submit(_context(_project(tmp_path), platform=Platform.IOS))

    message = str(excinfo.value)
    assert "iOS" in message
    assert "Try again later" in message
    assert progress.messages("error") == [message]


def test_deprecation_notices_are_reported(tmp_path: Path) -> None:
    events = _Events()
    progress = RecordingProgress()
    submission = _Submission(events, notices=["Old job format is deprecated"])
    orchestrator = _orchestrator(events, tmp_path, submission=submission, progress=progress)

    handle = orchestrator.submit(_context(_project(tmp_path)))

    assert handle.deprecation_notices == ["Old job format is deprecated"]
    assert "Old job format is deprecated" in progress.messages("warn")
