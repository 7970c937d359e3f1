from __future__ import annotations

"""Two-phase build submission: prepare everything locally, then dispatch.

`prepare` gathers credentials, validates the project configuration, commits
pending changes if required, packages (and uploads) the project sources,
collects metadata and builds the job payload. Nothing reaches the build
service's build endpoint before `prepare` has fully succeeded. `dispatch`
sends the prepared job once, or hands it to the local runner.
"""

from typing import Any, Callable, Union

from .api import RemoteServiceError
from .builder import collect_build_metadata
from .collaborators import (
    ArtifactUploader,
    CredentialsProvider,
    InteractivePrompter,
    JobPayloadBuilder,
    LocalBuildRunner,
    ProjectConfigurator,
    RemoteJobSubmission,
    VersionControlClient,
)
from .errors import (
    DeprecatedJobFormatRejection,
    MaintenanceRejection,
    NonInteractiveModeError,
    PendingJobQuotaRejection,
    ServerRejection,
    TierDisabledRejection,
    ValidationError,
)
from .models import (
    BuildContext,
    CredentialsPolicy,
    CredentialsResult,
    JobData,
    JobHandle,
    LocalBuildRun,
    Platform,
    PreparedBuild,
    ProjectArchive,
    ProjectArchiveType,
)
from .progress import NullProgressSink, ProgressSink
from .repository import format_bytes, make_project_tarball, remove_tarball

STATUS_PAGE_URL = "https://status.expo.dev/"

_REJECTIONS: dict[str, tuple[type[ServerRejection], Callable[[Platform], str]]] = {
    "TURTLE_DEPRECATED_JOB_FORMAT": (
        DeprecatedJobFormatRejection,
        lambda platform: "The build service API has changed, please upgrade to the latest client version.",
    ),
    "EAS_BUILD_DOWN_FOR_MAINTENANCE": (
        MaintenanceRejection,
        lambda platform: (
            "The build service is down for maintenance, please try again later. "
            f"Check {STATUS_PAGE_URL} for updates."
        ),
    ),
    "EAS_BUILD_FREE_TIER_DISABLED": (
        TierDisabledRejection,
        lambda platform: (
            "The build service free tier is temporarily disabled, please try again later. "
            f"Check {STATUS_PAGE_URL} for updates."
        ),
    ),
    "EAS_BUILD_TOO_MANY_PENDING_BUILDS": (
        PendingJobQuotaRejection,
        lambda platform: (
            "You have already reached the maximum number of pending "
            f"{platform.display_name} builds for your account. Try again later."
        ),
    ),
}

GENERIC_REJECTION_MESSAGE = (
    "Build request failed. Make sure you are using the latest client version. "
    "If the problem persists, please report the issue."
)

SubmitOutcome = Union[JobHandle, LocalBuildRun]


def classify_server_error(error: RemoteServiceError, platform: Platform) -> ServerRejection:
    """Map a build service error code to its rejection type and message."""
    code = error.code
    if code is not None and code in _REJECTIONS:
        rejection_type, render = _REJECTIONS[code]
        return rejection_type(render(platform), code=code, platform=platform)
    detail = f" ({error})" if str(error) else ""
    return ServerRejection(GENERIC_REJECTION_MESSAGE + detail, code=code, platform=platform)


class SubmissionOrchestrator:
    """Prepare and dispatch build jobs through the injected collaborators."""

    def __init__(
        self,
        *,
        credentials_provider: CredentialsProvider,
        project_configurator: ProjectConfigurator,
        vcs: VersionControlClient,
        uploader: ArtifactUploader,
        payload_builder: JobPayloadBuilder,
        submission: RemoteJobSubmission,
        local_runner: LocalBuildRunner,
        prompter: InteractivePrompter,
        progress: ProgressSink | None = None,
        client_version: str = "0.0.0",
        work_dir: str | None = None,
    ) -> None:
        self.credentials_provider = credentials_provider
        self.project_configurator = project_configurator
        self.vcs = vcs
        self.uploader = uploader
        self.payload_builder = payload_builder
        self.submission = submission
        self.local_runner = local_runner
        self.prompter = prompter
        self.progress = progress if progress is not None else NullProgressSink()
        self.client_version = client_version
        self.work_dir = work_dir

    def submit(self, context: BuildContext) -> SubmitOutcome:
        """Prepare and dispatch one build."""
        return self.dispatch(self.prepare(context))

    def prepare(self, context: BuildContext) -> PreparedBuild:
        """Run every local side effect needed before the build can be sent."""
        credentials = self._ensure_credentials(context)
        if not context.skip_project_configuration:
            self.progress.debug("validating project configuration")
            self.project_configurator.ensure_configured(context)
        self._ensure_changes_committed(context)

        project_archive = self._materialize_project(context)
        try:
            metadata = collect_build_metadata(
                context,
                credentials=credentials,
                client_version=self.client_version,
                commit_hash=self.vcs.get_commit_hash(),
            )
            payload = self.payload_builder.build_payload(
                context,
                JobData(project_archive=project_archive, credentials=credentials),
            )
        except BaseException:
            self._release_local_archive(project_archive)
            raise

        return PreparedBuild(
            context=context,
            payload=payload,
            metadata=metadata,
            project_archive=project_archive,
            credentials=credentials,
        )

    def dispatch(self, prepared: PreparedBuild) -> SubmitOutcome:
        """Send the prepared job to the build service or run it locally."""
        context = prepared.context
        if context.local_build.enable:
            try:
                self.progress.report(f"Starting local {context.platform.display_name} build")
                return self.local_runner.run(prepared.payload, context.local_build)
            finally:
                self._release_local_archive(prepared.project_archive)

        self.progress.debug(f"Starting {context.platform.display_name} build")
        try:
            result = self.submission.create(
                context.project_id,
                context.platform,
                prepared.payload,
                prepared.metadata,
            )
        except RemoteServiceError as exc:
            rejection = classify_server_error(exc, context.platform)
            self.progress.error(str(rejection))
            raise rejection from exc

        for notice in result.deprecation_notices:
            self.progress.warn(notice)
        return JobHandle(
            job_id=result.job.id,
            platform=context.platform,
            deprecation_notices=list(result.deprecation_notices),
            job=result.job,
        )

    def _ensure_credentials(self, context: BuildContext) -> CredentialsResult | None:
        profile = context.profile
        if profile.without_credentials:
            self.progress.debug("build profile opts out of credentials")
            return None
        self.progress.report(
            "Using %s credentials for %s"
            % (profile.credentials_source.value, context.platform.display_name)
        )
        return self.credentials_provider.resolve(
            CredentialsPolicy(
                platform=context.platform,
                project_id=context.project_id,
                source=profile.credentials_source,
                project_dir=context.project_dir,
                non_interactive=context.non_interactive,
            )
        )

    def _ensure_changes_committed(self, context: BuildContext) -> None:
        if not self.vcs.is_commit_required():
            return
        message = f"[build] Run build for {context.platform.display_name}"
        if context.non_interactive:
            raise NonInteractiveModeError(
                "uncommitted changes must be committed before building in non-interactive mode"
            )
        if not self.prompter.confirm("Commit all changes and proceed?"):
            raise ValidationError("commit your changes before running the build")
        self.vcs.commit_and_review(message)

    def _materialize_project(self, context: BuildContext) -> ProjectArchive:
        tarball = make_project_tarball(context.project_dir, work_dir=self.work_dir)
        if context.local_build.enable:
            return ProjectArchive(type=ProjectArchiveType.PATH, path=tarball.path)

        try:
            self.progress.report(f"Uploading to the build service ({format_bytes(tarball.size)})")
            bucket_key = self.uploader.upload(tarball.path)
        finally:
            remove_tarball(tarball.path)
        self.progress.succeed("Uploaded project sources")
        return ProjectArchive(type=ProjectArchiveType.S3, bucket_key=bucket_key)

    def _release_local_archive(self, project_archive: ProjectArchive) -> None:
        if project_archive.type is ProjectArchiveType.PATH:
            remove_tarball(project_archive.path)


def build_submit_summary(outcome: SubmitOutcome) -> dict[str, Any]:
    """Serialize a submission outcome for CLI output."""
    if isinstance(outcome, LocalBuildRun):
        return {"local": True, **outcome.to_dict()}
    return {"local": False, **outcome.to_dict()}
