from __future__ import annotations

"""Archive source resolution.

`ArchiveSourceResolver.step` is a transition function: given one
`SubmissionIntent` it returns either a finished `Archive` or the next intent
to try. `resolve` drives it until an archive comes out. Every failed
resolution falls back to the interactive intent, except in non-interactive
sessions where the failure is raised as `NonInteractiveModeError`.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Union

from .api import RemoteServiceError
from .collaborators import (
    ArtifactUploader,
    Choice,
    InteractivePrompter,
    RemoteJobCatalog,
)
from .errors import (
    ExpiredArtifactError,
    NonInteractiveModeError,
    NotFoundError,
    PlatformMismatchError,
    SubmissionError,
    ValidationError,
)
from .locator import build_id_from_details_page, is_uuid_v4, validate_url
from .models import Archive, IntentKind, Platform, RemoteJob, SubmissionIntent
from .progress import NullProgressSink, ProgressSink

BUILD_LIST_ITEM_COUNT = 4
ARTIFACT_RETENTION_DAYS = 30
DEFAULT_MAX_TRANSITIONS = 20

EXAMPLE_ARCHIVE_URL = "https://url.to/your/archive.aab"
EXPIRED_ARTIFACT_WARNING = "This artifact has expired"
CLASSIC_BUILDS_URL = "https://docs.expo.dev/submit/classic-builds/"

Step = Union[Archive, SubmissionIntent]


def _example_archive_path(platform: Platform) -> str:
    return "/path/to/your/archive.%s" % ("ipa" if platform is Platform.IOS else "aab")


def _format_value(value: str | None) -> str:
    return value if value else "Unknown"


def format_build_choice(job: RemoteJob, expiry_date: datetime) -> Choice:
    """Describe a build as a list entry; builds past `expiry_date` are flagged."""
    finished_at = job.updated_at.strftime("%Y-%m-%d %H:%M:%S") if job.updated_at else "Unknown"
    build_version_label = (
        "Version code" if job.platform is Platform.ANDROID else "Build number"
    )
    details = [
        f"App version: {_format_value(job.app_version)}",
        f"{build_version_label}: {_format_value(job.app_build_version)}",
    ]
    if job.runtime_version:
        details.append(f"Runtime: {job.runtime_version}")
    if job.sdk_version:
        details.append(f"SDK: {job.sdk_version}")

    title = "\n".join(
        [
            f"ID: {job.id}, Finished at: {finished_at}",
            "\t" + ", ".join(details),
            f"\tProfile: {_format_value(job.profile)}, "
            f"Release channel: {_format_value(job.release_channel)}",
            f"\tAuthored by: {_format_value(job.initiated_by)}",
        ]
    )
    expired = _is_expired(job, expiry_date)
    return Choice(
        title=title,
        value=job,
        expired=expired,
        warning=EXPIRED_ARTIFACT_WARNING if expired else None,
    )


def _is_expired(job: RemoteJob, expiry_date: datetime) -> bool:
    return job.updated_at is not None and job.updated_at < expiry_date


class ArchiveSourceResolver:
    """Turn a submission intent into a concrete archive."""

    def __init__(
        self,
        *,
        catalog: RemoteJobCatalog,
        uploader: ArtifactUploader,
        prompter: InteractivePrompter,
        progress: ProgressSink | None = None,
        now: Callable[[], datetime] | None = None,
        max_transitions: int = DEFAULT_MAX_TRANSITIONS,
    ) -> None:
        if max_transitions < 1:
            raise ValueError("max_transitions must be positive")
        self.catalog = catalog
        self.uploader = uploader
        self.prompter = prompter
        self.progress = progress if progress is not None else NullProgressSink()
        self.now = now if now is not None else (lambda: datetime.now(timezone.utc))
        self.max_transitions = max_transitions

    def resolve(self, intent: SubmissionIntent) -> Archive:
        """Run transitions until an archive is produced."""
        current: Step = intent
        for _ in range(self.max_transitions):
            current = self.step(current)
            if isinstance(current, Archive):
                return current
        raise ValidationError(
            "could not resolve an archive after %d attempts" % self.max_transitions
        )

    def step(self, intent: SubmissionIntent) -> Step:
        """Perform one transition for `intent`."""
        handlers = {
            IntentKind.URL: self._handle_url,
            IntentKind.LATEST: self._handle_latest,
            IntentKind.PATH: self._handle_path,
            IntentKind.BUILD_ID: self._handle_build_id,
            IntentKind.BUILD_LIST: self._handle_build_list,
            IntentKind.PROMPT: self._handle_prompt,
        }
        return handlers[intent.kind](intent)

    def _fallback(self, intent: SubmissionIntent, cause: SubmissionError) -> SubmissionIntent:
        """Switch to interactive resolution, or raise when prompting is disabled."""
        self.progress.error(str(cause))
        if intent.non_interactive:
            raise NonInteractiveModeError(
                "%s; cannot ask for another archive in non-interactive mode" % cause
            ) from cause
        return intent.transition(IntentKind.PROMPT)

    def _handle_url(self, intent: SubmissionIntent) -> Step:
        url = intent.url or ""
        if not validate_url(url):
            return self._fallback(
                intent, ValidationError(f"The URL you provided is invalid: {url}")
            )

        build_id = build_id_from_details_page(url)
        if build_id is not None and self._use_build_id_from_url(intent, build_id):
            return intent.transition(IntentKind.BUILD_ID, build_id=build_id)
        return Archive(intent=intent, url=url)

    def _use_build_id_from_url(self, intent: SubmissionIntent, build_id: str) -> bool:
        self.progress.warn(f"It seems that you provided a build details page URL: {intent.url}")
        self.progress.warn("We expected to see the build artifact URL.")
        if intent.non_interactive:
            self.progress.warn(
                "Proceeding because you've run this command in non-interactive mode."
            )
            return False
        if self.prompter.confirm(f"Do you want to submit build {build_id} instead?"):
            return True
        self.progress.warn("The submission will most probably fail.")
        return False

    def _handle_latest(self, intent: SubmissionIntent) -> Step:
        recent = self.catalog.get_recent(intent.platform, intent.project_id, limit=1)
        if not recent:
            return self._fallback(
                intent,
                NotFoundError(
                    "Couldn't find any builds for this project on the build service. "
                    "It looks like you haven't run a build yet."
                ),
            )
        return Archive(intent=intent, job=recent[0])

    def _handle_path(self, intent: SubmissionIntent) -> Step:
        path = intent.path or ""
        if not self.uploader.exists(path):
            return self._fallback(intent, ValidationError(f"{path} doesn't exist"))

        self.progress.report("Uploading your app archive to the submission service")
        return Archive(intent=intent, url=self.uploader.upload(path))

    def _handle_build_id(self, intent: SubmissionIntent) -> Step:
        build_id = intent.build_id or ""
        if not is_uuid_v4(build_id):
            return self._fallback(
                intent, ValidationError(f"{build_id} is not a valid build ID")
            )
        try:
            job = self.catalog.get_by_id(build_id)
        except (NotFoundError, RemoteServiceError) as exc:
            self.progress.warn(
                "Are you sure that the given ID corresponds to a build from the build service?"
            )
            self.progress.warn(
                "Build IDs from the classic build service are not supported. "
                f"Learn more: {CLASSIC_BUILDS_URL}"
            )
            self.progress.debug(f"Original error: {exc}")
            return self._fallback(
                intent, NotFoundError(f"Could not find build with ID {build_id}")
            )

        if job.platform is not intent.platform:
            return self._fallback(
                intent,
                PlatformMismatchError(
                    "Build platform doesn't match! Expected %s build but got %s."
                    % (intent.platform.display_name, job.platform.display_name)
                ),
            )
        return Archive(intent=intent, job=job)

    def _handle_build_list(self, intent: SubmissionIntent) -> Step:
        expiry_date = self.now() - timedelta(days=ARTIFACT_RETENTION_DAYS)
        recent = self.catalog.get_recent(
            intent.platform, intent.project_id, limit=BUILD_LIST_ITEM_COUNT
        )
        if not recent:
            return self._fallback(
                intent,
                NotFoundError(
                    f"Couldn't find any {intent.platform.display_name} builds for this "
                    "project on the build service. It looks like you haven't run a build yet."
                ),
            )
        if all(_is_expired(job, expiry_date) for job in recent):
            return self._fallback(
                intent,
                ExpiredArtifactError(
                    "It looks like all of your build artifacts have expired. "
                    f"Build artifacts are kept only for {ARTIFACT_RETENTION_DAYS} days."
                ),
            )

        if intent.non_interactive:
            raise NonInteractiveModeError(
                "selecting a build from the list requires an interactive session"
            )

        choices = [format_build_choice(job, expiry_date) for job in recent]
        choices.append(Choice(title="None of the above (select another option)", value=None))
        selected = self.prompter.select_one("Which build would you like to submit?", choices)
        if selected is None:
            return intent.transition(IntentKind.PROMPT)
        if _is_expired(selected, expiry_date):
            self.progress.warn(f"{EXPIRED_ARTIFACT_WARNING}: {selected.id}")
        return Archive(intent=intent, job=selected)

    def _handle_prompt(self, intent: SubmissionIntent) -> Step:
        if intent.non_interactive:
            raise NonInteractiveModeError(
                "an archive source must be provided when running in non-interactive mode"
            )

        kind = self.prompter.select_one(
            "What would you like to submit?",
            [
                Choice("Select a build from the build service", IntentKind.BUILD_LIST),
                Choice("Provide a URL to the app archive", IntentKind.URL),
                Choice("Provide a path to a local app binary file", IntentKind.PATH),
                Choice("Provide a build ID to identify a build", IntentKind.BUILD_ID),
            ],
        )
        if kind is IntentKind.BUILD_LIST:
            return intent.transition(IntentKind.BUILD_LIST)
        if kind is IntentKind.URL:
            url = self.prompter.input_text(
                "URL:", self._validate_url_input, initial=EXAMPLE_ARCHIVE_URL
            )
            return intent.transition(IntentKind.URL, url=url)
        if kind is IntentKind.PATH:
            example_path = _example_archive_path(intent.platform)
            label = "ipa" if intent.platform is Platform.IOS else "aab or apk"
            path = self.prompter.input_text(
                f"Path to the app archive file ({label}):",
                lambda value: self._validate_path_input(value, example_path),
                initial=example_path,
            )
            return intent.transition(IntentKind.PATH, path=path)
        if kind is IntentKind.BUILD_ID:
            build_id = self.prompter.input_text("Build ID:", self._validate_build_id_input)
            return intent.transition(IntentKind.BUILD_ID, build_id=build_id)
        raise ValueError(f"unsupported archive source selection: {kind!r}")

    @staticmethod
    def _validate_url_input(value: str) -> str | None:
        if not value:
            return "URL cannot be empty"
        if value == EXAMPLE_ARCHIVE_URL:
            return (
                "That was just an example URL, meant to show you the format "
                "that we expect for the response."
            )
        if not validate_url(value):
            return f"{value} does not conform to HTTP format"
        return None

    def _validate_path_input(self, value: str, example_path: str) -> str | None:
        if not value:
            return "Path cannot be empty"
        if value == example_path:
            return (
                "That was just an example path, meant to show you the format "
                "that we expect for the response."
            )
        if not self.uploader.exists(value):
            return f"File {value} doesn't exist."
        return None

    @staticmethod
    def _validate_build_id_input(value: str) -> str | None:
        if not value:
            return "Build ID cannot be empty"
        if not is_uuid_v4(value):
            return f"{value} is not a valid ID"
        return None
