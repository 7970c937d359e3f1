from __future__ import annotations

"""Abstract services consumed by the resolver, orchestrator and tracker."""

import os
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

from .models import (
    BuildContext,
    CredentialsPolicy,
    CredentialsResult,
    JobData,
    LocalBuildOptions,
    LocalBuildRun,
    Platform,
    RemoteJob,
)

# Returns an error message for invalid input, None when the value is accepted.
TextValidator = Callable[[str], Optional[str]]


@dataclass(frozen=True)
class Choice:
    """One option offered by `InteractivePrompter.select_one`."""

    title: str
    value: Any
    expired: bool = False
    warning: str | None = None


@dataclass
class SubmissionResult:
    """A build created by the build service and any deprecation notices."""

    job: RemoteJob
    deprecation_notices: list[str] = field(default_factory=list)


class RemoteJobCatalog(ABC):
    @abstractmethod
    def get_recent(
        self, platform: Platform, project_id: str, limit: int | None = None
    ) -> list[RemoteJob]:
        """Return finished builds for the project, newest first."""

    @abstractmethod
    def get_by_id(self, job_id: str) -> RemoteJob:
        """Return one build; raises NotFoundError when the ID is unknown."""


class RemoteJobSubmission(ABC):
    @abstractmethod
    def create(
        self,
        project_id: str,
        platform: Platform,
        payload: dict[str, Any],
        metadata: dict[str, Any],
    ) -> SubmissionResult:
        """Create a build; raises RemoteServiceError with the server code on rejection."""


class CredentialsProvider(ABC):
    @abstractmethod
    def resolve(self, policy: CredentialsPolicy) -> CredentialsResult:
        """Return the credentials the build needs, prompting if the provider must."""


class ArtifactUploader(ABC):
    @abstractmethod
    def upload(self, local_path: str) -> str:
        """Upload a local file and return its remote key or URL."""

    def exists(self, local_path: str) -> bool:
        return bool(local_path) and os.path.isfile(local_path)


class InteractivePrompter(ABC):
    """Prompts used during resolution and preparation.

    Implementations must raise NonInteractiveModeError instead of blocking
    when `non_interactive` is set.
    """

    non_interactive: bool = False

    @abstractmethod
    def select_one(self, message: str, choices: Sequence[Choice]) -> Any:
        """Return the `value` of the selected choice."""

    @abstractmethod
    def input_text(
        self,
        message: str,
        validator: TextValidator,
        initial: str | None = None,
    ) -> str:
        """Return text accepted by `validator`."""

    @abstractmethod
    def confirm(self, message: str) -> bool:
        """Ask a yes/no question."""


class VersionControlClient(ABC):
    @abstractmethod
    def is_commit_required(self) -> bool:
        """Return whether uncommitted changes block the submission."""

    @abstractmethod
    def commit_and_review(self, message: str) -> None:
        """Commit pending changes with `message`."""

    def get_commit_hash(self) -> str | None:
        return None


class ProjectConfigurator(ABC):
    @abstractmethod
    def ensure_configured(self, context: BuildContext) -> None:
        """Validate/sync local project configuration for the target platform."""


class JobPayloadBuilder(ABC):
    @abstractmethod
    def build_payload(self, context: BuildContext, job_data: JobData) -> dict[str, Any]:
        """Build the platform-specific job payload."""


class LocalBuildRunner(ABC):
    @abstractmethod
    def run(self, payload: dict[str, Any], options: LocalBuildOptions) -> LocalBuildRun:
        """Execute the job on this machine."""
