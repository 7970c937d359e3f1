from __future__ import annotations

"""Classified errors raised by archive resolution, submission and tracking."""

from typing import Any, Sequence


class SubmissionError(RuntimeError):
    """Base class for every classified build submission failure."""


class ValidationError(SubmissionError):
    """Raised when a URL, path or build ID supplied by the user is malformed."""


class NotFoundError(SubmissionError):
    """Raised when no build exists for the project/platform or an ID does not resolve."""


class PlatformMismatchError(SubmissionError):
    """Raised when a resolved build targets a different platform than requested."""


class ExpiredArtifactError(SubmissionError):
    """Raised when every candidate build is older than the artifact retention window."""


class NonInteractiveModeError(SubmissionError):
    """Raised instead of prompting when the session is non-interactive."""


class ServerRejection(SubmissionError):
    """Raised when the build service refuses to create a build."""

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        platform: Any = None,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.platform = platform


class DeprecatedJobFormatRejection(ServerRejection):
    """The service no longer accepts the job format sent by this client."""


class MaintenanceRejection(ServerRejection):
    """The build service is down for maintenance."""


class TierDisabledRejection(ServerRejection):
    """The free tier of the build service is temporarily disabled."""


class PendingJobQuotaRejection(ServerRejection):
    """The account reached the maximum number of pending builds."""


class TimeoutFault(SubmissionError):
    """Raised when builds do not reach a terminal status within the wait window."""

    def __init__(self, message: str, *, snapshots: Sequence[Any] = ()) -> None:
        super().__init__(message)
        self.snapshots = list(snapshots)


class InternalFault(SubmissionError):
    """Raised when the build service reports a state this client cannot interpret."""
