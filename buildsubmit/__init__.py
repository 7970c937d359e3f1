"""Submit builds to a remote build farm and track them to completion."""

from .api import ApiError, BuildServiceClient, RemoteServiceError
from .errors import (
    ExpiredArtifactError,
    InternalFault,
    NonInteractiveModeError,
    NotFoundError,
    PlatformMismatchError,
    ServerRejection,
    SubmissionError,
    TimeoutFault,
    ValidationError,
)
from .models import (
    Archive,
    BuildContext,
    BuildProfile,
    IntentKind,
    JobHandle,
    JobStatus,
    LocalBuildRun,
    Platform,
    RemoteJob,
    SubmissionIntent,
)
from .orchestrator import SubmissionOrchestrator, classify_server_error
from .progress import NullProgressSink, ProgressSink, StreamProgressSink
from .resolver import ArchiveSourceResolver
from .tracker import CompletionTracker

__all__ = [
    "ApiError",
    "BuildServiceClient",
    "RemoteServiceError",
    "ExpiredArtifactError",
    "InternalFault",
    "NonInteractiveModeError",
    "NotFoundError",
    "PlatformMismatchError",
    "ServerRejection",
    "SubmissionError",
    "TimeoutFault",
    "ValidationError",
    "Archive",
    "BuildContext",
    "BuildProfile",
    "IntentKind",
    "JobHandle",
    "JobStatus",
    "LocalBuildRun",
    "Platform",
    "RemoteJob",
    "SubmissionIntent",
    "SubmissionOrchestrator",
    "classify_server_error",
    "NullProgressSink",
    "ProgressSink",
    "StreamProgressSink",
    "ArchiveSourceResolver",
    "CompletionTracker",
]
