from __future__ import annotations

"""Polling of submitted builds until every one reaches a terminal status."""

import time
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, Sequence

from .collaborators import RemoteJobCatalog
from .errors import InternalFault, TimeoutFault
from .models import JobStatus, RemoteJob
from .progress import NullProgressSink, ProgressSink

DEFAULT_TIMEOUT_SEC = 3600.0
DEFAULT_INTERVAL_SEC = 30.0

_SINGLE_STATUS_TEXT = {
    JobStatus.NEW: "Build created",
    JobStatus.IN_QUEUE: "Build queued...",
    JobStatus.IN_PROGRESS: "Build in progress...",
}

_MULTI_STATUS_LABELS = (
    (JobStatus.NEW, "Builds created"),
    (JobStatus.IN_QUEUE, "Builds in queue"),
    (JobStatus.IN_PROGRESS, "Builds in progress"),
    (JobStatus.CANCELED, "Builds canceled"),
    (JobStatus.ERRORED, "Builds failed"),
    (JobStatus.FINISHED, "Builds finished"),
)


def parse_status(job: RemoteJob) -> JobStatus:
    """Return the status of a snapshot; unknown values are an internal fault."""
    try:
        return JobStatus(job.status)
    except ValueError:
        raise InternalFault(f"Unknown build status: {job.status} - aborting!") from None


def count_statuses(snapshots: Sequence[RemoteJob | None]) -> dict[str, int]:
    """Count snapshots per status; slots never fetched count as `unknown`."""
    counts = {status.value: 0 for status in JobStatus}
    counts["unknown"] = 0
    for snapshot in snapshots:
        if snapshot is None:
            counts["unknown"] += 1
        else:
            counts[parse_status(snapshot).value] += 1
    return counts


def format_status_counts(counts: dict[str, int]) -> str:
    """Render non-zero counts as one status line."""
    parts = [
        f"{label}: {counts[status.value]}"
        for status, label in _MULTI_STATUS_LABELS
        if counts.get(status.value)
    ]
    if counts.get("unknown"):
        parts.append(f"Builds with unknown status: {counts['unknown']}")
    return "\t".join(parts)


class CompletionTracker:
    """Poll builds on a fixed interval until all are terminal or time runs out.

    Each tick fetches every pending build concurrently. A failed fetch keeps
    the previous snapshot and is retried on the next tick. Terminal snapshots
    are never fetched again.
    """

    def __init__(
        self,
        catalog: RemoteJobCatalog,
        *,
        progress: ProgressSink | None = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
        max_workers: int = 8,
    ) -> None:
        if max_workers < 1:
            raise ValueError("max_workers must be positive")
        self.catalog = catalog
        self.progress = progress if progress is not None else NullProgressSink()
        self.clock = clock
        self.sleep = sleep
        self.max_workers = max_workers

    def await_completion(
        self,
        job_ids: Sequence[str],
        *,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        interval_sec: float = DEFAULT_INTERVAL_SEC,
    ) -> list[RemoteJob | None]:
        """Return one terminal snapshot per job ID, in input order."""
        if not job_ids:
            raise ValueError("job_ids cannot be empty")
        if timeout_sec <= 0:
            raise ValueError("timeout_sec must be positive")
        if interval_sec < 0:
            raise ValueError("interval_sec cannot be negative")

        ids = list(job_ids)
        snapshots: list[RemoteJob | None] = [None] * len(ids)
        terminal = [False] * len(ids)
        self.progress.report(
            "Waiting for build%s to complete. You can press Ctrl+C to exit."
            % ("s" if len(ids) > 1 else "")
        )

        deadline = self.clock() + timeout_sec
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(ids))) as executor:
            while True:
                pending = [index for index, done in enumerate(terminal) if not done]
                fetched = list(executor.map(lambda i: self._fetch(ids[i]), pending))
                for index, snapshot in zip(pending, fetched):
                    if snapshot is not None:
                        snapshots[index] = snapshot

                for index in pending:
                    snapshot = snapshots[index]
                    if snapshot is not None and self._is_terminal(snapshot):
                        terminal[index] = True

                if all(terminal):
                    self._report_done(snapshots)
                    return snapshots

                self._report_tick(snapshots)
                if self.clock() >= deadline:
                    break
                self.sleep(interval_sec)
                if self.clock() > deadline:
                    break

        self.progress.fail("Timed out")
        raise TimeoutFault(
            "Timeout reached! It is taking longer than expected to finish the build, aborting...",
            snapshots=snapshots,
        )

    def _fetch(self, job_id: str) -> RemoteJob | None:
        try:
            return self.catalog.get_by_id(job_id)
        except Exception as exc:
            self.progress.debug(f"Failed to fetch the build status of {job_id}: {exc}")
            return None

    @staticmethod
    def _is_terminal(snapshot: RemoteJob) -> bool:
        status = parse_status(snapshot)
        if status is JobStatus.ERRORED and snapshot.error is None:
            raise InternalFault(f"Build {snapshot.id} failed without an error payload")
        return status.is_terminal

    def _report_tick(self, snapshots: Sequence[RemoteJob | None]) -> None:
        if len(snapshots) == 1:
            snapshot = snapshots[0]
            if snapshot is None:
                self.progress.tick(
                    "Could not fetch the build status. Check your network connection."
                )
            else:
                self.progress.tick(_SINGLE_STATUS_TEXT[parse_status(snapshot)])
            return
        self.progress.tick(format_status_counts(count_statuses(snapshots)))

    def _report_done(self, snapshots: Sequence[RemoteJob | None]) -> None:
        statuses = [parse_status(snapshot) for snapshot in snapshots if snapshot is not None]
        if len(snapshots) == 1:
            status = statuses[0]
            if status is JobStatus.FINISHED:
                self.progress.succeed("Build finished")
            elif status is JobStatus.CANCELED:
                self.progress.fail("Build canceled")
            else:
                self.progress.fail("Build failed")
            return
        if all(status is JobStatus.FINISHED for status in statuses):
            self.progress.succeed("All builds have finished")
        else:
            self.progress.fail("Some of the builds were canceled or failed.")
