from __future__ import annotations

"""Progress and log reporting passed explicitly into each component."""

import sys
from typing import TextIO


class ProgressSink:
    """Receives status lines from the resolver, orchestrator and tracker.

    The base implementation discards everything; subclasses decide where the
    lines go.
    """

    def report(self, message: str) -> None:
        """Informational line."""

    def warn(self, message: str) -> None:
        """Something the user should notice but that does not stop the flow."""

    def error(self, message: str) -> None:
        """A failure that is about to be handled by a fallback or raised."""

    def debug(self, message: str) -> None:
        """Diagnostic detail."""

    def tick(self, status: str) -> None:
        """Replace the current in-progress status text."""

    def succeed(self, message: str) -> None:
        """Finish the current in-progress status successfully."""

    def fail(self, message: str) -> None:
        """Finish the current in-progress status with a failure."""


class NullProgressSink(ProgressSink):
    """Sink that drops every line."""


class StreamProgressSink(ProgressSink):
    """Write prefixed lines to a text stream; debug lines only when verbose."""

    def __init__(
        self,
        stream: TextIO | None = None,
        *,
        verbose: bool = False,
        prefix: str = "[buildsubmit]",
    ) -> None:
        self.stream = stream
        self.verbose = verbose
        self.prefix = prefix
        self._last_status: str | None = None

    def _write(self, level: str, message: str) -> None:
        stream = self.stream if self.stream is not None else sys.stderr
        label = f"{self.prefix} {level}: " if level else f"{self.prefix} "
        try:
            stream.write(label + message + "\n")
            stream.flush()
        except (OSError, ValueError):
            pass

    def report(self, message: str) -> None:
        self._write("", message)

    def warn(self, message: str) -> None:
        self._write("warning", message)

    def error(self, message: str) -> None:
        self._write("error", message)

    def debug(self, message: str) -> None:
        if self.verbose:
            self._write("debug", message)

    def tick(self, status: str) -> None:
        # Unchanged status lines are not repeated on every poll.
        if status == self._last_status:
            return
        self._last_status = status
        self._write("", status)

    def succeed(self, message: str) -> None:
        self._last_status = None
        self._write("", "✔ " + message)

    def fail(self, message: str) -> None:
        self._last_status = None
        self._write("", "✖ " + message)
