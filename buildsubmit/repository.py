from __future__ import annotations

"""Project packaging and version-control helpers.

The project tarball is the only file this package creates locally. Callers
own it and must remove it with `remove_tarball` once it has been uploaded or
consumed by a local build.
"""

import os
import subprocess
import tarfile
import tempfile
from dataclasses import dataclass

from .collaborators import VersionControlClient
from .errors import ValidationError

_IGNORED_DIRECTORIES = {".git", ".hg", ".svn", "node_modules", "__pycache__"}


@dataclass
class ProjectTarball:
    """A packaged copy of the project sources."""

    path: str
    size: int


def _should_skip(name: str) -> bool:
    return name in _IGNORED_DIRECTORIES


def make_project_tarball(project_dir: str, *, work_dir: str | None = None) -> ProjectTarball:
    """Package `project_dir` into a gzipped tarball rooted at `project/`."""
    root = os.path.abspath(project_dir)
    if not os.path.isdir(root):
        raise ValueError(f"project directory does not exist: {root}")

    fd, tarball_path = tempfile.mkstemp(
        prefix="buildsubmit-project-", suffix=".tar.gz", dir=work_dir
    )
    os.close(fd)
    try:
        with tarfile.open(tarball_path, "w:gz") as archive:
            for current, dirnames, filenames in os.walk(root):
                dirnames[:] = sorted(d for d in dirnames if not _should_skip(d))
                relative_dir = os.path.relpath(current, root)
                for filename in sorted(filenames):
                    full_path = os.path.join(current, filename)
                    if os.path.abspath(full_path) == os.path.abspath(tarball_path):
                        continue
                    arcname = os.path.normpath(
                        os.path.join("project", relative_dir, filename)
                    )
                    archive.add(full_path, arcname=arcname, recursive=False)
    except BaseException:
        remove_tarball(tarball_path)
        raise
    return ProjectTarball(path=tarball_path, size=os.path.getsize(tarball_path))


def remove_tarball(path: str | None) -> None:
    """Delete a project tarball if it still exists."""
    if path and os.path.exists(path):
        os.remove(path)


def format_bytes(size: int) -> str:
    """Render a byte count with a binary unit suffix."""
    value = float(size)
    for unit in ("B", "KB", "MB", "GB"):
        if value < 1024.0 or unit == "GB":
            if unit == "B":
                return "%d %s" % (int(value), unit)
            return "%.1f %s" % (value, unit)
        value /= 1024.0
    return "%d B" % size


class GitClient(VersionControlClient):
    """Git working tree inspection through the `git` executable.

    A missing `git` binary or a failing git command raises `ValidationError`.
    """

    def __init__(self, project_dir: str = ".", *, require_commit: bool = False) -> None:
        self.project_dir = project_dir
        self.require_commit = require_commit

    def _run(self, *args: str) -> subprocess.CompletedProcess:
        try:
            return subprocess.run(
                ["git", *args],
                cwd=self.project_dir,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                universal_newlines=True,
                check=False,
            )
        except OSError as exc:
            raise ValidationError(f"unable to run git: {exc}") from exc

    def _git(self, *args: str) -> str:
        proc = self._run(*args)
        if proc.returncode != 0:
            raise ValidationError(
                "git %s failed: %s" % (args[0], proc.stderr.strip() or proc.stdout.strip())
            )
        return proc.stdout

    def has_uncommitted_changes(self) -> bool:
        return bool(self._git("status", "--porcelain").strip())

    def is_commit_required(self) -> bool:
        return self.require_commit and self.has_uncommitted_changes()

    def commit_and_review(self, message: str) -> None:
        self._git("add", "-A")
        self._git("commit", "-m", message)

    def get_commit_hash(self) -> str | None:
        # No commits yet, or git is unavailable.
        try:
            return self._git("rev-parse", "HEAD").strip() or None
        except ValidationError:
            return None


class NoVcsClient(VersionControlClient):
    """Used when the project is not under version control."""

    def is_commit_required(self) -> bool:
        return False

    def commit_and_review(self, message: str) -> None:
        return None
