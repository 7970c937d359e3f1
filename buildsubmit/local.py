from __future__ import annotations

"""Hand a prepared job to the local build plugin."""

import base64
import json
import os
import subprocess
from typing import Any

from .collaborators import LocalBuildRunner
from .errors import SubmissionError
from .models import LocalBuildOptions, LocalBuildRun, Platform


def encode_job(payload: dict[str, Any]) -> str:
    """Encode a job the way the local build plugin expects it on argv."""
    return base64.b64encode(json.dumps(payload, sort_keys=True).encode("utf-8")).decode("ascii")


class SubprocessLocalBuildRunner(LocalBuildRunner):
    """Run the local build plugin as a child process, inheriting stdio."""

    def run(self, payload: dict[str, Any], options: LocalBuildOptions) -> LocalBuildRun:
        if not options.command:
            raise ValueError("local build command cannot be empty")

        env = dict(os.environ)
        if options.artifact_path:
            env["EAS_LOCAL_BUILD_ARTIFACTS_DIR"] = os.path.dirname(
                os.path.abspath(options.artifact_path)
            )
        if options.skip_cleanup:
            env["EAS_LOCAL_BUILD_SKIP_CLEANUP"] = "1"

        try:
            proc = subprocess.run(
                [*options.command, encode_job(payload)],
                env=env,
                check=False,
            )
        except FileNotFoundError as exc:
            raise SubmissionError(
                f"local build plugin not found: {options.command[0]}"
            ) from exc

        return LocalBuildRun(
            platform=Platform(payload["platform"]),
            returncode=proc.returncode,
            artifact_path=options.artifact_path,
        )
