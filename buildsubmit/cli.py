from __future__ import annotations

import argparse
import json
import os
import sys
from typing import Any

from importlib.metadata import PackageNotFoundError, version as package_version

from .api import ApiError, BuildServiceClient, ServiceArtifactUploader, UploadKind
from .builder import GenericJobPayloadBuilder, ProjectConfigValidator
from .config import DEFAULT_CONFIG_PATH, ClientConfig, load_client_config
from .credentials import (
    LocalCredentialsProvider,
    RemoteCredentialsProvider,
    SourceCredentialsProvider,
)
from .errors import SubmissionError, TimeoutFault
from .local import SubprocessLocalBuildRunner
from .models import (
    Archive,
    BuildContext,
    BuildProfile,
    CredentialsSource,
    IntentKind,
    JobStatus,
    LocalBuildOptions,
    LocalBuildRun,
    Platform,
    RemoteJob,
    SubmissionIntent,
)
from .orchestrator import SubmissionOrchestrator, build_submit_summary
from .progress import StreamProgressSink
from .prompts import ConsolePrompter
from .repository import GitClient, NoVcsClient
from .resolver import ArchiveSourceResolver
from .tracker import CompletionTracker


def _resolve_client_version() -> str:
    try:
        return package_version("buildsubmit")
    except PackageNotFoundError:
        return "0.0.0"


def _parse_env(values: list[str]) -> dict[str, str]:
    env: dict[str, str] = {}
    for item in values:
        if "=" not in item:
            raise ValueError(f"invalid --env entry, expected NAME=VALUE: {item}")
        key, value = item.split("=", 1)
        if not key:
            raise ValueError("invalid --env entry: key cannot be empty")
        env[key] = value
    return env


def _platforms(value: str) -> list[Platform]:
    if value == "all":
        return [Platform.ANDROID, Platform.IOS]
    return [Platform(value)]


def _intent_from_args(ns: argparse.Namespace, non_interactive: bool) -> SubmissionIntent:
    common: dict[str, Any] = {
        "platform": Platform(ns.platform),
        "project_id": ns.project_id,
        "non_interactive": non_interactive,
    }
    if ns.url is not None:
        return SubmissionIntent(kind=IntentKind.URL, url=ns.url, **common)
    if ns.path is not None:
        return SubmissionIntent(kind=IntentKind.PATH, path=ns.path, **common)
    if ns.id is not None:
        return SubmissionIntent(kind=IntentKind.BUILD_ID, build_id=ns.id, **common)
    if ns.latest:
        return SubmissionIntent(kind=IntentKind.LATEST, **common)
    if ns.list:
        return SubmissionIntent(kind=IntentKind.BUILD_LIST, **common)
    return SubmissionIntent(kind=IntentKind.PROMPT, **common)


def _emit_json(payload: Any) -> None:
    sys.stdout.write(json.dumps(payload, indent=2, sort_keys=True) + "\n")


def _emit_jobs_text(jobs: list[RemoteJob | None], job_ids: list[str]) -> None:
    for job_id, job in zip(job_ids, jobs):
        if job is None:
            sys.stdout.write(f"{job_id}\tunknown\n")
            continue
        line = f"{job.id}\t{job.platform.value}\t{job.status}"
        if job.error is not None:
            line += f"\t{job.error.error_code}: {job.error.message}"
        elif job.artifacts is not None and job.artifacts.build_url:
            line += f"\t{job.artifacts.build_url}"
        sys.stdout.write(line + "\n")


def _all_finished(jobs: list[RemoteJob | None]) -> bool:
    return all(job is not None and job.status == JobStatus.FINISHED.value for job in jobs)


def _add_verbose_argument(
    parser: argparse.ArgumentParser, *, default: object = False
) -> None:
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        default=default,
        help="Enable verbose diagnostics",
    )


def _add_format_argument(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Output format",
    )


def _add_wait_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        help="Seconds to wait for builds to finish (default from config: 3600)",
    )
    parser.add_argument(
        "--interval",
        type=float,
        default=None,
        help="Seconds between status polls (default from config: 30)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="build-submit",
        description="Submit builds to a remote build farm and track them to completion.",
    )
    _add_verbose_argument(parser, default=False)
    parser.add_argument(
        "--config",
        default=DEFAULT_CONFIG_PATH,
        help=f"Path to client config (default: {DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument("--api-url", default=None, help="Build service URL override")
    parser.add_argument("--token", default=None, help="Access token override")

    subparsers = parser.add_subparsers(dest="action", required=True)

    build = subparsers.add_parser("build", help="Submit a build")
    _add_verbose_argument(build, default=argparse.SUPPRESS)
    build.add_argument(
        "--platform", choices=["android", "ios", "all"], required=True
    )
    build.add_argument("--project-id", required=True)
    build.add_argument("--project-dir", default=".")
    build.add_argument("--profile", default="production")
    build.add_argument(
        "--distribution", choices=["store", "internal", "simulator"], default="store"
    )
    build.add_argument(
        "--credentials-source",
        choices=[source.value for source in CredentialsSource],
        default=CredentialsSource.REMOTE.value,
    )
    build.add_argument("--without-credentials", action="store_true")
    build.add_argument("--env", action="append", default=[])
    build.add_argument("--local", action="store_true", help="Run the build on this machine")
    build.add_argument(
        "--local-command",
        default=None,
        help="Local build plugin executable (default: eas-cli-local-build-plugin)",
    )
    build.add_argument("--artifact-path", default=None)
    build.add_argument("--skip-project-configuration", action="store_true")
    build.add_argument(
        "--require-commit",
        action="store_true",
        help="Refuse to build with uncommitted git changes unless they are committed",
    )
    build.add_argument("--non-interactive", action="store_true")
    build.add_argument("--message", default=None)
    build.add_argument("--wait", action="store_true", help="Wait for builds to finish")
    _add_wait_arguments(build)
    _add_format_argument(build)

    archive = subparsers.add_parser("archive", help="Resolve the app archive to submit")
    _add_verbose_argument(archive, default=argparse.SUPPRESS)
    archive.add_argument("--platform", choices=["android", "ios"], required=True)
    archive.add_argument("--project-id", required=True)
    source = archive.add_mutually_exclusive_group()
    source.add_argument("--url", default=None)
    source.add_argument("--latest", action="store_true")
    source.add_argument("--path", default=None)
    source.add_argument("--id", default=None)
    source.add_argument("--list", action="store_true")
    archive.add_argument("--non-interactive", action="store_true")
    _add_format_argument(archive)

    wait = subparsers.add_parser("wait", help="Wait for builds to finish")
    _add_verbose_argument(wait, default=argparse.SUPPRESS)
    wait.add_argument("job_ids", nargs="+")
    _add_wait_arguments(wait)
    _add_format_argument(wait)

    status = subparsers.add_parser("status", help="Show build status")
    _add_verbose_argument(status, default=argparse.SUPPRESS)
    status.add_argument("job_ids", nargs="+")
    _add_format_argument(status)

    return parser


def _make_client(ns: argparse.Namespace, cfg: ClientConfig) -> BuildServiceClient:
    return BuildServiceClient(
        api_url=ns.api_url or cfg.api_url,
        access_token=ns.token or cfg.access_token,
        timeout=cfg.request_timeout,
        user_agent="buildsubmit/%s" % _resolve_client_version(),
    )


def _wait(
    tracker: CompletionTracker,
    job_ids: list[str],
    ns: argparse.Namespace,
    cfg: ClientConfig,
) -> list[RemoteJob | None]:
    return tracker.await_completion(
        job_ids,
        timeout_sec=ns.timeout if ns.timeout is not None else cfg.poll_timeout_seconds,
        interval_sec=ns.interval if ns.interval is not None else cfg.poll_interval_seconds,
    )


def _run_build(
    ns: argparse.Namespace,
    cfg: ClientConfig,
    client: BuildServiceClient,
    progress: StreamProgressSink,
) -> int:
    non_interactive = bool(ns.non_interactive) or cfg.non_interactive
    project_dir = os.path.abspath(ns.project_dir)
    vcs = (
        GitClient(project_dir, require_commit=bool(ns.require_commit))
        if os.path.isdir(os.path.join(project_dir, ".git"))
        else NoVcsClient()
    )
    orchestrator = SubmissionOrchestrator(
        credentials_provider=SourceCredentialsProvider(
            local=LocalCredentialsProvider(),
            remote=RemoteCredentialsProvider(client),
        ),
        project_configurator=ProjectConfigValidator(),
        vcs=vcs,
        uploader=ServiceArtifactUploader(client, UploadKind.PROJECT_SOURCES),
        payload_builder=GenericJobPayloadBuilder(),
        submission=client,
        local_runner=SubprocessLocalBuildRunner(),
        prompter=ConsolePrompter(non_interactive=non_interactive),
        progress=progress,
        client_version=_resolve_client_version(),
    )

    local_options = LocalBuildOptions(enable=bool(ns.local), artifact_path=ns.artifact_path)
    if ns.local_command:
        local_options.command = [ns.local_command]
    outcomes = []
    for platform in _platforms(ns.platform):
        context = BuildContext(
            platform=platform,
            project_id=ns.project_id,
            project_dir=project_dir,
            profile=BuildProfile(
                name=ns.profile,
                credentials_source=CredentialsSource(ns.credentials_source),
                without_credentials=bool(ns.without_credentials),
                distribution=ns.distribution,
                environment=_parse_env(ns.env),
            ),
            non_interactive=non_interactive,
            skip_project_configuration=bool(ns.skip_project_configuration),
            local_build=local_options,
            message=ns.message,
        )
        outcomes.append(orchestrator.submit(context))

    summaries = [build_submit_summary(outcome) for outcome in outcomes]
    job_ids = [summary["job_id"] for summary in summaries if not summary["local"]]
    local_failed = any(
        isinstance(outcome, LocalBuildRun) and not outcome.ok for outcome in outcomes
    )

    jobs: list[RemoteJob | None] = []
    if ns.wait and job_ids:
        jobs = _wait(CompletionTracker(client, progress=progress), job_ids, ns, cfg)

    if ns.format == "json":
        _emit_json(
            {
                "builds": summaries,
                "completed": [job.to_dict() if job else None for job in jobs],
            }
        )
    else:
        for summary in summaries:
            if summary["local"]:
                sys.stdout.write(
                    "local %s build exited with %d\n"
                    % (summary["platform"], summary["returncode"])
                )
            else:
                sys.stdout.write("%s\t%s\n" % (summary["job_id"], summary["platform"]))
        if jobs:
            _emit_jobs_text(jobs, job_ids)

    if local_failed or (jobs and not _all_finished(jobs)):
        return 1
    return 0


def _run_archive(
    ns: argparse.Namespace,
    cfg: ClientConfig,
    client: BuildServiceClient,
    progress: StreamProgressSink,
) -> int:
    non_interactive = bool(ns.non_interactive) or cfg.non_interactive
    resolver = ArchiveSourceResolver(
        catalog=client,
        uploader=ServiceArtifactUploader(client, UploadKind.APP_ARCHIVE),
        prompter=ConsolePrompter(non_interactive=non_interactive),
        progress=progress,
    )
    archive: Archive = resolver.resolve(_intent_from_args(ns, non_interactive))
    if ns.format == "json":
        _emit_json(archive.to_dict())
    elif archive.url is not None:
        sys.stdout.write(archive.url + "\n")
    else:
        sys.stdout.write("build %s\n" % archive.job.id)
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    ns = parser.parse_args(argv)
    verbose = bool(getattr(ns, "verbose", False))
    progress = StreamProgressSink(verbose=verbose)

    try:
        cfg = load_client_config(ns.config)
        client = _make_client(ns, cfg)
        if ns.action == "build":
            return _run_build(ns, cfg, client, progress)
        if ns.action == "archive":
            return _run_archive(ns, cfg, client, progress)
        if ns.action == "wait":
            jobs = _wait(CompletionTracker(client, progress=progress), ns.job_ids, ns, cfg)
        else:
            jobs = [client.get_by_id(job_id) for job_id in ns.job_ids]
    except TimeoutFault as exc:
        sys.stderr.write(f"error: {exc}\n")
        if ns.action in {"wait", "build"} and getattr(ns, "format", "text") == "json":
            _emit_json({"completed": [job.to_dict() if job else None for job in exc.snapshots]})
        return 2
    except (ValueError, SubmissionError, ApiError) as exc:
        sys.stderr.write(f"error: {exc}\n")
        return 2
    except KeyboardInterrupt:
        sys.stderr.write("interrupted\n")
        return 130

    if ns.format == "json":
        _emit_json([job.to_dict() if job else None for job in jobs])
    else:
        _emit_jobs_text(jobs, list(ns.job_ids))
    if ns.action == "wait" and not _all_finished(jobs):
        return 1
    return 0
