from __future__ import annotations

"""Builders translating a build context into job payloads and build metadata."""

import getpass
import json
import os
import re
from collections.abc import Mapping
from typing import Any

from .collaborators import JobPayloadBuilder, ProjectConfigurator
from .errors import ValidationError
from .models import BuildContext, CredentialsResult, JobData, Platform

_ENV_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
_DISTRIBUTIONS = ("store", "internal", "simulator")

PROJECT_CONFIG_FILENAME = "eas.json"


def _copy_environment(environment: Mapping[str, str]) -> dict[str, str]:
    """Validate builder environment variable names and copy values in order."""
    env: dict[str, str] = {}
    for key, value in environment.items():
        if not key:
            raise ValueError("environment variable key cannot be empty")
        if not _ENV_NAME_RE.match(key):
            raise ValueError(f"invalid environment variable name: {key}")
        env[key] = str(value)
    return env


def _credentials_section(credentials: CredentialsResult | None) -> dict[str, Any] | None:
    if credentials is None:
        return None
    return {
        "source": credentials.source.value,
        "credentials": dict(credentials.credentials),
    }


class GenericJobPayloadBuilder(JobPayloadBuilder):
    """Build the JSON job accepted by the build service for either platform."""

    def build_payload(self, context: BuildContext, job_data: JobData) -> dict[str, Any]:
        distribution = context.profile.distribution
        if distribution not in _DISTRIBUTIONS:
            raise ValueError(
                "distribution must be one of %s: %s" % (", ".join(_DISTRIBUTIONS), distribution)
            )
        if context.platform is Platform.ANDROID and distribution == "simulator":
            raise ValueError("simulator distribution is only available for iOS")

        payload: dict[str, Any] = {
            "type": "managed",
            "platform": context.platform.value,
            "projectArchive": job_data.project_archive.to_dict(),
            "projectRootDirectory": ".",
            "buildProfile": context.profile.name,
            "distribution": distribution,
            "builderEnvironment": {
                "env": _copy_environment(context.profile.environment),
            },
        }
        secrets = _credentials_section(job_data.credentials)
        if secrets is not None:
            payload["secrets"] = secrets
        return payload


def collect_build_metadata(
    context: BuildContext,
    *,
    credentials: CredentialsResult | None,
    client_version: str,
    commit_hash: str | None = None,
) -> dict[str, Any]:
    """Describe the build for the service; values never affect the payload."""
    username = context.username
    if username is None:
        try:
            username = getpass.getuser()
        except (KeyError, OSError):
            username = None

    metadata: dict[str, Any] = {
        "trackingContext": {"platform": context.platform.value},
        "appIdentifier": context.project_id,
        "buildProfile": context.profile.name,
        "cliVersion": client_version,
        "distribution": context.profile.distribution,
        "credentialsSource": credentials.source.value if credentials is not None else None,
        "workflow": "managed",
        "username": username,
    }
    if commit_hash:
        metadata["gitCommitHash"] = commit_hash
    if context.message:
        if len(context.message) > 1024:
            raise ValueError("build message cannot exceed 1024 characters")
        metadata["message"] = context.message
    return metadata


class ProjectConfigValidator(ProjectConfigurator):
    """Check that the project directory holds a build configuration with the profile."""

    def ensure_configured(self, context: BuildContext) -> None:
        project_dir = os.path.abspath(context.project_dir)
        if not os.path.isdir(project_dir):
            raise ValidationError(f"project directory does not exist: {project_dir}")

        config_path = os.path.join(project_dir, PROJECT_CONFIG_FILENAME)
        if not os.path.exists(config_path):
            raise ValidationError(
                f"{PROJECT_CONFIG_FILENAME} not found in {project_dir}; "
                "run the project configuration step first"
            )
        try:
            with open(config_path, "r", encoding="utf-8") as fp:
                config = json.load(fp)
        except json.JSONDecodeError as exc:
            raise ValidationError(f"{config_path} is not valid JSON: {exc}") from exc

        profiles = config.get("build") if isinstance(config, dict) else None
        if not isinstance(profiles, dict) or context.profile.name not in profiles:
            raise ValidationError(
                f"build profile '{context.profile.name}' is missing from {config_path}"
            )
