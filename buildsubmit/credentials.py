from __future__ import annotations

"""Credentials providers for local (`credentials.json`) and remote sources.

Issuing new credentials is handled elsewhere; these providers only load
credentials that already exist.
"""

import json
import os
from typing import Any

from .api import BuildServiceClient
from .collaborators import CredentialsProvider
from .errors import NotFoundError, ValidationError
from .models import CredentialsPolicy, CredentialsResult, CredentialsSource

CREDENTIALS_JSON_FILENAME = "credentials.json"


def _read_credentials_json(path: str) -> dict[str, Any]:
    """Read the local credentials file; every platform section is optional."""
    if not os.path.exists(path):
        raise NotFoundError(f"{CREDENTIALS_JSON_FILENAME} does not exist in the project root")
    try:
        with open(path, "r", encoding="utf-8") as fp:
            payload = json.load(fp)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise ValidationError(f"{path} must contain a JSON object")
    return payload


class LocalCredentialsProvider(CredentialsProvider):
    """Load the platform section of `credentials.json` in the project root."""

    def resolve(self, policy: CredentialsPolicy) -> CredentialsResult:
        path = os.path.join(policy.project_dir, CREDENTIALS_JSON_FILENAME)
        payload = _read_credentials_json(path)
        section = payload.get(policy.platform.value)
        if not isinstance(section, dict) or not section:
            raise ValidationError(
                f"{CREDENTIALS_JSON_FILENAME} is missing the "
                f"{policy.platform.display_name} credentials"
            )
        return CredentialsResult(source=CredentialsSource.LOCAL, credentials=section)


class RemoteCredentialsProvider(CredentialsProvider):
    """Fetch credentials already stored on the build service."""

    def __init__(self, client: BuildServiceClient) -> None:
        self.client = client

    def resolve(self, policy: CredentialsPolicy) -> CredentialsResult:
        credentials = self.client.get_credentials(policy.platform, policy.project_id)
        return CredentialsResult(source=CredentialsSource.REMOTE, credentials=credentials)


class SourceCredentialsProvider(CredentialsProvider):
    """Delegate to the local or remote provider named by the policy."""

    def __init__(
        self,
        *,
        local: CredentialsProvider,
        remote: CredentialsProvider,
    ) -> None:
        self.local = local
        self.remote = remote

    def resolve(self, policy: CredentialsPolicy) -> CredentialsResult:
        if policy.source is CredentialsSource.LOCAL:
            return self.local.resolve(policy)
        return self.remote.resolve(policy)
