from __future__ import annotations

"""Configuration parsing for buildsubmit client.conf files.

Only the `[client]` section is read; environment variables override file
values.
"""

import os
import re
from dataclasses import dataclass

from .api import DEFAULT_API_URL

DEFAULT_CONFIG_PATH = os.path.join(os.path.expanduser("~"), ".buildsubmit", "client.conf")


@dataclass
class ClientConfig:
    """Service endpoint, credentials and polling settings."""

    api_url: str = DEFAULT_API_URL
    access_token: str | None = None
    request_timeout: float = 30.0
    poll_interval_seconds: float = 30.0
    poll_timeout_seconds: float = 3600.0
    non_interactive: bool = False


def _parse_bool(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _strip_comments(record: str) -> str:
    """Drop inline comments while preserving leading assignment content."""
    hash_pos = record.find("#")
    if hash_pos == -1:
        return record
    return record[:hash_pos]


def _parse_positive_float(key: str, value: str) -> float:
    try:
        parsed = float(value)
    except ValueError:
        raise ValueError(f"{key} must be a number: {value!r}") from None
    if parsed <= 0:
        raise ValueError(f"{key} must be positive: {value!r}")
    return parsed


def load_client_config(path: str = DEFAULT_CONFIG_PATH) -> ClientConfig:
    """
    Parse client configuration from disk and apply environment overrides.

    A missing file yields defaults. Unknown keys are ignored.
    """

    cfg = ClientConfig()
    if path and os.path.exists(path):
        section_re = re.compile(r"^\s*\[([^\]]+)\]\s*$")
        kv_re = re.compile(r"^\s*(\w+)\s*=\s*(.*?)\s*$")
        in_client_section = False

        with open(path, "r", encoding="utf-8") as fp:
            for raw_record in fp:
                record = _strip_comments(raw_record).strip()
                if not record:
                    continue

                section_match = section_re.match(record)
                if section_match:
                    in_client_section = section_match.group(1) == "client"
                    continue

                if not in_client_section:
                    continue

                kv_match = kv_re.match(record)
                if not kv_match:
                    continue

                key, value = kv_match.group(1), kv_match.group(2)
                if key == "apiUrl":
                    cfg.api_url = value
                elif key == "accessToken":
                    cfg.access_token = value or None
                elif key == "requestTimeout":
                    cfg.request_timeout = _parse_positive_float(key, value)
                elif key == "pollIntervalSeconds":
                    cfg.poll_interval_seconds = _parse_positive_float(key, value)
                elif key == "pollTimeoutSeconds":
                    cfg.poll_timeout_seconds = _parse_positive_float(key, value)
                elif key == "nonInteractive":
                    cfg.non_interactive = _parse_bool(value)

    api_url = os.environ.get("BUILDSUBMIT_API_URL")
    if api_url:
        cfg.api_url = api_url
    token = os.environ.get("BUILDSUBMIT_TOKEN")
    if token:
        cfg.access_token = token
    forced_non_interactive = os.environ.get("BUILDSUBMIT_NON_INTERACTIVE")
    if forced_non_interactive is not None:
        cfg.non_interactive = _parse_bool(forced_non_interactive)
    elif _parse_bool(os.environ.get("CI", "")):
        cfg.non_interactive = True

    return cfg
