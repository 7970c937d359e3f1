from __future__ import annotations

"""Validation and classification of archive references (URL, path, build ID)."""

import os
import re
from enum import Enum
from urllib.parse import urlparse

_ALLOWED_URL_SCHEMES = ("http", "https")
_UUID_RE = re.compile(
    r"^[0-9a-f]{8}-[0-9a-f]{4}-([0-9a-f])[0-9a-f]{3}-([0-9a-f])[0-9a-f]{3}-[0-9a-f]{12}$",
    re.IGNORECASE,
)
_BUILD_DETAILS_PAGE_RE = re.compile(r"expo\.(dev|io).*/builds/(.{36}).*")


class ReferenceKind(str, Enum):
    """What a bare archive reference points at."""

    URL = "url"
    PATH = "path"
    BUILD_ID = "build_id"
    UNADDRESSABLE = "unaddressable"


def validate_url(url: str) -> bool:
    """Return whether `url` is an absolute http(s) URL."""
    if not url:
        return False
    try:
        parsed = urlparse(url)
    except ValueError:
        return False
    return parsed.scheme.lower() in _ALLOWED_URL_SCHEMES and bool(parsed.netloc)


def is_uuid_v4(value: str) -> bool:
    """Return whether `value` is a canonical RFC 4122 version-4 UUID."""
    match = _UUID_RE.match(value or "")
    if match is None:
        return False
    version, variant = match.group(1), match.group(2).lower()
    return version == "4" and variant in "89ab"


def build_id_from_details_page(url: str) -> str | None:
    """Extract the build ID from a build details page URL, if it embeds one."""
    match = _BUILD_DETAILS_PAGE_RE.search(url or "")
    if match is None:
        return None
    candidate = match.group(2)
    return candidate if is_uuid_v4(candidate) else None


def is_existing_file(path: str) -> bool:
    """Return whether `path` names an existing regular file."""
    return bool(path) and os.path.isfile(path)


def classify_reference(value: str) -> ReferenceKind:
    """Classify a bare reference so it can be mapped to a submission intent."""
    text = (value or "").strip()
    if not text:
        return ReferenceKind.UNADDRESSABLE
    if validate_url(text):
        return ReferenceKind.URL
    if is_uuid_v4(text):
        return ReferenceKind.BUILD_ID
    if is_existing_file(text):
        return ReferenceKind.PATH
    return ReferenceKind.UNADDRESSABLE
