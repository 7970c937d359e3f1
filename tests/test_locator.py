from __future__ import annotations

import uuid
from pathlib import Path

import pytest

from buildsubmit.locator import (
    ReferenceKind,
    build_id_from_details_page,
    classify_reference,
    is_existing_file,
    is_uuid_v4,
    validate_url,
)


def test_random_uuid4_values_are_accepted() -> None:
    for _ in range(200):
        assert is_uuid_v4(str(uuid.uuid4()))


def test_single_character_mutations_are_rejected() -> None:
    for _ in range(50):
        value = str(uuid.uuid4())
        wrong_version = value[:14] + "1" + value[15:]
        wrong_variant = value[:19] + "c" + value[20:]
        not_hex = "z" + value[1:]
        missing_dash = value[:8] + "0" + value[9:]
        for mutated in (wrong_version, wrong_variant, not_hex, missing_dash):
            assert not is_uuid_v4(mutated), mutated


def test_other_uuid_versions_and_garbage_are_rejected() -> None:
    assert not is_uuid_v4(str(uuid.uuid1()))
    assert not is_uuid_v4(str(uuid.uuid4()) + "0")
    assert not is_uuid_v4("")
    assert not is_uuid_v4("not-a-uuid")


@pytest.mark.parametrize(
    "url,expected",
    [
        ("https://example.com/app.ipa", True),
        ("http://example.com/app.aab", True),
        ("HTTPS://EXAMPLE.COM/app.ipa", True),
        ("ftp://example.com/app.ipa", False),
        ("example.com/app.ipa", False),
        ("https://", False),
        ("", False),
        ("/tmp/app.ipa", False),
    ],
)
def test_validate_url(url: str, expected: bool) -> None:
    assert validate_url(url) is expected


def test_build_id_from_details_page() -> None:
    build_id = "3fa85f64-5717-4562-b3fc-2c963f66afa6"
    url = f"https://expo.dev/accounts/x/projects/y/builds/{build_id}"
    assert build_id_from_details_page(url) == build_id
    assert build_id_from_details_page(url + "?tab=logs") == build_id
    assert build_id_from_details_page("https://expo.dev/accounts/x/projects/y") is None
    assert (
        build_id_from_details_page(f"https://example.com/builds/{build_id}") is None
    )
    v1 = str(uuid.uuid1())
    assert build_id_from_details_page(f"https://expo.io/builds/{v1}") is None


def test_classify_reference(tmp_path: Path) -> None:
    archive = tmp_path / "app.ipa"
    archive.write_bytes(b"ipa")
    assert classify_reference("https://example.com/app.ipa") is ReferenceKind.URL
    assert classify_reference(str(uuid.uuid4())) is ReferenceKind.BUILD_ID
    assert classify_reference(str(archive)) is ReferenceKind.PATH
    assert classify_reference(str(tmp_path / "missing.ipa")) is ReferenceKind.UNADDRESSABLE
    assert classify_reference("   ") is ReferenceKind.UNADDRESSABLE
    assert is_existing_file(str(archive))
    assert not is_existing_file(str(tmp_path))
