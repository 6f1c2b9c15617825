"""Tests for the Safari Cookies.binarycookies parser."""

import pytest

from cookie_models import BrowserKind, CorruptFormat, NoCredential, ProfileLocator, ProfileNotFound
from safari_binarycookies import parse_binarycookies, decode_safari
from cookie_fixtures import FAR_FUTURE, LONG_AGO, build_binarycookies, cookie, make_safari_profile


def test_parse_records() -> None:
    """Every record comes back with its strings and unix timestamps."""
    data = build_binarycookies([
        cookie("sessionKey", "secret", path="/"),
        cookie("lastActiveOrg", "org-1", host="claude.ai", created=1700000100.0),
    ])
    records = parse_binarycookies(data)
    assert [(r.name, r.domain, r.path, r.value) for r in records] == [
        ("sessionKey", ".claude.ai", "/", b"secret"),
        ("lastActiveOrg", "claude.ai", "/", b"org-1"),
    ]
    assert records[0].expires_utc == pytest.approx(FAR_FUTURE)
    assert records[1].creation_utc == pytest.approx(1700000100.0)
    assert not records[0].encrypted


def test_empty_container() -> None:
    assert parse_binarycookies(build_binarycookies([])) == []


def test_bad_magic() -> None:
    data = b"kooc" + build_binarycookies([cookie("a", "b")])[4:]
    with pytest.raises(CorruptFormat, match="magic"):
        parse_binarycookies(data)


def test_truncated_container() -> None:
    data = build_binarycookies([cookie("sessionKey", "secret")])
    with pytest.raises(CorruptFormat):
        parse_binarycookies(data[: len(data) // 2])


def test_bad_page_header() -> None:
    data = bytearray(build_binarycookies([cookie("sessionKey", "secret")]))
    # page starts after magic, page count and one page size
    data[12:16] = b"\xff\xff\xff\xff"
    with pytest.raises(CorruptFormat, match="page header"):
        parse_binarycookies(bytes(data))


def test_record_offset_out_of_bounds() -> None:
    data = bytearray(build_binarycookies([cookie("sessionKey", "secret")]))
    # first record offset inside the page
    data[20:24] = (10_000).to_bytes(4, "little")
    with pytest.raises(CorruptFormat):
        parse_binarycookies(bytes(data))


def test_decode_filters_domain_and_expiry(tmp_path) -> None:
    profile = make_safari_profile(tmp_path / "Cookies.binarycookies", [
        cookie("sessionKey", "secret"),
        cookie("sessionKey", "other", host=".example.com"),
        cookie("stale", "x", expires=LONG_AGO),
    ])
    records = decode_safari(profile, "claude.ai")
    assert [(r.name, r.value) for r in records] == [("sessionKey", b"secret")]


def test_decode_no_match(tmp_path) -> None:
    profile = make_safari_profile(tmp_path / "Cookies.binarycookies", [cookie("a", "b", host=".example.com")])
    with pytest.raises(NoCredential):
        decode_safari(profile, "claude.ai")


def test_decode_missing_file(tmp_path) -> None:
    profile = ProfileLocator(BrowserKind.SAFARI, "Default", tmp_path / "Cookies.binarycookies")
    with pytest.raises(ProfileNotFound):
        decode_safari(profile, "claude.ai")
