"""Tests for the Chromium and Firefox SQLite decoders."""

import sqlite3

import pytest

from cookie_decoders import candidate_hosts, decode_chromium, decode_firefox, domain_matches, pick_preferred
from cookie_models import BrowserKind, CorruptFormat, NoCredential, ProfileLocator, ProfileNotFound
from cookie_fixtures import (
    FAR_FUTURE,
    LONG_AGO,
    cbc_key,
    cookie,
    make_chromium_profile,
    make_firefox_profile,
    write_chromium_db,
)


def test_candidate_hosts() -> None:
    """Host-only cookie plus dotted parents, never the bare TLD."""
    assert candidate_hosts("api.claude.ai") == ["api.claude.ai", ".api.claude.ai", ".claude.ai"]
    assert candidate_hosts("claude.ai") == ["claude.ai", ".claude.ai"]


def test_domain_matches() -> None:
    assert domain_matches(".claude.ai", "claude.ai")
    assert domain_matches("CLAUDE.AI", "claude.ai")
    assert not domain_matches(".notclaude.ai", "claude.ai")
    assert not domain_matches(".ai", "claude.ai")


def test_chromium_plaintext_and_encrypted_rows(tmp_path) -> None:
    """Encrypted rows carry their version tag; plaintext rows do not."""
    encrypted = make_chromium_profile(tmp_path / "enc", [cookie("sessionKey", "secret")], key=cbc_key())
    plain = make_chromium_profile(tmp_path / "plain", [cookie("sessionKey", "secret")])

    [record] = decode_chromium(encrypted, "claude.ai")
    assert record.encrypted
    assert record.version_tag == "v10"
    assert record.value.startswith(b"v10")
    assert not record.has_domain_hash

    [record] = decode_chromium(plain, "claude.ai")
    assert not record.encrypted
    assert record.value == b"secret"


def test_chromium_filters_other_domains(tmp_path) -> None:
    """Only hosts that would receive the cookie are returned."""
    profile = make_chromium_profile(tmp_path, [
        cookie("sessionKey", "right", host=".claude.ai"),
        cookie("sessionKey", "wrong", host=".notclaude.ai"),
        cookie("sessionKey", "wrong", host="evil.com"),
    ])
    records = decode_chromium(profile, "claude.ai")
    assert [r.value for r in records] == [b"right"]


def test_chromium_skips_expired(tmp_path) -> None:
    profile = make_chromium_profile(tmp_path, [
        cookie("sessionKey", "old", expires=LONG_AGO),
        cookie("lastActiveOrg", "org"),
    ])
    records = decode_chromium(profile, "claude.ai")
    assert [r.name for r in records] == ["lastActiveOrg"]


def test_chromium_only_expired_is_no_credential(tmp_path) -> None:
    profile = make_chromium_profile(tmp_path, [cookie("sessionKey", "old", expires=LONG_AGO)])
    with pytest.raises(NoCredential):
        decode_chromium(profile, "claude.ai")


def test_chromium_schema_24_marks_domain_hash(tmp_path) -> None:
    """Newer databases prefix encrypted plaintext with the host hash."""
    profile = make_chromium_profile(tmp_path, [cookie("sessionKey", "secret")],
                                    key=cbc_key(), schema_version=24)
    [record] = decode_chromium(profile, "claude.ai")
    assert record.has_domain_hash


def test_chromium_legacy_cookie_location(tmp_path) -> None:
    """Pre-Network/ layouts keep Cookies directly in the profile."""
    write_chromium_db(tmp_path / "Default" / "Cookies", [cookie("sessionKey", "secret")])
    profile = ProfileLocator(BrowserKind.CHROME, "Default", tmp_path / "Default")
    assert decode_chromium(profile, "claude.ai")[0].value == b"secret"


def test_chromium_missing_database(tmp_path) -> None:
    (tmp_path / "Default").mkdir()
    profile = ProfileLocator(BrowserKind.CHROME, "Default", tmp_path / "Default")
    with pytest.raises(ProfileNotFound):
        decode_chromium(profile, "claude.ai")


def test_chromium_corrupt_database(tmp_path) -> None:
    """A file that is not SQLite is a format error, not a crash."""
    db_path = tmp_path / "Default" / "Network" / "Cookies"
    db_path.parent.mkdir(parents=True)
    db_path.write_bytes(b"this is not a database" * 100)
    profile = ProfileLocator(BrowserKind.CHROME, "Default", tmp_path / "Default")
    with pytest.raises(CorruptFormat):
        decode_chromium(profile, "claude.ai")


def test_chromium_wrong_schema(tmp_path) -> None:
    """A SQLite file without a cookies table is a format error."""
    db_path = tmp_path / "Default" / "Network" / "Cookies"
    db_path.parent.mkdir(parents=True)
    conn = sqlite3.connect(db_path)
    conn.execute("CREATE TABLE other (x INTEGER)")
    conn.commit()
    conn.close()
    profile = ProfileLocator(BrowserKind.CHROME, "Default", tmp_path / "Default")
    with pytest.raises(CorruptFormat):
        decode_chromium(profile, "claude.ai")


def test_chromium_store_is_left_untouched(tmp_path) -> None:
    """Decoding reads a copy; the browser's file is byte-identical afterwards."""
    profile = make_chromium_profile(tmp_path, [cookie("sessionKey", "secret")])
    db_path = profile.path / "Network" / "Cookies"
    before = db_path.read_bytes()
    decode_chromium(profile, "claude.ai")
    assert db_path.read_bytes() == before


def test_pick_preferred_longest_path_then_newest(tmp_path) -> None:
    """Longer path wins; on equal paths the most recently created wins."""
    profile = make_chromium_profile(tmp_path, [
        cookie("sessionKey", "root-old", path="/", created=1700000000.0),
        cookie("sessionKey", "api", path="/api", created=1600000000.0),
        cookie("lastActiveOrg", "older", created=1700000000.0),
        cookie("lastActiveOrg", "newer", created=1700000500.0),
    ])
    preferred = pick_preferred(decode_chromium(profile, "claude.ai"))
    assert preferred["sessionKey"].value == b"api"
    assert preferred["lastActiveOrg"].value == b"newer"


def test_firefox_decodes_plaintext(tmp_path) -> None:
    profile = make_firefox_profile(tmp_path / "abcd.default-release", [
        cookie("sessionKey", "secret"),
        cookie("other", "x", host=".example.com"),
    ])
    [record] = decode_firefox(profile, "claude.ai")
    assert record.name == "sessionKey"
    assert record.value == b"secret"
    assert not record.encrypted
    assert record.expires_utc == FAR_FUTURE
    assert record.creation_utc == pytest.approx(1700000000.0)


def test_firefox_millisecond_expiry(tmp_path) -> None:
    """Newer Firefox writes expiry in milliseconds."""
    profile = make_firefox_profile(tmp_path / "p", [cookie("sessionKey", "secret")], expiry_in_ms=True)
    [record] = decode_firefox(profile, "claude.ai")
    assert record.expires_utc == pytest.approx(FAR_FUTURE)


def test_firefox_expired_only(tmp_path) -> None:
    profile = make_firefox_profile(tmp_path / "p", [cookie("sessionKey", "old", expires=LONG_AGO)])
    with pytest.raises(NoCredential):
        decode_firefox(profile, "claude.ai")


def test_firefox_missing_database(tmp_path) -> None:
    profile = ProfileLocator(BrowserKind.FIREFOX, "default", tmp_path)
    with pytest.raises(ProfileNotFound):
        decode_firefox(profile, "claude.ai")
