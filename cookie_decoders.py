#!/usr/bin/env python3
"""
seher - SQLite Cookie Store Decoders
====================================
Reads Chromium-family ``Cookies`` and Firefox ``cookies.sqlite`` databases.

The live database is never opened: it is copied (with its WAL/journal side
files) into a private temp directory and the copy is opened read-only.
"""

import logging
import shutil
import sqlite3
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional

from browser_profiles import chromium_cookie_db
from chromium_decrypt import split_version
from cookie_models import CorruptFormat, NoCredential, ProfileLocator, ProfileNotFound, RawCookieRecord
from timestamp_utils import firefox_to_unix, utc_now, webkit_to_unix

logger = logging.getLogger(__name__)

SIDE_FILE_SUFFIXES = ("-wal", "-shm", "-journal")

# Chromium prepends sha256(host_key) to values from this schema version on
DOMAIN_HASH_SCHEMA_VERSION = 24


def candidate_hosts(domain: str) -> List[str]:
    """Cookie host values a browser would send to ``domain``.

    The host-only cookie for the domain itself, plus domain cookies
    (leading dot) for the domain and each parent short of the TLD.

    Example:
        "api.claude.ai" -> ["api.claude.ai", ".api.claude.ai", ".claude.ai"]
    """
    domain = domain.strip().lower().lstrip(".")
    labels = domain.split(".")
    hosts = [domain]
    for i in range(len(labels) - 1):
        hosts.append("." + ".".join(labels[i:]))
    return hosts


def domain_matches(host: str, domain: str) -> bool:
    return host.lower() in candidate_hosts(domain)


def preference_key(record: RawCookieRecord):
    """Longer path wins, then the most recently created."""
    return (len(record.path), record.creation_utc)


def pick_preferred(records: Iterable[RawCookieRecord]) -> Dict[str, RawCookieRecord]:
    """Collapse duplicates to one record per cookie name."""
    best: Dict[str, RawCookieRecord] = {}
    for record in records:
        current = best.get(record.name)
        if current is None or preference_key(record) > preference_key(current):
            best[record.name] = record
    return best


@contextmanager
def readonly_copy(db_path: Path) -> Iterator[sqlite3.Connection]:
    """Open a private read-only copy of a browser SQLite database."""
    temp_dir = Path(tempfile.mkdtemp(prefix="seher_cookies_"))
    temp_db = temp_dir / db_path.name
    try:
        try:
            shutil.copy2(db_path, temp_db)
            for suffix in SIDE_FILE_SUFFIXES:
                side_path = db_path.parent / f"{db_path.name}{suffix}"
                if side_path.exists():
                    shutil.copy2(side_path, temp_dir / side_path.name)
        except OSError as e:
            raise ProfileNotFound(f"Cannot copy cookie store {db_path}: {e}") from None

        conn = sqlite3.connect(f"{temp_db.as_uri()}?mode=ro", uri=True)
        try:
            yield conn
        finally:
            conn.close()
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)


def _query(conn: sqlite3.Connection, sql: str, params: Iterable, source: str) -> List[tuple]:
    try:
        return conn.execute(sql, tuple(params)).fetchall()
    except sqlite3.DatabaseError as e:
        # "file is not a database", "no such table", "no such column"
        raise CorruptFormat(f"{source}: not a readable cookie database ({e})") from None


def _as_text(value) -> str:
    if isinstance(value, bytes):
        return value.decode("utf-8", errors="replace")
    return value or ""


def chromium_schema_version(conn: sqlite3.Connection) -> int:
    try:
        row = conn.execute("SELECT value FROM meta WHERE key = 'version'").fetchone()
    except sqlite3.DatabaseError:
        return 0
    try:
        return int(row[0]) if row else 0
    except (TypeError, ValueError):
        return 0


def decode_chromium(profile: ProfileLocator, domain: str, now: Optional[float] = None) -> List[RawCookieRecord]:
    """Decode the cookies a Chromium-family profile holds for ``domain``.

    Raises:
        ProfileNotFound: No Cookies database in the profile.
        CorruptFormat: The file is not a Chromium cookie database.
        NoCredential: No unexpired cookie for the domain.
    """
    db_path = chromium_cookie_db(profile.path)
    if db_path is None:
        raise ProfileNotFound(f"{profile.describe()}: Cookies database not found in {profile.path}")

    if now is None:
        now = utc_now().timestamp()
    hosts = candidate_hosts(domain)
    placeholders = ", ".join("?" for _ in hosts)

    with readonly_copy(db_path) as conn:
        conn.text_factory = bytes
        rows = _query(conn, f"""
            SELECT host_key, name, value, encrypted_value, path, creation_utc, expires_utc
            FROM cookies
            WHERE host_key IN ({placeholders})
        """, hosts, profile.describe())
        has_domain_hash = chromium_schema_version(conn) >= DOMAIN_HASH_SCHEMA_VERSION

    records = []
    for host_key, name, value, encrypted_value, path, creation_utc, expires_utc in rows:
        plain = value if isinstance(value, bytes) else _as_text(value).encode("utf-8")
        encrypted_value = encrypted_value or b""

        if plain:
            raw, version_tag = plain, None
        else:
            version_tag, _ = split_version(encrypted_value)
            raw = encrypted_value

        record = RawCookieRecord(
            name=_as_text(name),
            domain=_as_text(host_key),
            path=_as_text(path) or "/",
            expires_utc=webkit_to_unix(expires_utc),
            creation_utc=webkit_to_unix(creation_utc),
            value=raw,
            encrypted=version_tag is not None,
            version_tag=version_tag,
            has_domain_hash=has_domain_hash and version_tag is not None,
        )
        if record.is_expired(now):
            logger.debug("Skipping expired cookie %s on %s", record.name, record.domain)
            continue
        records.append(record)

    if not records:
        raise NoCredential(f"{profile.describe()}: no cookies for {domain}")
    return records


def decode_firefox(profile: ProfileLocator, domain: str, now: Optional[float] = None) -> List[RawCookieRecord]:
    """Decode the cookies a Firefox profile holds for ``domain``.

    Firefox stores values in plaintext.

    Raises:
        ProfileNotFound: No cookies.sqlite in the profile.
        CorruptFormat: The file is not a Firefox cookie database.
        NoCredential: No unexpired cookie for the domain.
    """
    db_path = profile.path / "cookies.sqlite"
    if not db_path.is_file():
        raise ProfileNotFound(f"{profile.describe()}: cookies.sqlite not found in {profile.path}")

    if now is None:
        now = utc_now().timestamp()
    hosts = candidate_hosts(domain)
    placeholders = ", ".join("?" for _ in hosts)

    with readonly_copy(db_path) as conn:
        rows = _query(conn, f"""
            SELECT host, name, value, path, creationTime, expiry
            FROM moz_cookies
            WHERE host IN ({placeholders})
        """, hosts, profile.describe())

    records = []
    for host, name, value, path, creation_time, expiry in rows:
        record = RawCookieRecord(
            name=name or "",
            domain=host or "",
            path=path or "/",
            expires_utc=firefox_to_unix(expiry),
            creation_utc=firefox_to_unix(creation_time, microseconds=True),
            value=(value or "").encode("utf-8"),
        )
        if record.is_expired(now):
            logger.debug("Skipping expired cookie %s on %s", record.name, record.domain)
            continue
        records.append(record)

    if not records:
        raise NoCredential(f"{profile.describe()}: no cookies for {domain}")
    return records
