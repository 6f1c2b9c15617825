"""Builders for synthetic browser cookie stores used across the tests."""

import sqlite3
import struct
from pathlib import Path
from typing import Dict, List, Optional

from chromium_decrypt import SCHEME_CBC, SCHEME_GCM, derive_cbc_key, domain_hash, encrypt
from cookie_models import BrowserKind, DecryptionKey, KeyUnavailable, ProfileLocator
from key_providers import KeyProvider
from safari_binarycookies import MAGIC, PAGE_HEADER, RECORD_HEADER
from timestamp_utils import MAC_EPOCH_OFFSET, unix_to_webkit

# 2100-01-01T00:00:00Z
FAR_FUTURE = 4102444800.0
# 2020-01-01T00:00:00Z
LONG_AGO = 1577836800.0

ORG_ID = "0f1e2d3c-4b5a-4968-8776-a5b4c3d2e1f0"

LINUX_V10_KEY = derive_cbc_key(b"peanuts", 1)
GCM_KEY = bytes(range(32))


def cbc_key() -> DecryptionKey:
    return DecryptionKey(LINUX_V10_KEY, SCHEME_CBC, BrowserKind.CHROME)


def gcm_key(material: bytes = GCM_KEY) -> DecryptionKey:
    return DecryptionKey(material, SCHEME_GCM, BrowserKind.CHROME)


def cookie(name: str, value: str, host: str = ".claude.ai", path: str = "/",
           created: float = 1700000000.0, expires: float = FAR_FUTURE) -> Dict:
    return {"name": name, "value": value, "host": host, "path": path,
            "created": created, "expires": expires}


class StaticKeyProvider(KeyProvider):
    """Hands out fresh copies of a fixed key and remembers each one."""

    def __init__(self, material: bytes = LINUX_V10_KEY, scheme: str = SCHEME_CBC):
        self.material = material
        self.scheme = scheme
        self.issued: List[DecryptionKey] = []
        self.requests: List[str] = []

    def get_master_key(self, profile: ProfileLocator, version_tag: str) -> DecryptionKey:
        self._check_browser(profile)
        if version_tag == "v20":
            raise KeyUnavailable("v20 app-bound keys are not supported")
        self.requests.append(version_tag)
        key = DecryptionKey(self.material, self.scheme, profile.browser)
        self.issued.append(key)
        return key


def write_chromium_db(db_path: Path, cookies: List[Dict], key: Optional[DecryptionKey] = None,
                      schema_version: int = 20, version_tag: str = "v10") -> Path:
    """Write a Chromium ``Cookies`` database.

    Values are encrypted with ``key`` when given, otherwise stored plaintext.
    """
    db_path.parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    try:
        conn.execute("CREATE TABLE meta (key LONGVARCHAR NOT NULL UNIQUE PRIMARY KEY, value LONGVARCHAR)")
        conn.execute("INSERT INTO meta VALUES ('version', ?)", (str(schema_version),))
        conn.execute("""
            CREATE TABLE cookies (
                creation_utc INTEGER NOT NULL,
                host_key TEXT NOT NULL,
                name TEXT NOT NULL,
                value TEXT NOT NULL,
                path TEXT NOT NULL,
                expires_utc INTEGER NOT NULL,
                encrypted_value BLOB DEFAULT ''
            )
        """)
        for entry in cookies:
            plain_value, encrypted_value = entry["value"], b""
            if key is not None:
                plaintext = entry["value"].encode("utf-8")
                if schema_version >= 24:
                    plaintext = domain_hash(entry["host"]) + plaintext
                plain_value, encrypted_value = "", encrypt(plaintext, key, version_tag)
            conn.execute(
                "INSERT INTO cookies VALUES (?, ?, ?, ?, ?, ?, ?)",
                (unix_to_webkit(entry["created"]), entry["host"], entry["name"], plain_value,
                 entry["path"], unix_to_webkit(entry["expires"]), encrypted_value),
            )
        conn.commit()
    finally:
        conn.close()
    return db_path


def make_chromium_profile(user_data_dir: Path, cookies: List[Dict], name: str = "Default",
                          browser: BrowserKind = BrowserKind.CHROME, **kwargs) -> ProfileLocator:
    profile_dir = user_data_dir / name
    write_chromium_db(profile_dir / "Network" / "Cookies", cookies, **kwargs)
    return ProfileLocator(browser, name, profile_dir)


def make_firefox_profile(profile_dir: Path, cookies: List[Dict], name: str = "default-release",
                         expiry_in_ms: bool = False) -> ProfileLocator:
    profile_dir.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(profile_dir / "cookies.sqlite")
    try:
        conn.execute("""
            CREATE TABLE moz_cookies (
                id INTEGER PRIMARY KEY,
                originAttributes TEXT NOT NULL DEFAULT '',
                name TEXT, value TEXT, host TEXT, path TEXT,
                expiry INTEGER, lastAccessed INTEGER, creationTime INTEGER,
                isSecure INTEGER, isHttpOnly INTEGER
            )
        """)
        for entry in cookies:
            expiry = entry["expires"] * 1000 if expiry_in_ms else entry["expires"]
            conn.execute(
                "INSERT INTO moz_cookies (name, value, host, path, expiry, lastAccessed, creationTime,"
                " isSecure, isHttpOnly) VALUES (?, ?, ?, ?, ?, ?, ?, 1, 1)",
                (entry["name"], entry["value"], entry["host"], entry["path"], int(expiry),
                 int(entry["created"] * 1000000), int(entry["created"] * 1000000)),
            )
        conn.commit()
    finally:
        conn.close()
    return ProfileLocator(BrowserKind.FIREFOX, name, profile_dir)


def _binary_record(entry: Dict) -> bytes:
    strings = b""
    offsets = []
    for field in ("host", "name", "path", "value"):
        offsets.append(RECORD_HEADER.size + len(strings))
        strings += entry[field].encode("utf-8") + b"\x00"
    domain_off, name_off, path_off, value_off = offsets
    header = RECORD_HEADER.pack(
        RECORD_HEADER.size + len(strings), 0, 0x5, 0,
        domain_off, name_off, path_off, value_off, 0,
        b"\x00\x00\x00\x00",
        entry["expires"] - MAC_EPOCH_OFFSET,
        entry["created"] - MAC_EPOCH_OFFSET,
    )
    return header + strings


def build_binarycookies(cookies: List[Dict]) -> bytes:
    """A single-page ``Cookies.binarycookies`` container."""
    records = [_binary_record(entry) for entry in cookies]
    offset = 4 + 4 + 4 * len(records) + 4
    offsets = []
    for record in records:
        offsets.append(offset)
        offset += len(record)

    page = PAGE_HEADER + struct.pack(f"<I{len(records)}I", len(records), *offsets) + b"\x00\x00\x00\x00"
    page += b"".join(records)

    checksum = struct.pack(">I", sum(page[i] for i in range(0, len(page), 4)) & 0xFFFFFFFF)
    return MAGIC + struct.pack(">II", 1, len(page)) + page + checksum + b"\x07\x17\x20\x05\x00\x00\x00\x4b"


def make_safari_profile(path: Path, cookies: List[Dict]) -> ProfileLocator:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(build_binarycookies(cookies))
    return ProfileLocator(BrowserKind.SAFARI, "Default", path)
