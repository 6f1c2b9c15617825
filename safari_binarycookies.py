#!/usr/bin/env python3
"""
seher - Safari Cookies.binarycookies Decoder
============================================
Parses Safari's page-based binary cookie container.

Layout (page table big-endian, everything inside a page little-endian):

    "cook" | u32 page_count | u32 page_size * page_count | pages... | checksum
    page:   00 00 01 00 | u32 cookie_count | u32 offset * cookie_count | 00 00 00 00 | records
    record: u32 size | u32 version | u32 flags | u32 has_port
            u32 domain_off | u32 name_off | u32 path_off | u32 value_off | u32 comment_off
            00 00 00 00 | f64 expiry | f64 creation | NUL-terminated strings
"""

import logging
import struct
from typing import List, Optional

from cookie_models import CorruptFormat, NoCredential, ProfileLocator, ProfileNotFound, RawCookieRecord
from cookie_decoders import domain_matches
from timestamp_utils import mac_absolute_to_unix, utc_now

logger = logging.getLogger(__name__)

MAGIC = b"cook"
PAGE_HEADER = b"\x00\x00\x01\x00"
RECORD_HEADER = struct.Struct("<IIIIIIIII4sdd")


class BinaryCookiesReader:
    """Bounds-checked view over a whole container."""

    def __init__(self, data: bytes, source: str):
        self.data = data
        self.source = source

    def _fail(self, message: str) -> CorruptFormat:
        return CorruptFormat(f"{self.source}: {message}")

    def unpack(self, fmt: str, offset: int, end: Optional[int] = None) -> tuple:
        end = len(self.data) if end is None else end
        size = struct.calcsize(fmt)
        if offset < 0 or offset + size > end:
            raise self._fail(f"truncated at offset {offset}")
        return struct.unpack_from(fmt, self.data, offset)

    def cstring(self, offset: int, end: int) -> str:
        if offset <= 0 or offset >= end:
            raise self._fail(f"string offset {offset} outside its record")
        terminator = self.data.find(b"\x00", offset, end)
        if terminator < 0:
            raise self._fail(f"unterminated string at offset {offset}")
        try:
            return self.data[offset:terminator].decode("utf-8")
        except UnicodeDecodeError:
            raise self._fail(f"invalid UTF-8 at offset {offset}") from None

    def page_table(self) -> List[int]:
        if self.data[:4] != MAGIC:
            raise self._fail("missing 'cook' magic")
        (page_count,) = self.unpack(">I", 4)
        sizes = list(self.unpack(f">{page_count}I", 8)) if page_count else []
        start = 8 + 4 * page_count
        if start + sum(sizes) > len(self.data):
            raise self._fail("page table points past end of file")
        return sizes

    def pages(self):
        """Yield (start, end) byte ranges of each page."""
        sizes = self.page_table()
        start = 8 + 4 * len(sizes)
        for size in sizes:
            yield start, start + size
            start += size

    def records(self, page_start: int, page_end: int) -> List[RawCookieRecord]:
        if self.data[page_start:page_start + 4] != PAGE_HEADER:
            raise self._fail(f"bad page header at offset {page_start}")
        (count,) = self.unpack("<I", page_start + 4, page_end)
        offsets = self.unpack(f"<{count}I", page_start + 8, page_end) if count else ()

        records = []
        for rel_offset in offsets:
            records.append(self.record(page_start + rel_offset, page_end))
        return records

    def record(self, start: int, page_end: int) -> RawCookieRecord:
        (size, _version, flags, _has_port,
         domain_off, name_off, path_off, value_off, _comment_off,
         marker, expiry, creation) = self.unpack(RECORD_HEADER.format, start, page_end)
        if marker != b"\x00\x00\x00\x00":
            raise self._fail(f"bad record header at offset {start}")
        end = start + size
        if size < RECORD_HEADER.size or end > page_end:
            raise self._fail(f"record at offset {start} overruns its page")

        return RawCookieRecord(
            name=self.cstring(start + name_off, end),
            domain=self.cstring(start + domain_off, end),
            path=self.cstring(start + path_off, end),
            expires_utc=mac_absolute_to_unix(expiry),
            creation_utc=mac_absolute_to_unix(creation),
            value=self.cstring(start + value_off, end).encode("utf-8"),
        )


def parse_binarycookies(data: bytes, source: str = "Cookies.binarycookies") -> List[RawCookieRecord]:
    """Every record in the container, in file order.

    Raises:
        CorruptFormat: Bad magic, bad page/record header or out-of-bounds offset.
    """
    reader = BinaryCookiesReader(data, source)
    records = []
    for start, end in reader.pages():
        records.extend(reader.records(start, end))
    return records


def decode_safari(profile: ProfileLocator, domain: str, now: Optional[float] = None) -> List[RawCookieRecord]:
    """Decode the cookies Safari holds for ``domain``.

    Raises:
        ProfileNotFound: Container file missing.
        CorruptFormat: Container cannot be parsed.
        NoCredential: No unexpired cookie for the domain.
    """
    if not profile.path.is_file():
        raise ProfileNotFound(f"{profile.describe()}: {profile.path} not found")

    try:
        with open(profile.path, "rb") as f:
            data = f.read()
    except OSError as e:
        raise ProfileNotFound(f"{profile.describe()}: cannot read {profile.path}: {e}") from None

    if now is None:
        now = utc_now().timestamp()

    records = []
    for record in parse_binarycookies(data, profile.describe()):
        if not domain_matches(record.domain, domain):
            continue
        if record.is_expired(now):
            logger.debug("Skipping expired cookie %s on %s", record.name, record.domain)
            continue
        records.append(record)

    if not records:
        raise NoCredential(f"{profile.describe()}: no cookies for {domain}")
    return records
