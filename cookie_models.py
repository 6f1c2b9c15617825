#!/usr/bin/env python3
"""
seher - Data Models
===================
Shared data models for cookie extraction and rate-limit scheduling,
plus the error taxonomy every other module raises.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional, Tuple


# Errors
class SeherError(Exception):
    """Base error. Messages carry browser/profile/agent context, never secrets."""


class ProfileNotFound(SeherError): pass
class CorruptFormat(SeherError): pass
class NoCredential(SeherError): pass
class KeyUnavailable(SeherError): pass
class DecryptionFailed(SeherError): pass
class DependencyMissing(SeherError): pass
class Unauthenticated(SeherError): pass
class ProbeFailed(SeherError): pass
class AllAgentsUnauthenticated(SeherError): pass
class SchedulingCancelled(SeherError): pass
class WaitLimitExceeded(SeherError): pass


class BrowserFamily(Enum):
    """On-disk cookie store formats."""
    CHROMIUM = "chromium"
    FIREFOX = "firefox"
    SAFARI = "safari"


class BrowserKind(Enum):
    """Supported browsers. Chromium variants share one format."""
    CHROME = "Chrome"
    EDGE = "Edge"
    BRAVE = "Brave"
    CHROMIUM = "Chromium"
    VIVALDI = "Vivaldi"
    COMET = "Comet"
    DIA = "Dia"
    ATLAS = "Atlas"
    FIREFOX = "Firefox"
    SAFARI = "Safari"

    @property
    def family(self) -> BrowserFamily:
        if self is BrowserKind.FIREFOX:
            return BrowserFamily.FIREFOX
        if self is BrowserKind.SAFARI:
            return BrowserFamily.SAFARI
        return BrowserFamily.CHROMIUM

    @property
    def is_chromium_based(self) -> bool:
        return self.family is BrowserFamily.CHROMIUM

    @classmethod
    def parse(cls, name: str) -> "BrowserKind":
        """Look up a browser by case-insensitive name."""
        wanted = name.strip().lower()
        for kind in cls:
            if kind.value.lower() == wanted:
                return kind
        raise ValueError(f"Unknown browser: {name}")


@dataclass(frozen=True)
class ProfileLocator:
    """A resolved browser profile.

    ``path`` is the profile directory for Chromium and Firefox, and the
    ``Cookies.binarycookies`` container itself for Safari.
    """
    browser: BrowserKind
    name: str
    path: Path

    @property
    def user_data_dir(self) -> Path:
        """Chromium user data directory (holds ``Local State``)."""
        return self.path.parent

    def describe(self) -> str:
        return f"{self.browser.value} profile '{self.name}'"


@dataclass(frozen=True)
class RawCookieRecord:
    """One cookie row as decoded from a browser store.

    Timestamps are unix seconds; ``expires_utc`` of 0 marks a session cookie.
    """
    name: str
    domain: str
    path: str
    expires_utc: float
    creation_utc: float
    value: bytes = field(repr=False)
    encrypted: bool = False
    version_tag: Optional[str] = None
    has_domain_hash: bool = False

    def is_expired(self, now: Optional[float] = None) -> bool:
        if self.expires_utc <= 0:
            return False
        if now is None:
            now = datetime.now(timezone.utc).timestamp()
        return self.expires_utc < now


class DecryptionKey:
    """Key material for one (platform, browser) pair.

    Held in a ``bytearray`` so it can be zeroed once decryption is done.
    ``material`` is a read-only view of that buffer, so ciphers built from it
    see the zeroed bytes after ``wipe``. Use as a context manager to
    guarantee the wipe.
    """

    def __init__(self, material: bytes, scheme: str, browser: BrowserKind):
        self._material = bytearray(material)
        self._wiped = False
        self.scheme = scheme
        self.browser = browser

    @property
    def material(self) -> memoryview:
        if self._wiped:
            raise KeyUnavailable(f"{self.browser.value} key already wiped")
        return memoryview(self._material).toreadonly()

    @property
    def wiped(self) -> bool:
        return self._wiped

    def wipe(self) -> None:
        # Zero in place; views handed out keep pointing at this buffer
        for i in range(len(self._material)):
            self._material[i] = 0
        self._wiped = True

    def __enter__(self) -> "DecryptionKey":
        return self

    def __exit__(self, *exc_info) -> None:
        self.wipe()

    def __repr__(self) -> str:
        return f"DecryptionKey(scheme={self.scheme!r}, browser={self.browser.value!r})"


@dataclass(frozen=True)
class Credential:
    """Session cookie ready to send as an HTTP ``Cookie`` header."""
    name: str
    value: str = field(repr=False)
    domain: str
    companions: Dict[str, str] = field(default_factory=dict, repr=False)

    def cookie_header(self) -> str:
        pairs = [(self.name, self.value)] + sorted(self.companions.items())
        return "; ".join(f"{name}={value}" for name, value in pairs)

    def companion(self, name: str) -> Optional[str]:
        return self.companions.get(name)


@dataclass(frozen=True)
class AgentConfig:
    """An external command to launch once its provider is usable."""
    command: str = "claude"
    args: Tuple[str, ...] = ()

    def argv(self, extra: Optional[List[str]] = None) -> List[str]:
        return [self.command, *self.args, *(extra or [])]

    def describe(self) -> str:
        return " ".join([self.command, *self.args])


DEFAULT_AGENT = AgentConfig()


class RateLimitState:
    """Base for the two probe outcomes."""

    limited = False


@dataclass(frozen=True)
class Available(RateLimitState):
    pass


@dataclass(frozen=True)
class Limited(RateLimitState):
    resets_at: datetime
    limited = True

    def is_over(self, now: datetime) -> bool:
        return self.resets_at <= now


AVAILABLE = Available()


@dataclass(frozen=True)
class SchedulingDecision:
    """Which agent to run, and when it became usable."""
    agent: AgentConfig
    ready_at: datetime
    index: int = 0
