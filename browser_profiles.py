#!/usr/bin/env python3
"""Browser installation and profile discovery (macOS, Linux, Windows).

Chromium family: <user data dir>/{Default,Profile N}/[Network/]Cookies
Firefox: profiles.ini -> <profile>/cookies.sqlite
Safari: sandboxed Cookies.binarycookies container (macOS only)
"""

import configparser
import logging
import os
import sys
from pathlib import Path
from typing import Dict, List, Mapping, Optional

from cookie_models import BrowserFamily, BrowserKind, ProfileLocator, ProfileNotFound

logger = logging.getLogger(__name__)

DEFAULT_PROFILE = "Default"

# Relative to ~/Library/Application Support
MACOS_PATHS: Dict[BrowserKind, str] = {
    BrowserKind.CHROME: "Google/Chrome",
    BrowserKind.EDGE: "Microsoft Edge",
    BrowserKind.BRAVE: "BraveSoftware/Brave-Browser",
    BrowserKind.CHROMIUM: "Chromium",
    BrowserKind.VIVALDI: "Vivaldi",
    BrowserKind.COMET: "Comet",
    BrowserKind.DIA: "Dia",
    BrowserKind.ATLAS: "Atlas",
    BrowserKind.FIREFOX: "Firefox",
}

SAFARI_COOKIES = "Library/Containers/com.apple.Safari/Data/Library/Cookies/Cookies.binarycookies"

# Relative to ~/.config (Firefox is special-cased)
LINUX_PATHS: Dict[BrowserKind, str] = {
    BrowserKind.CHROME: "google-chrome",
    BrowserKind.EDGE: "microsoft-edge",
    BrowserKind.BRAVE: "BraveSoftware/Brave-Browser",
    BrowserKind.CHROMIUM: "chromium",
    BrowserKind.VIVALDI: "vivaldi",
    BrowserKind.COMET: "comet",
    BrowserKind.DIA: "dia",
    BrowserKind.ATLAS: "atlas",
}

# Relative to %LOCALAPPDATA% (Firefox lives under %APPDATA%)
WINDOWS_PATHS: Dict[BrowserKind, str] = {
    BrowserKind.CHROME: "Google/Chrome/User Data",
    BrowserKind.EDGE: "Microsoft/Edge/User Data",
    BrowserKind.BRAVE: "BraveSoftware/Brave-Browser/User Data",
    BrowserKind.CHROMIUM: "Chromium/User Data",
    BrowserKind.VIVALDI: "Vivaldi/User Data",
    BrowserKind.COMET: "Comet/User Data",
    BrowserKind.DIA: "Dia/User Data",
    BrowserKind.ATLAS: "Atlas/User Data",
}


def chromium_cookie_db(profile_path: Path) -> Optional[Path]:
    """Cookies moved under Network/ in Chrome 96."""
    for candidate in (profile_path / "Network" / "Cookies", profile_path / "Cookies"):
        if candidate.is_file():
            return candidate
    return None


class BrowserDetector:
    """Locates browser data directories and their profiles.

    ``home``, ``platform`` and ``environ`` are injectable so tests can point
    the detector at a synthetic tree.
    """

    def __init__(
        self,
        home: Optional[Path] = None,
        platform: str = sys.platform,
        environ: Optional[Mapping[str, str]] = None,
    ):
        self.home = Path(home) if home is not None else Path.home()
        self.platform = platform
        self.environ = os.environ if environ is None else environ

    @property
    def is_macos(self) -> bool:
        return self.platform == "darwin"

    @property
    def is_windows(self) -> bool:
        return self.platform == "win32"

    def base_path(self, browser: BrowserKind) -> Optional[Path]:
        """Browser's data root, or None where it does not exist on this OS."""
        if self.is_macos:
            if browser is BrowserKind.SAFARI:
                return self.home / SAFARI_COOKIES
            return self.home / "Library" / "Application Support" / MACOS_PATHS[browser]

        if browser is BrowserKind.SAFARI:
            return None

        if self.is_windows:
            if browser is BrowserKind.FIREFOX:
                app_data = self.environ.get("APPDATA")
                return Path(app_data) / "Mozilla" / "Firefox" if app_data else None
            local_app_data = self.environ.get("LOCALAPPDATA")
            return Path(local_app_data) / WINDOWS_PATHS[browser] if local_app_data else None

        if browser is BrowserKind.FIREFOX:
            return self.home / ".mozilla" / "firefox"
        config_home = self.environ.get("XDG_CONFIG_HOME") or str(self.home / ".config")
        return Path(config_home) / LINUX_PATHS[browser]

    def is_installed(self, browser: BrowserKind) -> bool:
        path = self.base_path(browser)
        return path is not None and path.exists()

    def detect_browsers(self) -> List[BrowserKind]:
        """Installed browsers, in declaration order."""
        return [browser for browser in BrowserKind if self.is_installed(browser)]

    def list_profiles(self, browser: BrowserKind) -> List[ProfileLocator]:
        """Profiles that actually hold a cookie store. Default comes first."""
        base = self.base_path(browser)
        if base is None or not base.exists():
            return []

        if browser.family is BrowserFamily.SAFARI:
            return [ProfileLocator(browser, DEFAULT_PROFILE, base)]

        if browser.family is BrowserFamily.FIREFOX:
            return self._list_firefox_profiles(browser, base)

        profiles = []
        for entry in base.iterdir():
            if not entry.is_dir():
                continue
            if entry.name != DEFAULT_PROFILE and not entry.name.startswith("Profile "):
                continue
            if chromium_cookie_db(entry) is None:
                continue
            profiles.append(ProfileLocator(browser, entry.name, entry))

        profiles.sort(key=lambda p: (p.name != DEFAULT_PROFILE, p.name))
        return profiles

    def _list_firefox_profiles(self, browser: BrowserKind, base: Path) -> List[ProfileLocator]:
        profiles_ini = base / "profiles.ini"
        if not profiles_ini.is_file():
            return []

        parser = configparser.ConfigParser(interpolation=None)
        try:
            parser.read(profiles_ini, encoding="utf-8")
        except configparser.Error as e:
            logger.warning("Cannot parse %s: %s", profiles_ini, e)
            return []

        profiles = []
        for section in parser.sections():
            if not section.startswith("Profile"):
                continue
            entry = parser[section]
            name = entry.get("Name")
            rel_path = entry.get("Path")
            if not name or not rel_path:
                continue
            path = base / rel_path if entry.get("IsRelative", "1") == "1" else Path(rel_path)
            if not (path / "cookies.sqlite").is_file():
                continue
            profiles.append((entry.get("Default", "0") != "1", ProfileLocator(browser, name, path)))

        # Stable: Default=1 first, then profiles.ini order
        profiles.sort(key=lambda item: item[0])
        return [profile for _, profile in profiles]

    def resolve_profile(self, browser: BrowserKind, profile_name: Optional[str] = None) -> ProfileLocator:
        """Find a profile by name, or the conventional default.

        Raises:
            ProfileNotFound: browser not installed, or no such profile.
        """
        if not self.is_installed(browser):
            raise ProfileNotFound(f"{browser.value} is not installed (looked in {self.base_path(browser)})")

        profiles = self.list_profiles(browser)
        if not profiles:
            raise ProfileNotFound(f"{browser.value} has no profile with a cookie store")

        if profile_name is None:
            return profiles[0]

        for profile in profiles:
            if profile.name == profile_name or profile.path.name == profile_name:
                return profile

        available = ", ".join(p.name for p in profiles)
        raise ProfileNotFound(f"{browser.value} profile '{profile_name}' not found (available: {available})")


def detect_all_browsers(detector: Optional[BrowserDetector] = None) -> List[ProfileLocator]:
    """Every profile of every installed browser."""
    detector = detector or BrowserDetector()
    profiles: List[ProfileLocator] = []
    for browser in detector.detect_browsers():
        profiles.extend(detector.list_profiles(browser))
    return profiles
