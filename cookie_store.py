#!/usr/bin/env python3
"""
seher - Cookie Store Adapter
============================
Single entry point from a browser profile to a usable session credential.
Dispatches to the decoder for the browser family, decrypts only what is
encrypted, and wipes key material before returning.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Tuple

from browser_profiles import BrowserDetector
from chromium_decrypt import decode_plaintext, decrypt, strip_domain_hash
from cookie_decoders import decode_chromium, decode_firefox, pick_preferred
from cookie_models import (
    BrowserFamily,
    BrowserKind,
    Credential,
    DecryptionFailed,
    DecryptionKey,
    KeyUnavailable,
    NoCredential,
    ProfileLocator,
    ProfileNotFound,
    RawCookieRecord,
    SeherError,
)
from key_providers import KeyProvider, get_key_provider
from safari_binarycookies import decode_safari

logger = logging.getLogger(__name__)

Decoder = Callable[[ProfileLocator, str], List[RawCookieRecord]]

DECODERS: Dict[BrowserFamily, Decoder] = {
    BrowserFamily.CHROMIUM: decode_chromium,
    BrowserFamily.FIREFOX: decode_firefox,
    BrowserFamily.SAFARI: decode_safari,
}


@dataclass(frozen=True)
class CookieTarget:
    """What to pull out of a store for one provider.

    ``companion_cookies`` are sent alongside the session cookie when present;
    those also listed in ``required_companions`` must be present.
    """
    domain: str
    session_cookie: str
    companion_cookies: Tuple[str, ...] = ()
    required_companions: Tuple[str, ...] = ()


class CookieStoreAdapter:
    """Turns (profile, target) into a Credential or a typed failure."""

    def __init__(self, key_provider: Optional[KeyProvider] = None, detector: Optional[BrowserDetector] = None):
        self.key_provider = key_provider or get_key_provider()
        self.detector = detector or BrowserDetector()

    def extract(self, profile: ProfileLocator, target: CookieTarget) -> Credential:
        """Extract the session credential ``target`` names from ``profile``.

        Raises:
            ProfileNotFound, CorruptFormat, NoCredential, KeyUnavailable,
            DecryptionFailed: each naming the browser profile.
        """
        decoder = DECODERS[profile.browser.family]
        preferred = pick_preferred(decoder(profile, target.domain))

        session = preferred.get(target.session_cookie)
        if session is None:
            raise NoCredential(
                f"{profile.describe()}: no '{target.session_cookie}' cookie for {target.domain}"
            )

        missing = [name for name in target.required_companions if name not in preferred]
        if missing:
            raise NoCredential(
                f"{profile.describe()}: missing {', '.join(missing)} cookie for {target.domain}"
            )

        wanted = [session] + [preferred[name] for name in target.companion_cookies if name in preferred]
        values = self._reveal(profile, wanted)

        value = values.pop(session.name)
        if not value:
            raise NoCredential(f"{profile.describe()}: '{session.name}' cookie is empty")

        logger.debug("Extracted %s from %s", session.name, profile.describe())
        return Credential(name=session.name, value=value, domain=session.domain, companions=values)

    def _reveal(self, profile: ProfileLocator, records: List[RawCookieRecord]) -> Dict[str, str]:
        """Plaintext for each record, decrypting with a per-call key."""
        keys: Dict[str, DecryptionKey] = {}
        values: Dict[str, str] = {}
        try:
            for record in records:
                if not record.encrypted:
                    values[record.name] = decode_plaintext(record.value, record.domain)
                    continue

                key = keys.get(record.version_tag)
                if key is None:
                    key = self.key_provider.get_master_key(profile, record.version_tag)
                    keys[record.version_tag] = key

                try:
                    plaintext = decrypt(record.value, key, record.version_tag)
                    if record.has_domain_hash:
                        plaintext = strip_domain_hash(plaintext, record.domain)
                    values[record.name] = decode_plaintext(plaintext, record.domain)
                except DecryptionFailed as e:
                    raise DecryptionFailed(
                        f"{profile.describe()}: cookie '{record.name}' on {record.domain}: {e}"
                    ) from None
        except KeyUnavailable as e:
            raise KeyUnavailable(f"{profile.describe()}: {e}") from None
        finally:
            for key in keys.values():
                key.wipe()
        return values

    def candidate_profiles(self, browser: Optional[BrowserKind] = None,
                           profile_name: Optional[str] = None) -> List[ProfileLocator]:
        """Profiles to try, in order.

        An explicit browser (and profile) narrows the search; otherwise
        every installed Chromium-family browser is tried, default profile first.
        A profile name without a browser keeps only the profiles of that name.
        """
        if browser is not None:
            if profile_name is not None:
                return [self.detector.resolve_profile(browser, profile_name)]
            profiles = self.detector.list_profiles(browser)
            if not profiles:
                raise ProfileNotFound(f"{browser.value} has no profile with a cookie store")
            return profiles

        profiles = []
        for installed in self.detector.detect_browsers():
            if installed.is_chromium_based:
                profiles.extend(self.detector.list_profiles(installed))
        if not profiles:
            raise ProfileNotFound("No Chromium-family browser with a cookie store found")
        if profile_name is not None:
            named = [p for p in profiles if profile_name in (p.name, p.path.name)]
            if not named:
                raise ProfileNotFound(f"No Chromium-family browser has a profile named '{profile_name}'")
            return named
        return profiles

    def find_credential(self, target: CookieTarget, browser: Optional[BrowserKind] = None,
                        profile_name: Optional[str] = None) -> Tuple[ProfileLocator, Credential]:
        """First profile that yields a credential for ``target``.

        Raises:
            SeherError: The most informative failure when no profile works.
        """
        errors: List[SeherError] = []
        for profile in self.candidate_profiles(browser, profile_name):
            try:
                return profile, self.extract(profile, target)
            except SeherError as e:
                logger.debug("%s", e)
                errors.append(e)

        # A key/format problem explains more than a plain miss elsewhere
        for error in errors:
            if not isinstance(error, (NoCredential, ProfileNotFound)):
                raise error
        raise errors[-1]
