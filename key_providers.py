#!/usr/bin/env python3
"""Chromium master key retrieval, one provider per operating system.

macOS: Keychain "<Browser> Safe Storage" password -> PBKDF2 (1003 iterations)
Linux: Secret Service (libsecret) password -> PBKDF2 (1 iteration), 'peanuts' fallback
Windows: Local State os_crypt.encrypted_key -> DPAPI -> raw AES-256 key
Requires: secretstorage (Linux)
"""

import base64
import json
import logging
import subprocess
import sys
from pathlib import Path
from typing import Callable, Dict, Optional, Tuple

from chromium_decrypt import SCHEME_CBC, SCHEME_GCM, derive_cbc_key
from cookie_models import BrowserKind, DecryptionKey, KeyUnavailable, ProfileLocator

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

if IS_WINDOWS:
    import ctypes
    from ctypes import wintypes


# (Keychain service, Keychain account)
MACOS_KEYCHAIN_ITEMS: Dict[BrowserKind, Tuple[str, str]] = {
    BrowserKind.CHROME: ("Chrome Safe Storage", "Chrome"),
    BrowserKind.EDGE: ("Microsoft Edge Safe Storage", "Microsoft Edge"),
    BrowserKind.BRAVE: ("Brave Safe Storage", "Brave"),
    BrowserKind.CHROMIUM: ("Chromium Safe Storage", "Chromium"),
    BrowserKind.VIVALDI: ("Vivaldi Safe Storage", "Vivaldi"),
    BrowserKind.COMET: ("Comet Safe Storage", "Comet"),
    BrowserKind.DIA: ("Dia Safe Storage", "Dia"),
    BrowserKind.ATLAS: ("Atlas Safe Storage", "Atlas"),
}
MACOS_ITERATIONS = 1003

# libsecret "application" attribute each browser registers under
LINUX_APPLICATIONS: Dict[BrowserKind, str] = {
    BrowserKind.CHROME: "chrome",
    BrowserKind.EDGE: "chromium",
    BrowserKind.BRAVE: "brave",
    BrowserKind.CHROMIUM: "chromium",
    BrowserKind.VIVALDI: "chrome",
    BrowserKind.COMET: "chrome",
    BrowserKind.DIA: "chrome",
    BrowserKind.ATLAS: "chrome",
}
LINUX_SCHEMAS = (
    "chrome_libsecret_os_crypt_password_v2",
    "chrome_libsecret_os_crypt_password_v1",
)
LINUX_ITERATIONS = 1
LINUX_DEFAULT_PASSWORD = b"peanuts"


class KeyProvider:
    """Capability interface: ``get_master_key(profile, version_tag)``."""

    platform = ""

    def get_master_key(self, profile: ProfileLocator, version_tag: str) -> DecryptionKey:
        raise NotImplementedError

    def _check_browser(self, profile: ProfileLocator) -> None:
        if not profile.browser.is_chromium_based:
            raise KeyUnavailable(f"{profile.browser.value} does not encrypt cookies")


class MacKeychainKeyProvider(KeyProvider):
    """Reads the Safe Storage password with the ``security`` tool."""

    platform = "darwin"

    def __init__(self, run: Callable[..., subprocess.CompletedProcess] = subprocess.run):
        self._run = run

    def _keychain_password(self, browser: BrowserKind) -> bytes:
        service, account = MACOS_KEYCHAIN_ITEMS[browser]
        cmd = ["/usr/bin/security", "-q", "find-generic-password", "-w", "-a", account, "-s", service]
        try:
            proc = self._run(cmd, stdout=subprocess.PIPE, stderr=subprocess.PIPE, timeout=60)
        except (OSError, subprocess.SubprocessError) as e:
            raise KeyUnavailable(f"Cannot query Keychain for {service}: {e}") from None
        if proc.returncode != 0:
            raise KeyUnavailable(f"Keychain item '{service}' unavailable or access denied")
        password = proc.stdout.strip()
        if not password:
            raise KeyUnavailable(f"Keychain item '{service}' is empty")
        return password

    def get_master_key(self, profile: ProfileLocator, version_tag: str) -> DecryptionKey:
        self._check_browser(profile)
        if version_tag not in ("v10", "v11"):
            raise KeyUnavailable(f"{profile.describe()}: no macOS key for {version_tag} values")
        password = self._keychain_password(profile.browser)
        return DecryptionKey(derive_cbc_key(password, MACOS_ITERATIONS), SCHEME_CBC, profile.browser)


def _secretstorage_password(application: str) -> Optional[bytes]:
    """Look up the os_crypt password in the default Secret Service collection."""
    try:
        import secretstorage
    except ImportError:
        raise KeyUnavailable(
            "secretstorage is required to read the Linux keyring. "
            "Install with: pip install secretstorage"
        ) from None

    try:
        connection = secretstorage.dbus_init()
    except secretstorage.exceptions.SecretServiceNotAvailableException as e:
        logger.debug("Secret Service not available: %s", e)
        return None

    try:
        collection = secretstorage.get_default_collection(connection)
        for schema in LINUX_SCHEMAS:
            items = collection.search_items({"xdg:schema": schema, "application": application})
            for item in items:
                if item.is_locked() and item.unlock():
                    raise KeyUnavailable(f"Keyring unlock dismissed for {application}")
                return item.get_secret()
    except secretstorage.exceptions.SecretStorageException as e:
        raise KeyUnavailable(f"Keyring lookup failed for {application}: {e}") from None
    finally:
        connection.close()
    return None


class LinuxSecretServiceKeyProvider(KeyProvider):
    """v10 uses the built-in password, v11 the keyring one."""

    platform = "linux"

    def __init__(self, lookup: Callable[[str], Optional[bytes]] = _secretstorage_password):
        self._lookup = lookup

    def get_master_key(self, profile: ProfileLocator, version_tag: str) -> DecryptionKey:
        self._check_browser(profile)
        if version_tag == "v10":
            password = LINUX_DEFAULT_PASSWORD
        elif version_tag == "v11":
            application = LINUX_APPLICATIONS[profile.browser]
            password = self._lookup(application)
            if password is None:
                # Chromium's basic password store
                logger.debug("No keyring entry for %s, using built-in password", application)
                password = LINUX_DEFAULT_PASSWORD
        else:
            raise KeyUnavailable(f"{profile.describe()}: no Linux key for {version_tag} values")
        return DecryptionKey(derive_cbc_key(password, LINUX_ITERATIONS), SCHEME_CBC, profile.browser)


# Windows DPAPI
if IS_WINDOWS:
    class DATA_BLOB(ctypes.Structure):
        _fields_ = [("cbData", wintypes.DWORD), ("pbData", ctypes.POINTER(ctypes.c_char))]

    def _win_dpapi_decrypt(encrypted_data: bytes) -> bytes:
        crypt32 = ctypes.windll.crypt32
        kernel32 = ctypes.windll.kernel32

        input_blob = DATA_BLOB()
        input_blob.cbData = len(encrypted_data)
        input_blob.pbData = ctypes.cast(
            ctypes.create_string_buffer(encrypted_data, len(encrypted_data)),
            ctypes.POINTER(ctypes.c_char)
        )

        output_blob = DATA_BLOB()

        # CRYPTPROTECT_UI_FORBIDDEN
        result = crypt32.CryptUnprotectData(
            ctypes.byref(input_blob),
            None, None, None, None, 0x1,
            ctypes.byref(output_blob)
        )

        if not result:
            raise KeyUnavailable(f"DPAPI decryption failed: {ctypes.GetLastError()}")

        decrypted = ctypes.string_at(output_blob.pbData, output_blob.cbData)
        kernel32.LocalFree(output_blob.pbData)

        return decrypted
else:
    def _win_dpapi_decrypt(encrypted_data: bytes) -> bytes:
        raise KeyUnavailable("DPAPI is only available on Windows")


def read_local_state_key(user_data_dir: Path) -> bytes:
    """DPAPI-wrapped key from Local State, with the DPAPI prefix removed."""
    local_state_path = user_data_dir / "Local State"
    if not local_state_path.exists():
        raise KeyUnavailable(f"Local State not found: {local_state_path}")

    try:
        with open(local_state_path, "r", encoding="utf-8") as f:
            local_state = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        raise KeyUnavailable(f"Cannot read Local State: {e}") from None

    encrypted_key_b64 = local_state.get("os_crypt", {}).get("encrypted_key")
    if not encrypted_key_b64:
        raise KeyUnavailable("encrypted_key not found in Local State")

    try:
        encrypted_key = base64.b64decode(encrypted_key_b64)
    except ValueError:
        raise KeyUnavailable("encrypted_key in Local State is not base64") from None

    if encrypted_key[:5] != b"DPAPI":
        raise KeyUnavailable("Invalid key format (missing DPAPI prefix)")

    return encrypted_key[5:]


class WindowsDpapiKeyProvider(KeyProvider):
    """Unwraps the Local State key with the user's DPAPI context."""

    platform = "win32"

    def __init__(self, unprotect: Callable[[bytes], bytes] = _win_dpapi_decrypt):
        self._unprotect = unprotect

    def get_master_key(self, profile: ProfileLocator, version_tag: str) -> DecryptionKey:
        self._check_browser(profile)
        if version_tag == "v20":
            raise KeyUnavailable(f"{profile.describe()}: v20 app-bound keys are not supported")
        if version_tag != "v10":
            raise KeyUnavailable(f"{profile.describe()}: no Windows key for {version_tag} values")

        wrapped = read_local_state_key(profile.user_data_dir)
        key = self._unprotect(wrapped)
        if len(key) != 32:
            raise KeyUnavailable(f"{profile.describe()}: unwrapped key has unexpected length {len(key)}")
        return DecryptionKey(key, SCHEME_GCM, profile.browser)


class UnsupportedKeyProvider(KeyProvider):

    def __init__(self, platform: str):
        self.platform = platform

    def get_master_key(self, profile: ProfileLocator, version_tag: str) -> DecryptionKey:
        raise KeyUnavailable(f"Unsupported platform for cookie decryption: {self.platform}")


def get_key_provider(platform: str = sys.platform) -> KeyProvider:
    """Pick the provider for the host OS (called once at startup)."""
    if platform == "darwin":
        return MacKeychainKeyProvider()
    if platform.startswith("linux") or "bsd" in platform:
        return LinuxSecretServiceKeyProvider()
    if platform == "win32":
        return WindowsDpapiKeyProvider()
    return UnsupportedKeyProvider(platform)
