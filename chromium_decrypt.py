#!/usr/bin/env python3
"""Chromium cookie value decryption.

Schemes: v10/v11 AES-128-CBC (macOS, Linux), v10 AES-256-GCM (Windows)

GCM values carry a tag, so any tampering or wrong key is detected. CBC values
are unauthenticated: corruption only shows up as a padding, domain-hash or
UTF-8 failure, and a damaged value can still decrypt to readable garbage.

Requires: pycryptodome
"""

import hashlib
import os
from hashlib import pbkdf2_hmac
from typing import Optional, Tuple

from cookie_models import DecryptionFailed, DecryptionKey, DependencyMissing

SCHEME_CBC = "aes-128-cbc"
SCHEME_GCM = "aes-256-gcm"

VERSION_TAGS = (b"v10", b"v11", b"v20")

CBC_SALT = b"saltysalt"
CBC_IV = b" " * 16
CBC_KEY_LENGTH = 16

GCM_NONCE_LENGTH = 12
GCM_TAG_LENGTH = 16

# Chromium cookie DB schema 24+ prepends sha256(host_key) to the plaintext
DOMAIN_HASH_LENGTH = 32


def _aes():
    try:
        from Crypto.Cipher import AES
        from Crypto.Util.Padding import pad, unpad
    except ImportError:
        raise DependencyMissing(
            "pycryptodome is required for AES decryption. "
            "Install with: pip install pycryptodome"
        )
    return AES, pad, unpad


def derive_cbc_key(password: bytes, iterations: int) -> bytes:
    """PBKDF2-SHA1 key derivation: salt=saltysalt, keylen=16"""
    return pbkdf2_hmac("sha1", password, CBC_SALT, iterations, CBC_KEY_LENGTH)


def split_version(encrypted_value: bytes) -> Tuple[Optional[str], bytes]:
    """Returns (version_tag, payload). Tag is None for unencrypted bytes."""
    prefix = encrypted_value[:3]
    if prefix in VERSION_TAGS:
        return prefix.decode("ascii"), encrypted_value[3:]
    return None, encrypted_value


def _aes_cbc_decrypt(payload: bytes, key: memoryview) -> bytes:
    """AES-128-CBC decrypt. Format: ciphertext, fixed IV of 16 spaces"""
    AES, _, unpad = _aes()
    if not payload or len(payload) % AES.block_size:
        raise DecryptionFailed(f"AES-CBC payload has invalid length {len(payload)}")

    cipher = AES.new(key, AES.MODE_CBC, iv=CBC_IV)
    try:
        return unpad(cipher.decrypt(payload), AES.block_size)
    except ValueError:
        raise DecryptionFailed("AES-CBC padding check failed (wrong key or corrupted value)") from None


def _aes_gcm_decrypt(payload: bytes, key: memoryview) -> bytes:
    """AES-GCM decrypt. Format: nonce(12) + ciphertext + tag(16)"""
    AES, _, _ = _aes()
    if len(payload) < GCM_NONCE_LENGTH + GCM_TAG_LENGTH:
        raise DecryptionFailed(f"AES-GCM payload too short ({len(payload)} bytes)")

    nonce = payload[:GCM_NONCE_LENGTH]
    ciphertext = payload[GCM_NONCE_LENGTH:-GCM_TAG_LENGTH]
    tag = payload[-GCM_TAG_LENGTH:]

    cipher = AES.new(key, AES.MODE_GCM, nonce=nonce)
    try:
        return cipher.decrypt_and_verify(ciphertext, tag)
    except ValueError:
        raise DecryptionFailed("AES-GCM authentication tag mismatch") from None


def decrypt(encrypted_value: bytes, key: DecryptionKey, version_tag: str) -> bytes:
    """Decrypt one ``encrypted_value`` column.

    Args:
        encrypted_value: Raw column bytes, including the version prefix.
        key: Master key from a key provider; its scheme picks the cipher.
        version_tag: Tag reported by the decoder (``v10``/``v11``/``v20``).

    Returns:
        Plaintext bytes (still carrying the domain hash on schema 24+).

    Raises:
        DecryptionFailed: Unknown tag, short payload, bad padding or tag.
    """
    tag, payload = split_version(encrypted_value)
    if tag is None or tag != version_tag:
        raise DecryptionFailed(f"Value does not carry the expected {version_tag} header")
    if tag == "v20":
        raise DecryptionFailed("v20 app-bound encryption is not supported")

    if key.scheme == SCHEME_CBC:
        return _aes_cbc_decrypt(payload, key.material)
    if key.scheme == SCHEME_GCM:
        if tag != "v10":
            raise DecryptionFailed(f"{tag} values are not AES-GCM encrypted")
        return _aes_gcm_decrypt(payload, key.material)

    raise DecryptionFailed(f"Unknown key scheme: {key.scheme}")


def encrypt(plaintext: bytes, key: DecryptionKey, version_tag: str = "v10",
            nonce: Optional[bytes] = None) -> bytes:
    """Produce an ``encrypted_value`` the way the browser writes it."""
    AES, pad, _ = _aes()
    header = version_tag.encode("ascii")

    if key.scheme == SCHEME_CBC:
        cipher = AES.new(key.material, AES.MODE_CBC, iv=CBC_IV)
        return header + cipher.encrypt(pad(plaintext, AES.block_size))

    if key.scheme == SCHEME_GCM:
        nonce = nonce or os.urandom(GCM_NONCE_LENGTH)
        cipher = AES.new(key.material, AES.MODE_GCM, nonce=nonce)
        ciphertext, tag = cipher.encrypt_and_digest(plaintext)
        return header + nonce + ciphertext + tag

    raise DecryptionFailed(f"Unknown key scheme: {key.scheme}")


def domain_hash(host_key: str) -> bytes:
    return hashlib.sha256(host_key.encode("utf-8")).digest()


def strip_domain_hash(plaintext: bytes, host_key: str) -> bytes:
    """Verify and remove the sha256(host_key) prefix (cookie DB version 24+)."""
    if len(plaintext) < DOMAIN_HASH_LENGTH:
        raise DecryptionFailed("Decrypted value shorter than its domain hash")
    if plaintext[:DOMAIN_HASH_LENGTH] != domain_hash(host_key):
        raise DecryptionFailed(f"Domain hash mismatch for cookie on {host_key}")
    return plaintext[DOMAIN_HASH_LENGTH:]


def decode_plaintext(plaintext: bytes, host_key: str) -> str:
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError:
        raise DecryptionFailed(f"Decrypted cookie on {host_key} is not valid UTF-8") from None
