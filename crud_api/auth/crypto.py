"""Cryptographic helpers for the authentication subsystem."""

from __future__ import annotations

import base64
import binascii
import os
import secrets
from dataclasses import dataclass

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import ConfigurationError, IntegrityError

KEY_BYTES = 32
IV_BYTES = 12
TAG_BYTES = 16


@dataclass(frozen=True)
class EncryptedValue:
    """Base64 ciphertext, nonce and authentication tag, stored as separate columns."""

    ciphertext: str
    iv: str
    tag: str


def parse_encryption_key(key_hex: str) -> bytes:
    """Decode a 64-character hex key into the 32 raw bytes AES-256 needs."""
    try:
        key = bytes.fromhex(key_hex or "")
    except ValueError as exc:
        raise ConfigurationError("Encryption key must be a hexadecimal string") from exc
    if len(key) != KEY_BYTES:
        raise ConfigurationError(
            f"Encryption key must be {KEY_BYTES} bytes ({KEY_BYTES * 2} hex characters)"
        )
    return key


def _b64(raw: bytes) -> str:
    return base64.b64encode(raw).decode("ascii")


def _unb64(value: str, label: str) -> bytes:
    try:
        return base64.b64decode(value, validate=True)
    except (binascii.Error, ValueError, TypeError) as exc:
        raise IntegrityError(f"Encrypted {label} is not valid base64") from exc


def encrypt(plaintext: str, key_hex: str) -> EncryptedValue:
    """Encrypt ``plaintext`` with AES-256-GCM under a fresh random nonce.

    Args:
        plaintext (str): Secret to protect.
        key_hex (str): 64 hex characters.
    Returns:
        EncryptedValue: Base64 ciphertext, 96-bit nonce and 128-bit tag.
    """
    key = parse_encryption_key(key_hex)
    iv = os.urandom(IV_BYTES)
    sealed = AESGCM(key).encrypt(iv, plaintext.encode("utf-8"), None)
    # AESGCM appends the tag to the ciphertext.
    ciphertext, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
    return EncryptedValue(ciphertext=_b64(ciphertext), iv=_b64(iv), tag=_b64(tag))


def decrypt(ciphertext: str, iv: str, tag: str, key_hex: str) -> str:
    """Reverse :func:`encrypt`.

    Raises:
        IntegrityError: The tag does not verify, the key is wrong or the
            stored triple is malformed.
    """
    key = parse_encryption_key(key_hex)
    raw_ciphertext = _unb64(ciphertext, "ciphertext")
    raw_iv = _unb64(iv, "iv")
    raw_tag = _unb64(tag, "tag")
    if len(raw_iv) != IV_BYTES:
        raise IntegrityError("Encrypted iv has the wrong length")
    if len(raw_tag) != TAG_BYTES:
        raise IntegrityError("Encrypted tag has the wrong length")
    try:
        plaintext = AESGCM(key).decrypt(raw_iv, raw_ciphertext + raw_tag, None)
    except InvalidTag as exc:
        raise IntegrityError("Authentication tag mismatch") from exc
    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise IntegrityError("Decrypted value is not valid UTF-8") from exc


def generate_state_token(length: int = 32) -> str:
    """Generate a URL-safe random nonce."""

    return secrets.token_urlsafe(length)
