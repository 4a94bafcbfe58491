"""
Encryption Codec
=================
Symmetric encryption of document bytes.

Two formats are handled:

  - Current: AES-256-GCM, blob layout ``IV(16) || authTag(16) || ciphertext``.
    Key, IV and tag are also returned hex-encoded for the metadata row.
  - Legacy: the OpenSSL / CryptoJS ``Salted__`` format produced by the old
    browser client (AES-256-CBC, PKCS#7, EVP_BytesToKey with MD5). Only
    this exact KDF reproduces those documents byte for byte.

Per-document keys can optionally be wrapped with a master key before they
are persisted (see ``wrap_key`` / ``unwrap_key``).
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import os
from dataclasses import dataclass
from typing import Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import padding
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from notice_vault.services.errors import AuthenticationError, DecryptionError, FormatError

KEY_LENGTH = 32
IV_LENGTH = 16
TAG_LENGTH = 16

LEGACY_MAGIC = b"Salted__"
LEGACY_SALT_LENGTH = 8
# base64 of "Salted__" followed by the first salt bits
LEGACY_BASE64_PREFIX = "U2FsdGVkX1"

WRAPPED_KEY_PREFIX = "wrapped:v1:"


@dataclass(frozen=True)
class EncryptionResult:
    encrypted_data: bytes  # IV || authTag || ciphertext
    key: str               # hex
    iv: str                # hex
    auth_tag: str          # hex


def generate_key() -> bytes:
    return os.urandom(KEY_LENGTH)


def _key_from_hex(key_hex: str) -> bytes:
    try:
        key = bytes.fromhex(key_hex)
    except (TypeError, ValueError) as exc:
        raise DecryptionError(f"Encryption key is not valid hex: {exc}") from exc
    if len(key) != KEY_LENGTH:
        raise DecryptionError(f"Encryption key must be {KEY_LENGTH} bytes, got {len(key)}")
    return key


# ---------------------------------------------------------------------------
# AES-256-GCM
# ---------------------------------------------------------------------------


def encrypt(data: bytes, key: Optional[bytes] = None) -> EncryptionResult:
    """Encrypt *data* with AES-256-GCM under *key* (fresh random key if None)."""
    if key is None:
        key = generate_key()
    if len(key) != KEY_LENGTH:
        raise ValueError(f"key must be {KEY_LENGTH} bytes, got {len(key)}")

    iv = os.urandom(IV_LENGTH)
    sealed = AESGCM(key).encrypt(iv, data, None)
    ciphertext, auth_tag = sealed[:-TAG_LENGTH], sealed[-TAG_LENGTH:]

    return EncryptionResult(
        encrypted_data=iv + auth_tag + ciphertext,
        key=key.hex(),
        iv=iv.hex(),
        auth_tag=auth_tag.hex(),
    )


def decrypt(encrypted: bytes, key_hex: str) -> bytes:
    """
    Decrypt a ``IV || authTag || ciphertext`` blob.

    Raises
    ------
    FormatError
        Blob too short to hold IV and tag.
    DecryptionError
        Key is not 32 bytes of hex.
    AuthenticationError
        Tag mismatch: wrong key or tampered data.
    """
    if len(encrypted) < IV_LENGTH + TAG_LENGTH:
        raise FormatError(
            f"Encrypted blob is {len(encrypted)} bytes; need at least {IV_LENGTH + TAG_LENGTH}"
        )
    key = _key_from_hex(key_hex)

    iv = encrypted[:IV_LENGTH]
    auth_tag = encrypted[IV_LENGTH:IV_LENGTH + TAG_LENGTH]
    ciphertext = encrypted[IV_LENGTH + TAG_LENGTH:]

    try:
        return AESGCM(key).decrypt(iv, ciphertext + auth_tag, None)
    except InvalidTag as exc:
        raise AuthenticationError("Authentication tag verification failed") from exc


# ---------------------------------------------------------------------------
# Legacy CryptoJS / OpenSSL format
# ---------------------------------------------------------------------------


def derive_key_and_iv(passphrase: str, salt: bytes) -> tuple[bytes, bytes]:
    """OpenSSL ``EVP_BytesToKey`` with MD5, one iteration: 32-byte key, 16-byte IV."""
    password = passphrase.encode("utf-8")
    derived = b""
    block = b""
    while len(derived) < KEY_LENGTH + IV_LENGTH:
        block = hashlib.md5(block + password + salt).digest()
        derived += block
    return derived[:KEY_LENGTH], derived[KEY_LENGTH:KEY_LENGTH + IV_LENGTH]


def decrypt_legacy(encoded: str, passphrase: str) -> str:
    """
    Decrypt a CryptoJS ``AES.encrypt(text, passphrase)`` string to UTF-8 text.

    Raises
    ------
    FormatError
        Not base64, or missing the ``Salted__`` header.
    DecryptionError
        Bad padding, bad block length, or non-UTF-8 plaintext (usually a
        wrong passphrase).
    """
    try:
        raw = base64.b64decode("".join(encoded.split()), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise FormatError(f"Legacy payload is not valid base64: {exc}") from exc

    header = raw[:len(LEGACY_MAGIC)]
    if header != LEGACY_MAGIC or len(raw) < len(LEGACY_MAGIC) + LEGACY_SALT_LENGTH:
        raise FormatError(f'Invalid CryptoJS format. Expected "Salted__", got {header!r}')

    salt = raw[len(LEGACY_MAGIC):len(LEGACY_MAGIC) + LEGACY_SALT_LENGTH]
    ciphertext = raw[len(LEGACY_MAGIC) + LEGACY_SALT_LENGTH:]
    key, iv = derive_key_and_iv(passphrase, salt)

    try:
        decryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).decryptor()
        padded = decryptor.update(ciphertext) + decryptor.finalize()
        unpadder = padding.PKCS7(128).unpadder()
        plaintext = unpadder.update(padded) + unpadder.finalize()
    except ValueError as exc:
        raise DecryptionError(f"Legacy decryption failed: {exc}") from exc

    try:
        return plaintext.decode("utf-8")
    except UnicodeDecodeError as exc:
        raise DecryptionError("Legacy plaintext is not valid UTF-8") from exc


def encrypt_legacy(plaintext: str, passphrase: str, salt: Optional[bytes] = None) -> str:
    """Produce the same output as CryptoJS ``AES.encrypt(plaintext, passphrase)``."""
    if salt is None:
        salt = os.urandom(LEGACY_SALT_LENGTH)
    key, iv = derive_key_and_iv(passphrase, salt)

    padder = padding.PKCS7(128).padder()
    padded = padder.update(plaintext.encode("utf-8")) + padder.finalize()
    encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
    ciphertext = encryptor.update(padded) + encryptor.finalize()

    return base64.b64encode(LEGACY_MAGIC + salt + ciphertext).decode("ascii")


# ---------------------------------------------------------------------------
# Key wrapping
# ---------------------------------------------------------------------------


def wrap_key(key_hex: str, master_key_hex: str) -> str:
    """Encrypt a per-document key under the master key for storage."""
    master = _key_from_hex(master_key_hex)
    sealed = encrypt(bytes.fromhex(key_hex), key=master)
    return WRAPPED_KEY_PREFIX + sealed.encrypted_data.hex()


def unwrap_key(stored: str, master_key_hex: Optional[str]) -> str:
    """
    Return the hex document key for a stored value.

    Values without the wrapped prefix are legacy plaintext keys and are
    returned unchanged.
    """
    if not stored.startswith(WRAPPED_KEY_PREFIX):
        return stored
    if not master_key_hex:
        raise DecryptionError("Document key is wrapped but no master key is configured")
    try:
        blob = bytes.fromhex(stored[len(WRAPPED_KEY_PREFIX):])
    except ValueError as exc:
        raise DecryptionError("Wrapped document key is not valid hex") from exc
    return decrypt(blob, master_key_hex).hex()
