from __future__ import annotations

import os
from dataclasses import dataclass
from typing import Mapping, Optional

from argon2.low_level import Type, hash_secret_raw
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM


# Environment variable that supplies the store password
ENV_PASSWORD = "VARNISH_PASSWORD"

MAGIC = b"VARNISH\x00"
FORMAT_VERSION = 1

SALT_SIZE = 16
NONCE_SIZE = 12  # GCM standard nonce
TAG_SIZE = 16
KEY_SIZE = 32  # AES-256

HEADER_SIZE = len(MAGIC) + 1 + SALT_SIZE + NONCE_SIZE
MIN_SIZE = HEADER_SIZE + TAG_SIZE

MIN_MEMORY_COST_KIB = 64 * 1024


class CryptoError(RuntimeError):
    """Base error for the store encryption codec."""


class EncryptionError(CryptoError):
    """Randomness or cipher construction failed while encrypting."""


class PasswordRequiredError(CryptoError):
    """No password was supplied for an operation that needs one."""


class CorruptedDataError(CryptoError):
    """Input is too short or lacks the magic marker."""


class UnsupportedVersionError(CryptoError):
    """The envelope's format version byte is not recognised."""


class AuthenticationFailedError(CryptoError):
    """Wrong password or tampered ciphertext (deliberately indistinguishable)."""


@dataclass(frozen=True)
class KdfParams:
    """Argon2id parameters. `memory_cost` is in KiB."""

    time_cost: int = 1
    memory_cost: int = MIN_MEMORY_COST_KIB
    parallelism: int = 4
    hash_len: int = KEY_SIZE

    def __post_init__(self) -> None:
        if self.time_cost <= 0:
            raise ValueError("time_cost must be > 0")
        if self.memory_cost < MIN_MEMORY_COST_KIB:
            raise ValueError("memory_cost must be at least 64 MiB")
        if self.parallelism <= 0:
            raise ValueError("parallelism must be > 0")
        if self.hash_len != KEY_SIZE:
            raise ValueError("hash_len must be 32 bytes for AES-256")


DEFAULT_KDF = KdfParams()


def password_from_env(environ: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """Read the store password from `VARNISH_PASSWORD`; None when unset or empty.

    Intended to be called once at the process boundary; everything below
    takes the password as an explicit argument.
    """
    env = os.environ if environ is None else environ
    val = env.get(ENV_PASSWORD)
    return val if val else None


def is_encrypted(data: bytes) -> bool:
    """True iff `data` starts with the varnish magic marker. Never raises."""
    if not data or len(data) < len(MAGIC):
        return False
    return bytes(data[: len(MAGIC)]) == MAGIC


def derive_key(password: str, salt: bytes, params: KdfParams = DEFAULT_KDF) -> bytes:
    """Derive a 256-bit key from `(password, salt)` with Argon2id."""
    return hash_secret_raw(
        secret=password.encode("utf-8"),
        salt=salt,
        time_cost=params.time_cost,
        memory_cost=params.memory_cost,
        parallelism=params.parallelism,
        hash_len=params.hash_len,
        type=Type.ID,
    )


def encrypt(plaintext: bytes, password: str, *, kdf: KdfParams = DEFAULT_KDF) -> bytes:
    """Encrypt `plaintext` under `password`.

    Layout: MAGIC (8) | version (1) | salt (16) | nonce (12) | ciphertext+tag.
    Salt and nonce are fresh per call, so equal inputs never produce equal output.
    """
    if not password:
        raise PasswordRequiredError(f"{ENV_PASSWORD} environment variable not set")

    try:
        salt = os.urandom(SALT_SIZE)
        nonce = os.urandom(NONCE_SIZE)
        key = derive_key(password, salt, kdf)
        sealed = AESGCM(key).encrypt(nonce, plaintext, None)
    except Exception as ex:
        raise EncryptionError(f"encrypt: {ex}") from ex

    return MAGIC + bytes([FORMAT_VERSION]) + salt + nonce + sealed


def decrypt(data: bytes, password: str, *, kdf: KdfParams = DEFAULT_KDF) -> bytes:
    """Reverse `encrypt`.

    Raises
    - PasswordRequiredError if `password` is empty.
    - CorruptedDataError if the blob is too short or lacks the magic marker.
    - UnsupportedVersionError for an unknown format version.
    - AuthenticationFailedError if the tag does not verify (wrong password or
      tampered data).
    """
    if not password:
        raise PasswordRequiredError(f"{ENV_PASSWORD} environment variable not set")
    if len(data) < MIN_SIZE:
        raise CorruptedDataError("encrypted data too short")
    if not is_encrypted(data):
        raise CorruptedDataError("invalid encrypted data: missing magic bytes")

    offset = len(MAGIC)
    version = data[offset]
    if version != FORMAT_VERSION:
        raise UnsupportedVersionError(f"unsupported encryption version: {version}")
    offset += 1

    salt = bytes(data[offset : offset + SALT_SIZE])
    offset += SALT_SIZE
    nonce = bytes(data[offset : offset + NONCE_SIZE])
    offset += NONCE_SIZE
    sealed = bytes(data[offset:])

    key = derive_key(password, salt, kdf)
    try:
        return AESGCM(key).decrypt(nonce, sealed, None)
    except InvalidTag as ex:
        raise AuthenticationFailedError("decrypt: authentication failed (wrong password or corrupted data)") from ex


__all__ = [
    "AuthenticationFailedError",
    "CorruptedDataError",
    "CryptoError",
    "DEFAULT_KDF",
    "ENV_PASSWORD",
    "EncryptionError",
    "KdfParams",
    "MAGIC",
    "PasswordRequiredError",
    "UnsupportedVersionError",
    "decrypt",
    "derive_key",
    "encrypt",
    "is_encrypted",
    "password_from_env",
]
