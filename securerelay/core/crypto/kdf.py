"""
Key Derivation Functions
========================

Passcode-based key derivation for envelope encryption.

Implements:
    - scrypt (default, compatible with envelopes already in storage)
    - Argon2id (optional, memory-hard)
    - HKDF for sub-key expansion

The salt is a fixed configuration constant rather than per-file, so the
same passcode always yields the same key and no salt is stored next to the
envelope.
"""

from __future__ import annotations

from typing import Final

from argon2.low_level import Type, hash_secret_raw
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from securerelay.core.config import CryptoConfig

# Argon2id parameters (OWASP recommended)
ARGON2_TIME_COST: Final[int] = 3
ARGON2_MEMORY_COST: Final[int] = 65536  # 64 MB
ARGON2_PARALLELISM: Final[int] = 4

# argon2 rejects salts shorter than this
_ARGON2_MIN_SALT: Final[int] = 8


def _to_bytes(passcode: str | bytes) -> bytes:
    if isinstance(passcode, str):
        return passcode.encode("utf-8")
    return bytes(passcode)


def derive_key_scrypt(
    passcode: str | bytes,
    salt: bytes,
    length: int = 32,
    n: int = 16384,
    r: int = 8,
    p: int = 1,
) -> bytes:
    """
    Derive a key from a passcode using scrypt.

    Args:
        passcode: User passcode
        salt: Salt (fixed per deployment)
        length: Output key length
        n, r, p: scrypt cost parameters

    Returns:
        Derived key bytes
    """
    kdf = Scrypt(salt=salt, length=length, n=n, r=r, p=p)
    return kdf.derive(_to_bytes(passcode))


def derive_key_argon2(
    passcode: str | bytes,
    salt: bytes,
    length: int = 32,
) -> bytes:
    """
    Derive a key from a passcode using Argon2id.

    Short salts are widened with HKDF so the fixed literal salt stays usable.
    """
    if len(salt) < _ARGON2_MIN_SALT:
        salt = expand_key_hkdf(salt, length=16, info=b"securerelay/argon2-salt")

    return hash_secret_raw(
        secret=_to_bytes(passcode),
        salt=salt,
        time_cost=ARGON2_TIME_COST,
        memory_cost=ARGON2_MEMORY_COST,
        parallelism=ARGON2_PARALLELISM,
        hash_len=length,
        type=Type.ID,
    )


def expand_key_hkdf(
    key_material: bytes,
    length: int,
    info: bytes = b"",
    salt: bytes | None = None,
) -> bytes:
    """
    Expand key material using HKDF-SHA256.

    Args:
        key_material: Input key material
        length: Output length
        info: Context/application info
        salt: Optional salt

    Returns:
        Expanded key bytes
    """
    hkdf = HKDF(
        algorithm=hashes.SHA256(),
        length=length,
        salt=salt,
        info=info,
    )
    return hkdf.derive(key_material)


def derive_key(passcode: str | bytes, config: CryptoConfig) -> bytes:
    """
    Derive the envelope key for a passcode under the configured KDF.

    Deterministic: the same passcode and configuration always give the
    same key, which is what lets a download decrypt an upload.
    """
    if config.kdf == "argon2id":
        return derive_key_argon2(passcode, config.salt, config.key_length)

    return derive_key_scrypt(
        passcode,
        config.salt,
        length=config.key_length,
        n=config.scrypt_n,
        r=config.scrypt_r,
        p=config.scrypt_p,
    )
