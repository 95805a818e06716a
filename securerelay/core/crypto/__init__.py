"""
SecureRelay Cryptographic Core
==============================

Passcode-derived envelope encryption for relayed files.

Architecture:
    1. scrypt (or Argon2id): passcode + fixed salt -> 32-byte key
    2. AES-256-CBC with PKCS7 padding: file bytes -> ciphertext
    3. HMAC-SHA256 (authenticated mode): tag over iv || ciphertext

WARNING: This module handles sensitive cryptographic material.
         Incorrect usage can compromise security.
"""

from securerelay.core.crypto.cbc_codec import EnvelopeCodec
from securerelay.core.crypto.envelope import DecryptionError, Envelope, EnvelopeFormatError
from securerelay.core.crypto.kdf import derive_key

__all__ = [
    "EnvelopeCodec",
    "Envelope",
    "DecryptionError",
    "EnvelopeFormatError",
    "derive_key",
]
