"""
AES-256-CBC Envelope Codec
==========================

Encrypts file bytes under a key derived from the uploader's passcode.

Modes:
    - Authenticated (default): AES-256-CBC then HMAC-SHA256 over
      iv || ciphertext. The tag is checked in constant time before any
      block is decrypted, so a wrong passcode is always rejected.
    - Legacy: AES-256-CBC with PKCS7 padding and no tag. A wrong passcode
      is detected only through a padding failure, which misses roughly one
      wrong passcode in 256. Kept so previously stored envelopes still open.

WARNING:
    - A fresh IV is drawn for every encryption; never reuse one
    - The salt is fixed, so every upload with the same passcode shares a key
"""

from __future__ import annotations

import hmac
import secrets
from typing import Final, Optional

from cryptography.hazmat.primitives import hashes, padding
from cryptography.hazmat.primitives import hmac as crypto_hmac
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from securerelay.core.config import CryptoConfig
from securerelay.core.crypto.envelope import IV_SIZE, DecryptionError, Envelope
from securerelay.core.crypto.kdf import derive_key, expand_key_hkdf

AES_KEY_SIZE: Final[int] = 32  # 256 bits
MAC_KEY_INFO: Final[bytes] = b"securerelay/envelope-mac"


class EnvelopeCodec:
    """
    Passcode-based envelope encryption.

    Usage:
        codec = EnvelopeCodec(CryptoConfig())

        envelope = codec.encrypt(b"file bytes", "s3cr3t")
        plaintext = codec.decrypt(envelope, "s3cr3t")

    Security Notes:
        - Performs no I/O; keys exist only for the duration of a call
        - decrypt() accepts both tagged and legacy envelopes
    """

    __slots__ = ("_config",)

    def __init__(self, config: Optional[CryptoConfig] = None) -> None:
        self._config = config or CryptoConfig()

    @property
    def config(self) -> CryptoConfig:
        return self._config

    def derive_key(self, passcode: str | bytes) -> bytes:
        """Derive the 32-byte AES key for a passcode."""
        return derive_key(passcode, self._config)

    @staticmethod
    def generate_iv() -> bytes:
        """Generate a cryptographically secure random IV."""
        return secrets.token_bytes(IV_SIZE)

    def encrypt(
        self,
        plaintext: bytes,
        passcode: str | bytes,
        authenticated: Optional[bool] = None,
    ) -> Envelope:
        """
        Encrypt plaintext under a passcode-derived key.

        Args:
            plaintext: Raw file bytes (can be empty)
            passcode: Uploader's passcode
            authenticated: Override the configured mode for this call

        Returns:
            Envelope with a fresh IV
        """
        if authenticated is None:
            authenticated = self._config.authenticated

        key = self.derive_key(passcode)
        iv = self.generate_iv()

        padder = padding.PKCS7(algorithms.AES.block_size).padder()
        padded = padder.update(plaintext) + padder.finalize()

        encryptor = Cipher(algorithms.AES(key), modes.CBC(iv)).encryptor()
        ciphertext = encryptor.update(padded) + encryptor.finalize()

        tag = self._compute_tag(key, iv, ciphertext) if authenticated else None

        return Envelope(iv=iv, ciphertext=ciphertext, tag=tag)

    def decrypt(self, envelope: Envelope, passcode: str | bytes) -> bytes:
        """
        Decrypt an envelope with the supplied passcode.

        Raises:
            DecryptionError: On tag mismatch, bad padding or misaligned
                ciphertext. The cause is not revealed.
        """
        key = self.derive_key(passcode)

        if envelope.tag is not None:
            expected = self._compute_tag(key, envelope.iv, envelope.ciphertext)
            if not hmac.compare_digest(expected, envelope.tag):
                raise DecryptionError("Decryption failed")

        try:
            decryptor = Cipher(algorithms.AES(key), modes.CBC(envelope.iv)).decryptor()
            padded = decryptor.update(envelope.ciphertext) + decryptor.finalize()

            unpadder = padding.PKCS7(algorithms.AES.block_size).unpadder()
            return unpadder.update(padded) + unpadder.finalize()
        except ValueError as e:
            raise DecryptionError("Decryption failed") from e

    @staticmethod
    def _compute_tag(key: bytes, iv: bytes, ciphertext: bytes) -> bytes:
        mac_key = expand_key_hkdf(key, length=AES_KEY_SIZE, info=MAC_KEY_INFO)
        mac = crypto_hmac.HMAC(mac_key, hashes.SHA256())
        mac.update(iv)
        mac.update(ciphertext)
        return mac.finalize()
