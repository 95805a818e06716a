"""
Envelope Wire Format
====================

The envelope is the only thing persisted to the blob backend. It is
self-contained: the passcode is all that is needed to open it.

Format (UTF-8 JSON):
    {"iv": <32 hex chars>, "content": <hex, block aligned>}
    {"iv": ..., "content": ..., "tag": <64 hex chars>}   (authenticated)
"""

from __future__ import annotations

import binascii
import json
from dataclasses import dataclass
from typing import Final, Optional

IV_SIZE: Final[int] = 16
BLOCK_SIZE: Final[int] = 16
TAG_SIZE: Final[int] = 32  # HMAC-SHA256


class DecryptionError(Exception):
    """
    Raised when an envelope cannot be opened.

    Deliberately generic: a wrong passcode and a corrupted envelope are
    indistinguishable to the caller.
    """
    pass


class EnvelopeFormatError(DecryptionError):
    """Raised when stored bytes are not a well-formed envelope."""
    pass


@dataclass(frozen=True, slots=True)
class Envelope:
    """
    Immutable encrypted payload.

    Attributes:
        iv: Random per-encryption initialization vector
        ciphertext: AES-256-CBC output (PKCS7 padded)
        tag: HMAC-SHA256 over iv || ciphertext, or None for legacy envelopes
    """

    iv: bytes
    ciphertext: bytes
    tag: Optional[bytes] = None

    @property
    def authenticated(self) -> bool:
        return self.tag is not None

    def to_dict(self) -> dict:
        data = {"iv": self.iv.hex(), "content": self.ciphertext.hex()}
        if self.tag is not None:
            data["tag"] = self.tag.hex()
        return data

    def to_bytes(self) -> bytes:
        """Serialize to the JSON wire format."""
        return json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_dict(cls, data: dict) -> "Envelope":
        """
        Build an envelope from its decoded JSON form.

        Raises:
            EnvelopeFormatError: If fields are missing or malformed
        """
        if not isinstance(data, dict):
            raise EnvelopeFormatError("Envelope must be a JSON object")

        try:
            iv = bytes.fromhex(data["iv"])
            ciphertext = bytes.fromhex(data["content"])
            tag = bytes.fromhex(data["tag"]) if data.get("tag") is not None else None
        except (KeyError, TypeError, ValueError, binascii.Error) as e:
            raise EnvelopeFormatError("Envelope fields are missing or not hex") from e

        if len(iv) != IV_SIZE:
            raise EnvelopeFormatError(f"IV must be exactly {IV_SIZE} bytes")
        if not ciphertext or len(ciphertext) % BLOCK_SIZE:
            raise EnvelopeFormatError("Ciphertext is not block aligned")
        if tag is not None and len(tag) != TAG_SIZE:
            raise EnvelopeFormatError(f"Tag must be exactly {TAG_SIZE} bytes")

        return cls(iv=iv, ciphertext=ciphertext, tag=tag)

    @classmethod
    def from_bytes(cls, raw: bytes) -> "Envelope":
        """Deserialize from the JSON wire format."""
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, ValueError) as e:
            raise EnvelopeFormatError("Envelope is not valid JSON") from e
        return cls.from_dict(data)

    def __repr__(self) -> str:
        """Safe representation without ciphertext."""
        return (
            f"Envelope(ciphertext_len={len(self.ciphertext)}, "
            f"authenticated={self.authenticated})"
        )
