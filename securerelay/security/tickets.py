"""
Download Tickets
================

Short-lived download capabilities issued after a passcode has been verified.

A ticket is the AES-256-GCM sealing of {id, exp, passcode} under a server
secret, rendered as URL-safe base64. It proves the bearer knew the passcode
without the passcode itself appearing in a URL, and the server recovers the
passcode from it to decrypt the file again on fetch.

Token layout (before base64):
    NONCE (12) | CIPHERTEXT + TAG (16)
"""

from __future__ import annotations

import base64
import binascii
import json
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Final, Optional

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from securerelay.core.crypto.kdf import expand_key_hkdf
from securerelay.core.errors import InvalidTicketError, TicketExpiredError
from securerelay.core.storage.records import to_utc

TICKET_NONCE_SIZE: Final[int] = 12  # 96 bits (NIST recommended for GCM)
TICKET_AAD: Final[bytes] = b"securerelay-ticket-v1"
_KEY_INFO: Final[bytes] = b"securerelay/download-ticket"


@dataclass(frozen=True, slots=True)
class Ticket:
    """Opened ticket contents."""

    record_id: str
    passcode: bytes
    expires_at: datetime

    def __repr__(self) -> str:
        """Safe representation without the passcode."""
        return f"Ticket(record_id={self.record_id!r}, expires_at={self.expires_at.isoformat()})"


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(token: str) -> bytes:
    padding = "=" * (-len(token) % 4)
    return base64.urlsafe_b64decode(token + padding)


class TicketSealer:
    """
    Seals and opens download tickets.

    Usage:
        sealer = TicketSealer(secret)
        token = sealer.seal(record_id, passcode, expires_at)
        ticket = sealer.open(token, now)

    Security Notes:
        - Tickets from a sealer with another secret fail authentication
        - Restarting with a random secret invalidates all issued tickets
    """

    __slots__ = ("_aead",)

    def __init__(self, secret: bytes | str) -> None:
        if isinstance(secret, str):
            secret = secret.encode("utf-8")
        if len(secret) < 16:
            raise ValueError("Ticket secret must be at least 16 bytes")
        self._aead = AESGCM(expand_key_hkdf(secret, length=32, info=_KEY_INFO))

    @classmethod
    def with_random_secret(cls) -> TicketSealer:
        return cls(secrets.token_bytes(32))

    def seal(self, record_id: str, passcode: str | bytes, expires_at: datetime) -> str:
        """Issue a ticket for a record, valid until expires_at."""
        if isinstance(passcode, str):
            passcode = passcode.encode("utf-8")

        payload = json.dumps({
            "id": record_id,
            "exp": to_utc(expires_at).timestamp(),
            "pc": _b64encode(passcode),
        }, separators=(",", ":")).encode("utf-8")

        nonce = secrets.token_bytes(TICKET_NONCE_SIZE)
        return _b64encode(nonce + self._aead.encrypt(nonce, payload, TICKET_AAD))

    def open(self, token: str, now: Optional[datetime] = None) -> Ticket:
        """
        Authenticate and decode a ticket.

        Raises:
            InvalidTicketError: If the token is malformed, tampered with or
                sealed under another secret
            TicketExpiredError: If the ticket is past its lifetime
        """
        try:
            raw = _b64decode(token)
        except (binascii.Error, ValueError) as e:
            raise InvalidTicketError("Invalid download link") from e

        if len(raw) <= TICKET_NONCE_SIZE:
            raise InvalidTicketError("Invalid download link")

        try:
            payload = self._aead.decrypt(raw[:TICKET_NONCE_SIZE], raw[TICKET_NONCE_SIZE:], TICKET_AAD)
            data = json.loads(payload)
            ticket = Ticket(
                record_id=data["id"],
                passcode=_b64decode(data["pc"]),
                expires_at=datetime.fromtimestamp(data["exp"], tz=timezone.utc),
            )
        except (InvalidTag, ValueError, KeyError, TypeError) as e:
            raise InvalidTicketError("Invalid download link") from e

        now = to_utc(now or datetime.now(timezone.utc))
        if now >= ticket.expires_at:
            raise TicketExpiredError("Download link expired")

        return ticket
