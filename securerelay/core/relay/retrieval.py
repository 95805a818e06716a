"""
Retrieval Pipeline
==================

Two entry points over one check sequence:

    existence -> expiry -> decrypt with passcode -> format

The order is fixed so the most specific error always wins: an expired file
reports "expired", never "invalid passcode".

- verify(): proves the passcode and issues a short-lived download ticket
- fetch(): decrypts and returns the file with its MIME type
- fetch_ticket(): opens a ticket and runs fetch() with its contents
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable

from securerelay.core.crypto.cbc_codec import EnvelopeCodec
from securerelay.core.crypto.envelope import DecryptionError, Envelope
from securerelay.core.errors import ExpiredError, InvalidPasscodeError, ValidationError
from securerelay.core.formats import FormatGuard
from securerelay.core.storage.blobs import BlobBackend
from securerelay.core.storage.records import RecordStore, UploadRecord, utc_now
from securerelay.security.tickets import TicketSealer
from securerelay.utils.validators import validate_passcode

_log = logging.getLogger("securerelay.retrieval")


@dataclass(frozen=True, slots=True)
class DownloadReference:
    """Result of a successful verify(): a ticket to fetch the file with."""

    reference: str
    filename: str
    expires_at: datetime

    def __repr__(self) -> str:
        return f"DownloadReference(filename={self.filename!r}, expires_at={self.expires_at.isoformat()})"


@dataclass(frozen=True, slots=True)
class RetrievedFile:
    """Decrypted file ready to be framed as a download."""

    content: bytes
    mime_type: str
    filename: str

    def __repr__(self) -> str:
        return f"RetrievedFile(filename={self.filename!r}, size={len(self.content)})"


class RetrievalPipeline:
    """Looks up, checks and decrypts relayed files."""

    __slots__ = ("_codec", "_guard", "_blobs", "_records", "_sealer", "_ticket_ttl", "_clock")

    def __init__(
        self,
        codec: EnvelopeCodec,
        guard: FormatGuard,
        blobs: BlobBackend,
        records: RecordStore,
        sealer: TicketSealer,
        ticket_ttl: timedelta,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._codec = codec
        self._guard = guard
        self._blobs = blobs
        self._records = records
        self._sealer = sealer
        self._ticket_ttl = ticket_ttl
        self._clock = clock

    def verify(self, record_id: str, passcode) -> DownloadReference:
        """
        Check a passcode and issue a download ticket.

        The decrypted bytes are discarded. The ticket never outlives the
        record itself.

        Raises:
            ValidationError, NotFoundError, ExpiredError, InvalidPasscodeError,
            StorageError
        """
        record, _ = self._open(record_id, passcode)

        expires_at = min(self._clock() + self._ticket_ttl, record.expires_at)
        reference = self._sealer.seal(record.id, passcode, expires_at)

        _log.info("Passcode verified for %s", record.id)
        return DownloadReference(
            reference=reference,
            filename=record.original_filename,
            expires_at=expires_at,
        )

    def fetch(self, record_id: str, passcode) -> RetrievedFile:
        """
        Decrypt a file for download.

        Raises:
            ValidationError, NotFoundError, ExpiredError, InvalidPasscodeError,
            UnsupportedFormatError, StorageError
        """
        record, plaintext = self._open(record_id, passcode)
        mime_type = self._guard.mime_type_for(record.original_filename)

        _log.info("Serving %s (%d bytes)", record.id, len(plaintext))
        return RetrievedFile(
            content=plaintext,
            mime_type=mime_type,
            filename=record.original_filename,
        )

    def fetch_ticket(self, reference: str) -> RetrievedFile:
        """
        Fetch a file using a ticket issued by verify().

        Raises:
            InvalidTicketError, TicketExpiredError, plus everything fetch() raises
        """
        if not reference:
            raise ValidationError("Download reference is required")

        ticket = self._sealer.open(reference, self._clock())
        return self.fetch(ticket.record_id, ticket.passcode)

    def _open(self, record_id: str, passcode) -> tuple[UploadRecord, bytes]:
        if not record_id:
            raise ValidationError("File identifier is required")
        validate_passcode(passcode)

        record = self._records.find_by_id(record_id)

        if record.is_expired(self._clock()):
            raise ExpiredError("File expired")

        raw = self._blobs.get(record.remote_location)

        try:
            plaintext = self._codec.decrypt(Envelope.from_bytes(raw), passcode)
        except DecryptionError as e:
            _log.warning("Rejected passcode for %s", record.id)
            raise InvalidPasscodeError("Invalid passcode") from e

        return record, plaintext
