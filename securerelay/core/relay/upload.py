"""
Upload Pipeline
===============

validate -> check format -> encrypt -> store envelope -> create record -> id

A record is only ever created after its envelope is safely stored, and an
envelope whose record could not be created is deleted again, so the blob
store and the record store never disagree about what exists.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta
from typing import Callable, Final, Optional

from securerelay.core.crypto.cbc_codec import EnvelopeCodec
from securerelay.core.errors import DuplicateIdError, StorageError
from securerelay.core.formats import FormatGuard
from securerelay.core.storage.blobs import BlobBackend
from securerelay.core.storage.records import RecordStore, UploadRecord, utc_now
from securerelay.utils.validators import validate_passcode, validate_upload

MAX_ID_ATTEMPTS: Final[int] = 3

_log = logging.getLogger("securerelay.upload")


def new_upload_id() -> str:
    return str(uuid.uuid4())


class UploadPipeline:
    """
    Accepts one file and its passcode and returns the download identifier.

    Neither the plaintext, the passcode nor the derived key is persisted or
    logged at any step.
    """

    __slots__ = (
        "_codec", "_guard", "_blobs", "_records", "_expiry",
        "_max_upload_bytes", "_clock", "_id_factory",
    )

    def __init__(
        self,
        codec: EnvelopeCodec,
        guard: FormatGuard,
        blobs: BlobBackend,
        records: RecordStore,
        expiry: timedelta,
        max_upload_bytes: int,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = new_upload_id,
    ) -> None:
        self._codec = codec
        self._guard = guard
        self._blobs = blobs
        self._records = records
        self._expiry = expiry
        self._max_upload_bytes = max_upload_bytes
        self._clock = clock
        self._id_factory = id_factory

    def upload(
        self,
        content: Optional[bytes],
        filename: Optional[str],
        passcode,
        content_type: Optional[str] = None,
    ) -> str:
        """Encrypt and store a file, returning its opaque identifier."""
        return self.upload_record(content, filename, passcode, content_type).id

    def upload_record(
        self,
        content: Optional[bytes],
        filename: Optional[str],
        passcode,
        content_type: Optional[str] = None,
    ) -> UploadRecord:
        """
        Encrypt and store a file.

        Args:
            content: Raw file bytes
            filename: Original client-supplied filename
            passcode: Secret required to download the file again
            content_type: MIME type the client declared, checked when given

        Returns:
            The record created for the stored file

        Raises:
            ValidationError: Missing file or passcode, or file too large
            UnsupportedFormatError: Extension not allow-listed, or declared
                MIME type does not belong to an allowed format
            StorageError: Blob backend failure; nothing was recorded
            DuplicateIdError: No free identifier after several attempts
        """
        validate_passcode(passcode)
        validate_upload(content, filename, self._max_upload_bytes)
        self._guard.ensure_allowed(filename)
        if content_type is not None:
            self._guard.ensure_content_type(filename, content_type)

        envelope = self._codec.encrypt(content, passcode)
        location = self._blobs.put(envelope.to_bytes())

        try:
            record = self._create_record(location, filename)
        except Exception:
            self._rollback_blob(location)
            raise

        _log.info(
            "Stored upload %s (%d bytes, expires %s)",
            record.id, len(content), record.expires_at.isoformat(),
        )
        return record

    def _create_record(self, location: str, filename: str) -> UploadRecord:
        created_at = self._clock()

        for _ in range(MAX_ID_ATTEMPTS):
            record = UploadRecord(
                id=self._id_factory(),
                remote_location=location,
                original_filename=filename,
                created_at=created_at,
                expires_at=created_at + self._expiry,
            )
            try:
                self._records.create(record)
                return record
            except DuplicateIdError:
                _log.warning("Identifier collision, retrying with a new id")

        raise DuplicateIdError("Could not allocate a unique identifier")

    def _rollback_blob(self, location: str) -> None:
        try:
            self._blobs.delete(location)
        except StorageError:
            _log.error("Could not roll back blob %s after failed record create", location)
