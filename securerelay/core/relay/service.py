"""
File Relay Service
==================

Wires configuration, crypto, storage and the pipelines into one object.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Optional

from securerelay.core.config import RelayConfig
from securerelay.core.crypto.cbc_codec import EnvelopeCodec
from securerelay.core.formats import FormatGuard
from securerelay.core.relay.reaper import ExpiryReaper, SweepReport
from securerelay.core.relay.retrieval import DownloadReference, RetrievalPipeline, RetrievedFile
from securerelay.core.relay.upload import UploadPipeline, new_upload_id
from securerelay.core.storage.blobs import BlobBackend, FilesystemBlobBackend, S3BlobBackend
from securerelay.core.storage.records import (
    PostgresRecordStore,
    RecordStore,
    SQLiteRecordStore,
    UploadRecord,
    utc_now,
)
from securerelay.security.tickets import TicketSealer


class FileRelay:
    """
    Passcode-gated, self-expiring file relay.

    Usage:
        relay = FileRelay.from_config(RelayConfig.load())

        upload_id = relay.upload(data, "report.pdf", "s3cr3t")
        reference = relay.verify(upload_id, "s3cr3t")
        result = relay.fetch_ticket(reference.reference)

        relay.reaper.start()
    """

    __slots__ = ("_config", "_guard", "_uploads", "_retrievals", "_reaper", "_records", "_blobs")

    def __init__(
        self,
        config: RelayConfig,
        blobs: BlobBackend,
        records: RecordStore,
        sealer: Optional[TicketSealer] = None,
        clock: Callable[[], datetime] = utc_now,
        id_factory: Callable[[], str] = new_upload_id,
    ) -> None:
        codec = EnvelopeCodec(config.crypto)
        self._config = config
        self._guard = FormatGuard(config.upload.allowed_formats)
        self._blobs = blobs
        self._records = records

        self._uploads = UploadPipeline(
            codec,
            self._guard,
            blobs,
            records,
            expiry=timedelta(seconds=config.retention.expiry_seconds),
            max_upload_bytes=config.upload.max_upload_bytes,
            clock=clock,
            id_factory=id_factory,
        )
        self._retrievals = RetrievalPipeline(
            codec,
            self._guard,
            blobs,
            records,
            sealer=sealer or TicketSealer.with_random_secret(),
            ticket_ttl=timedelta(seconds=config.retention.ticket_ttl_seconds),
            clock=clock,
        )
        self._reaper = ExpiryReaper(
            records,
            blobs,
            interval=config.retention.sweep_interval_seconds,
            clock=clock,
        )

    @classmethod
    def from_config(cls, config: RelayConfig, sealer: Optional[TicketSealer] = None) -> FileRelay:
        """Build a relay over the configured blob backend and record store."""
        config.ensure_directories()

        storage = config.storage
        if storage.backend == "s3":
            blobs: BlobBackend = S3BlobBackend(
                storage.s3_bucket,
                prefix=storage.s3_prefix,
                region_name=storage.s3_region,
                endpoint_url=storage.s3_endpoint_url,
            )
        else:
            blobs = FilesystemBlobBackend(config.paths.blob_dir)
        if config.database_url:
            records: RecordStore = PostgresRecordStore(config.database_url)
        else:
            records = SQLiteRecordStore(config.paths.database_path)

        return cls(config, blobs, records, sealer=sealer)

    @property
    def config(self) -> RelayConfig:
        return self._config

    @property
    def formats(self) -> FormatGuard:
        return self._guard

    @property
    def reaper(self) -> ExpiryReaper:
        return self._reaper

    @property
    def records(self) -> RecordStore:
        return self._records

    @property
    def blobs(self) -> BlobBackend:
        return self._blobs

    def upload(self, content: bytes, filename: str, passcode, content_type: Optional[str] = None) -> str:
        return self._uploads.upload(content, filename, passcode, content_type)

    def upload_record(
        self, content: bytes, filename: str, passcode, content_type: Optional[str] = None
    ) -> UploadRecord:
        return self._uploads.upload_record(content, filename, passcode, content_type)

    def verify(self, record_id: str, passcode) -> DownloadReference:
        return self._retrievals.verify(record_id, passcode)

    def fetch(self, record_id: str, passcode) -> RetrievedFile:
        return self._retrievals.fetch(record_id, passcode)

    def fetch_ticket(self, reference: str) -> RetrievedFile:
        return self._retrievals.fetch_ticket(reference)

    def sweep(self) -> SweepReport:
        return self._reaper.sweep()
