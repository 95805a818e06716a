"""
Expiry Reaper
=============

Periodic sweep that purges expired uploads.

For each record with expires_at < now:
    1. delete the envelope from the blob backend
    2. only if that succeeded, delete the record

A record whose blob could not be deleted stays in place and is retried on
the next sweep, so no blob is ever left without a record pointing at it.
One record's failure never stops the sweep for the others.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

from securerelay.core.errors import NotFoundError, NotFoundOnBackend
from securerelay.core.storage.blobs import BlobBackend
from securerelay.core.storage.records import RecordStore, UploadRecord, utc_now


@dataclass(frozen=True, slots=True)
class SweepReport:
    """Outcome of one sweep."""

    examined: int = 0
    purged: int = 0
    failed: int = 0
    skipped: bool = False


class ExpiryReaper:
    """
    Expired-upload cleanup with its own scheduling thread.

    Usage:
        reaper = ExpiryReaper(records, blobs, interval=3600)
        reaper.start()
        ...
        reaper.stop()

    Sweeps never overlap: a sweep requested while another is running is
    skipped and reported as such.
    """

    __slots__ = (
        "_records", "_blobs", "_interval", "_clock", "_sweep_lock",
        "_stop_event", "_thread", "_log",
    )

    def __init__(
        self,
        records: RecordStore,
        blobs: BlobBackend,
        interval: float = 3600.0,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._records = records
        self._blobs = blobs
        self._interval = interval
        self._clock = clock
        self._sweep_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._log = logging.getLogger("securerelay.reaper")

    def sweep(self) -> SweepReport:
        """Run one sweep now, unless one is already in progress."""
        if not self._sweep_lock.acquire(blocking=False):
            self._log.info("Sweep already in progress, skipping")
            return SweepReport(skipped=True)

        try:
            return self._sweep(self._clock())
        finally:
            self._sweep_lock.release()

    def _sweep(self, now: datetime) -> SweepReport:
        examined = purged = failed = 0

        for record in self._records.list_expired(now):
            examined += 1
            try:
                if self._purge(record):
                    purged += 1
            except Exception:
                failed += 1
                self._log.exception("Cleanup error for %s", record.id)

        if examined:
            self._log.info(
                "Sweep finished: %d expired, %d purged, %d failed",
                examined, purged, failed,
            )
        return SweepReport(examined=examined, purged=purged, failed=failed)

    def _purge(self, record: UploadRecord) -> bool:
        try:
            self._blobs.delete(record.remote_location)
        except NotFoundOnBackend:
            self._log.debug("Blob for %s already gone", record.id)

        try:
            self._records.delete_by_id(record.id)
        except NotFoundError:
            # Another reaper instance got there first
            return False
        return True

    def start(self) -> None:
        """Start sweeping on a background thread."""
        if self._thread is not None and self._thread.is_alive():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            daemon=True,
            name="Expiry-Reaper",
        )
        self._thread.start()
        self._log.info("Expiry reaper started (interval %.0fs)", self._interval)

    def stop(self, timeout: Optional[float] = None) -> None:
        """Stop the background thread, waiting for an in-flight sweep."""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None
        self._log.info("Expiry reaper stopped")

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            try:
                self.sweep()
            except Exception:
                self._log.exception("Expiry sweep failed")

            self._stop_event.wait(self._interval)

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
