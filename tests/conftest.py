"""Shared fixtures: a relay over a temporary directory with a controllable clock."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from securerelay.core.config import (
    AppConfig,
    CryptoConfig,
    LoggingConfig,
    PathConfig,
    RelayConfig,
)
from securerelay.core.errors import BackendUnavailable, NotFoundOnBackend
from securerelay.core.relay.service import FileRelay
from securerelay.core.storage.blobs import FilesystemBlobBackend
from securerelay.core.storage.records import SQLiteRecordStore
from securerelay.security.tickets import TicketSealer

T0 = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

# Low scrypt cost keeps the suite fast; the algorithm is unchanged
FAST_CRYPTO = CryptoConfig(scrypt_n=1024)


class FakeClock:
    """Clock that only moves when told to."""

    def __init__(self, start: datetime = T0) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class FailingDeleteBackend(FilesystemBlobBackend):
    """Refuses to delete selected locations."""

    def __init__(self, base_path) -> None:
        super().__init__(base_path)
        self.fail_locations: set[str] = set()

    def delete(self, location: str) -> None:
        if location in self.fail_locations:
            raise BackendUnavailable("delete refused")
        super().delete(location)


class FailingPutBackend(FilesystemBlobBackend):
    def put(self, data: bytes) -> str:
        raise BackendUnavailable("put refused")


class VanishedBlobBackend(FilesystemBlobBackend):
    """Reports every delete as already gone."""

    def delete(self, location: str) -> None:
        super().delete(location)
        raise NotFoundOnBackend("already gone")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def config(tmp_path) -> RelayConfig:
    return RelayConfig(
        paths=PathConfig(data_dir=tmp_path / "data", log_dir=tmp_path / "logs"),
        crypto=FAST_CRYPTO,
        logging=LoggingConfig(enable_console=False),
        app=AppConfig(),
    )


@pytest.fixture
def blobs(config) -> FilesystemBlobBackend:
    return FilesystemBlobBackend(config.paths.blob_dir)


@pytest.fixture
def records(config) -> SQLiteRecordStore:
    return SQLiteRecordStore(config.paths.database_path)


@pytest.fixture
def sealer() -> TicketSealer:
    return TicketSealer(b"test-ticket-secret-0123456789abcdef")


@pytest.fixture
def relay(config, blobs, records, sealer, clock) -> FileRelay:
    return FileRelay(config, blobs, records, sealer=sealer, clock=clock)


@pytest.fixture
def make_relay(config, records, sealer, clock):
    """Build a relay over a custom blob backend class."""

    def build(backend_cls=FilesystemBlobBackend, **kwargs) -> FileRelay:
        backend = backend_cls(config.paths.blob_dir)
        return FileRelay(config, backend, records, sealer=sealer, clock=clock, **kwargs)

    return build


@pytest.fixture
def failing_delete_cls():
    return FailingDeleteBackend


@pytest.fixture
def failing_put_cls():
    return FailingPutBackend


@pytest.fixture
def vanished_blob_cls():
    return VanishedBlobBackend
