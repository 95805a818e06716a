"""
Upload Record Store
===================

Tracks where each relayed envelope lives and when it expires.

Lifecycle:
    Active --(now >= expires_at)--> Expired --(blob + record deleted)--> Purged

Records are write-once: nothing but deletion ever changes a stored row.
"""

from __future__ import annotations

import sqlite3
from abc import ABC, abstractmethod
from contextlib import closing
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Final, Iterator, Optional

import psycopg2
import psycopg2.errors
import psycopg2.extras

from securerelay.core.errors import DuplicateIdError, NotFoundError

DEFAULT_BATCH_SIZE: Final[int] = 500


def to_utc(moment: datetime) -> datetime:
    """Normalize a datetime to aware UTC. Naive values are taken as UTC."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _iso(moment: datetime) -> str:
    # Fixed-width so stored strings compare in time order
    return to_utc(moment).isoformat(timespec="microseconds")


@dataclass(frozen=True, slots=True)
class UploadRecord:
    """
    One relayed file.

    Attributes:
        id: Opaque identifier handed to the uploader
        remote_location: Blob backend location of the envelope
        original_filename: Client-supplied name, used for the MIME type
        created_at: Upload time (UTC)
        expires_at: created_at plus the expiry window, never extended
    """

    id: str
    remote_location: str
    original_filename: str
    created_at: datetime
    expires_at: datetime

    def is_expired(self, now: datetime) -> bool:
        """Retrievable only while now < expires_at."""
        return to_utc(now) >= self.expires_at

    def __repr__(self) -> str:
        return (
            f"UploadRecord(id={self.id!r}, filename={self.original_filename!r}, "
            f"expires_at={self.expires_at.isoformat()})"
        )


class RecordStore(ABC):
    """Keyed table of upload records."""

    @abstractmethod
    def create(self, record: UploadRecord) -> None:
        """
        Insert a new record.

        Raises:
            DuplicateIdError: If the identifier is already taken
        """

    @abstractmethod
    def find_by_id(self, record_id: str) -> UploadRecord:
        """
        Fetch a record.

        Raises:
            NotFoundError: If no record has this identifier
        """

    @abstractmethod
    def delete_by_id(self, record_id: str) -> None:
        """
        Delete a record.

        Raises:
            NotFoundError: If no record has this identifier
        """

    @abstractmethod
    def list_expired(self, now: datetime, batch_size: int = DEFAULT_BATCH_SIZE) -> Iterator[UploadRecord]:
        """Lazily yield records whose expires_at < now, oldest first."""


class SQLiteRecordStore(RecordStore):
    """
    Record store over a local SQLite database.

    A new connection is opened per operation, so one instance can be shared
    by concurrent request threads and the reaper thread.
    """

    __slots__ = ("_db_path",)

    _SCHEMA: Final[str] = """
    CREATE TABLE IF NOT EXISTS uploads (
        id TEXT PRIMARY KEY,
        remote_location TEXT NOT NULL,
        original_filename TEXT NOT NULL,
        created_at TEXT NOT NULL,
        expires_at TEXT NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_uploads_expires ON uploads(expires_at, id);
    """

    def __init__(self, db_path: Path | str) -> None:
        self._db_path = Path(db_path)
        self.initialize_db()

    def _get_connection(self) -> sqlite3.Connection:
        conn = sqlite3.connect(self._db_path, timeout=30)
        conn.row_factory = sqlite3.Row
        return conn

    def initialize_db(self) -> None:
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        with closing(self._get_connection()) as conn:
            conn.executescript(self._SCHEMA)
            conn.commit()

    def create(self, record: UploadRecord) -> None:
        with closing(self._get_connection()) as conn:
            try:
                with conn:
                    conn.execute("""
                        INSERT INTO uploads
                        (id, remote_location, original_filename, created_at, expires_at)
                        VALUES (?, ?, ?, ?, ?)
                    """, (record.id, record.remote_location, record.original_filename,
                          _iso(record.created_at), _iso(record.expires_at)))
            except sqlite3.IntegrityError as e:
                raise DuplicateIdError(f"Record id already exists: {record.id}") from e

    def find_by_id(self, record_id: str) -> UploadRecord:
        with closing(self._get_connection()) as conn:
            row = conn.execute("SELECT * FROM uploads WHERE id = ?", (record_id,)).fetchone()
        if not row:
            raise NotFoundError("File not found")
        return self._row_to_record(row)

    def delete_by_id(self, record_id: str) -> None:
        with closing(self._get_connection()) as conn:
            with conn:
                result = conn.execute("DELETE FROM uploads WHERE id = ?", (record_id,))
        if result.rowcount == 0:
            raise NotFoundError("File not found")

    def list_expired(self, now: datetime, batch_size: int = DEFAULT_BATCH_SIZE) -> Iterator[UploadRecord]:
        cutoff = _iso(now)
        last_expires, last_id = "", ""

        # Keyset pagination stays correct while the caller deletes rows
        while True:
            with closing(self._get_connection()) as conn:
                rows = conn.execute("""
                    SELECT * FROM uploads
                    WHERE expires_at < ?
                      AND (expires_at > ? OR (expires_at = ? AND id > ?))
                    ORDER BY expires_at, id
                    LIMIT ?
                """, (cutoff, last_expires, last_expires, last_id, batch_size)).fetchall()

            for row in rows:
                yield self._row_to_record(row)

            if len(rows) < batch_size:
                return
            last_expires, last_id = rows[-1]["expires_at"], rows[-1]["id"]

    def count(self) -> int:
        with closing(self._get_connection()) as conn:
            return conn.execute("SELECT COUNT(*) FROM uploads").fetchone()[0]

    @staticmethod
    def _row_to_record(row: sqlite3.Row) -> UploadRecord:
        return UploadRecord(
            id=row["id"],
            remote_location=row["remote_location"],
            original_filename=row["original_filename"],
            created_at=datetime.fromisoformat(row["created_at"]),
            expires_at=datetime.fromisoformat(row["expires_at"]),
        )


class PostgresRecordStore(RecordStore):
    """
    Record store over PostgreSQL via psycopg2.

    Usage:
        store = PostgresRecordStore("postgresql://relay@db/relay")
    """

    __slots__ = ("_dsn", "_connect")

    _SCHEMA: Final[str] = """
    CREATE TABLE IF NOT EXISTS uploads (
        id TEXT PRIMARY KEY,
        remote_location TEXT NOT NULL,
        original_filename TEXT NOT NULL,
        created_at TIMESTAMPTZ NOT NULL,
        expires_at TIMESTAMPTZ NOT NULL
    );
    CREATE INDEX IF NOT EXISTS idx_uploads_expires ON uploads(expires_at, id);
    """

    def __init__(
        self,
        dsn: str,
        connect: Optional[Callable[..., Any]] = None,
        initialize: bool = True,
    ) -> None:
        self._dsn = dsn
        self._connect = connect or psycopg2.connect
        if initialize:
            self.initialize_db()

    def _get_connection(self):
        return self._connect(self._dsn, cursor_factory=psycopg2.extras.RealDictCursor)

    def initialize_db(self) -> None:
        with closing(self._get_connection()) as conn:
            with conn, conn.cursor() as cur:
                cur.execute(self._SCHEMA)

    def create(self, record: UploadRecord) -> None:
        with closing(self._get_connection()) as conn:
            try:
                with conn, conn.cursor() as cur:
                    cur.execute("""
                        INSERT INTO uploads
                        (id, remote_location, original_filename, created_at, expires_at)
                        VALUES (%s, %s, %s, %s, %s)
                    """, (record.id, record.remote_location, record.original_filename,
                          to_utc(record.created_at), to_utc(record.expires_at)))
            except psycopg2.errors.UniqueViolation as e:
                raise DuplicateIdError(f"Record id already exists: {record.id}") from e

    def find_by_id(self, record_id: str) -> UploadRecord:
        with closing(self._get_connection()) as conn:
            with conn, conn.cursor() as cur:
                cur.execute("SELECT * FROM uploads WHERE id = %s", (record_id,))
                row = cur.fetchone()
        if not row:
            raise NotFoundError("File not found")
        return self._row_to_record(row)

    def delete_by_id(self, record_id: str) -> None:
        with closing(self._get_connection()) as conn:
            with conn, conn.cursor() as cur:
                cur.execute("DELETE FROM uploads WHERE id = %s", (record_id,))
                deleted = cur.rowcount
        if deleted == 0:
            raise NotFoundError("File not found")

    def list_expired(self, now: datetime, batch_size: int = DEFAULT_BATCH_SIZE) -> Iterator[UploadRecord]:
        cutoff = to_utc(now)
        cursor_key: Optional[tuple[datetime, str]] = None

        while True:
            with closing(self._get_connection()) as conn:
                with conn, conn.cursor() as cur:
                    if cursor_key is None:
                        cur.execute("""
                            SELECT * FROM uploads WHERE expires_at < %s
                            ORDER BY expires_at, id LIMIT %s
                        """, (cutoff, batch_size))
                    else:
                        cur.execute("""
                            SELECT * FROM uploads
                            WHERE expires_at < %s AND (expires_at, id) > (%s, %s)
                            ORDER BY expires_at, id LIMIT %s
                        """, (cutoff, cursor_key[0], cursor_key[1], batch_size))
                    rows = cur.fetchall()

            for row in rows:
                yield self._row_to_record(row)

            if len(rows) < batch_size:
                return
            cursor_key = (rows[-1]["expires_at"], rows[-1]["id"])

    @staticmethod
    def _row_to_record(row: dict) -> UploadRecord:
        return UploadRecord(
            id=row["id"],
            remote_location=row["remote_location"],
            original_filename=row["original_filename"],
            created_at=to_utc(row["created_at"]),
            expires_at=to_utc(row["expires_at"]),
        )
