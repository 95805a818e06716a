"""
Storage Collaborators
=====================

- blobs.py: envelope storage (BlobBackend with filesystem and S3 implementations)
- records.py: upload records (RecordStore with SQLite and PostgreSQL stores)
"""

from securerelay.core.storage.blobs import BlobBackend, FilesystemBlobBackend, S3BlobBackend
from securerelay.core.storage.records import (
    PostgresRecordStore,
    RecordStore,
    SQLiteRecordStore,
    UploadRecord,
)

__all__ = [
    "BlobBackend",
    "FilesystemBlobBackend",
    "S3BlobBackend",
    "RecordStore",
    "SQLiteRecordStore",
    "PostgresRecordStore",
    "UploadRecord",
]
