"""
Relay Errors
============

Every failure a client can observe maps to exactly one of these kinds.
Clients must be able to tell "wrong passcode" from "expired" from
"not found", so each kind carries its own stable code and HTTP status.
"""

from __future__ import annotations

from typing import ClassVar


class RelayError(Exception):
    """Base exception for all relay failures."""

    code: ClassVar[str] = "relay_error"
    status: ClassVar[int] = 500


class ValidationError(RelayError, ValueError):
    """Raised when a required input is missing or malformed."""

    code = "validation_error"
    status = 400


class PayloadTooLargeError(ValidationError):
    """Raised when an upload exceeds the configured size limit."""

    code = "payload_too_large"
    status = 413


class UnsupportedFormatError(RelayError):
    """Raised when a filename's extension is not allow-listed."""

    code = "unsupported_format"
    status = 415


class NotFoundError(RelayError):
    """Raised when no record exists for an identifier."""

    code = "not_found"
    status = 404


class ExpiredError(RelayError):
    """Raised when an identifier is known but past its expiry."""

    code = "expired"
    status = 410


class InvalidPasscodeError(RelayError):
    """Raised when the supplied passcode does not decrypt the stored envelope."""

    code = "invalid_passcode"
    status = 403


class InvalidTicketError(RelayError):
    """Raised when a download ticket is tampered with or sealed under another key."""

    code = "invalid_ticket"
    status = 403


class TicketExpiredError(ExpiredError):
    """Raised when a download ticket is past its own lifetime."""

    code = "ticket_expired"


class DuplicateIdError(RelayError):
    """Raised when a record identifier is already taken."""

    code = "duplicate_id"
    status = 500


class StorageError(RelayError):
    """Base class for blob backend failures."""

    code = "storage_error"
    status = 502


class BackendUnavailable(StorageError):
    """Raised when the blob backend cannot be reached or refuses the operation."""

    code = "backend_unavailable"
    status = 503


class NotFoundOnBackend(StorageError):
    """Raised when a stored envelope is missing from the blob backend."""

    code = "blob_missing"
    status = 502
