"""
File Format Guard
=================

Single source of truth for which file formats the relay accepts and the
MIME type each is served with. Both the upload path and the download path
consult it, so a record stored under a format that has since been removed
from the allow-list can no longer be served.
"""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final, Mapping, Optional

from securerelay.core.config import DEFAULT_ALLOWED_FORMATS
from securerelay.core.errors import UnsupportedFormatError

FALLBACK_MIME_TYPE: Final[str] = "application/octet-stream"

# Other names clients commonly declare for an allowed MIME type
MIME_ALIASES: Final[Mapping[str, str]] = {
    "application/vnd.rar": "application/x-rar-compressed",
    "application/x-rar": "application/x-rar-compressed",
    "image/jpg": "image/jpeg",
    "image/pjpeg": "image/jpeg",
}


def normalize_mime_type(content_type: str) -> str:
    """Strip parameters and case from a Content-Type value."""
    return content_type.split(";", 1)[0].strip().lower()


def extension_of(filename: str) -> str:
    """
    Return the lower-cased final extension of a filename, with its dot.

    Dotfiles such as ``.txt`` have no extension.
    """
    # Windows-style separators count as path separators too
    name = filename.replace("\\", "/")
    return PurePosixPath(name).suffix.lower()


class FormatGuard:
    """
    Extension allow-list with MIME type mapping.

    Usage:
        guard = FormatGuard()
        guard.is_allowed("report.PDF")        # True
        guard.mime_type_for("report.pdf")     # "application/pdf"
        guard.mime_type_for("setup.exe")      # raises UnsupportedFormatError
        guard.is_allowed_mime_type("image/png")  # False
    """

    __slots__ = ("_formats",)

    def __init__(self, allowed_formats: Optional[Mapping[str, str]] = None) -> None:
        formats = allowed_formats if allowed_formats is not None else DEFAULT_ALLOWED_FORMATS
        self._formats = {ext.lower(): mime for ext, mime in formats.items()}

    @property
    def allowed_extensions(self) -> tuple[str, ...]:
        return tuple(self._formats)

    def is_allowed(self, filename: str) -> bool:
        """Check whether the filename's extension is allow-listed."""
        return extension_of(filename) in self._formats

    def mime_type_for(self, filename: str) -> str:
        """
        Resolve the MIME type a file is served with.

        Raises:
            UnsupportedFormatError: If the extension is not allow-listed
        """
        extension = extension_of(filename)
        if extension not in self._formats:
            raise UnsupportedFormatError(self.rejection_message(filename))
        return self._formats[extension] or FALLBACK_MIME_TYPE

    def rejection_message(self, filename: str) -> str:
        extension = extension_of(filename) or "(none)"
        return (
            f"File format {extension} is not allowed. "
            f"Allowed formats: {', '.join(self._formats)}"
        )

    def ensure_allowed(self, filename: str) -> None:
        """Raise UnsupportedFormatError unless the filename is allow-listed."""
        if not self.is_allowed(filename):
            raise UnsupportedFormatError(self.rejection_message(filename))

    @property
    def allowed_mime_types(self) -> frozenset[str]:
        return frozenset(mime or FALLBACK_MIME_TYPE for mime in self._formats.values())

    def is_allowed_mime_type(self, content_type: str) -> bool:
        """Check a declared MIME type against the MIME types of the allowed formats."""
        mime = normalize_mime_type(content_type)
        return MIME_ALIASES.get(mime, mime) in self.allowed_mime_types

    def ensure_content_type(self, filename: str, content_type: str) -> None:
        """Raise UnsupportedFormatError unless the declared MIME type is allowed."""
        if not self.is_allowed_mime_type(content_type):
            declared = normalize_mime_type(content_type) or "(none)"
            raise UnsupportedFormatError(
                f"Content type {declared} is not allowed for {filename}. "
                f"Allowed formats: {', '.join(self._formats)}"
            )
