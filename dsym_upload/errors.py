"""
Exceptions raised by the debug symbol scanner and uploader.
"""

from __future__ import annotations


class DSymUploadError(Exception):
    """Base exception for dsym-upload errors."""
    pass


class ConfigError(DSymUploadError, ValueError):
    """Raised when the configuration is incomplete or malformed."""
    pass


class InvalidUuidError(DSymUploadError, ValueError):
    """Raised when a user supplied UUID cannot be parsed."""

    def __init__(self, value: str):
        self.value = value
        super().__init__(f"Invalid UUID: {value!r}")


class MachOError(DSymUploadError):
    """Raised when a file looks like a Mach-O binary but cannot be parsed."""
    pass


class StaleArchiveError(DSymUploadError):
    """Raised when reading through an archive handle that was already closed."""
    pass


class ApiError(DSymUploadError):
    """Raised when the server rejects a request or cannot be reached."""

    def __init__(self, message: str, status_code: int | None = None):
        self.status_code = status_code
        super().__init__(message)


class MissingDSymsError(DSymUploadError):
    """Raised when --require-all is set and some UUIDs were never found."""

    def __init__(self, missing):
        self.missing = sorted(missing, key=str)
        super().__init__(
            "Not all requested dsyms could be found: "
            + ", ".join(str(u) for u in self.missing)
        )
