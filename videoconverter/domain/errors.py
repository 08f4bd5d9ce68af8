"""
Error types raised by the collaborators of the conversion pipeline.

All errors inherit from VideoConverterError. Workers catch them at the level
where they occur and turn them into counters and log lines; only catalog and
authentication failures during startup stop the process.
"""

from typing import Optional


class VideoConverterError(Exception):
    """Base exception for all videoconverter failures."""
    pass


class ConfigError(VideoConverterError):
    """Raised when the configuration cannot be used for a run."""
    pass


class CatalogError(VideoConverterError):
    """Raised when a catalog query or write fails."""
    pass


class TranscodeError(VideoConverterError):
    """Raised when ffmpeg fails to produce an output file."""

    def __init__(self, message: str, returncode: Optional[int] = None, output: str = ""):
        self.returncode = returncode
        self.output = output
        super().__init__(message)

    def __str__(self) -> str:
        base = super().__str__()
        if self.output:
            return f"{base}\n{self.output}"
        return base


class RemoteStoreError(VideoConverterError):
    """Base exception for remote storage failures."""
    pass


class AuthenticationError(RemoteStoreError):
    """Raised when the storage token cannot be obtained."""
    pass


class TransferError(RemoteStoreError):
    """Raised when a request to the storage returns an unexpected status."""

    def __init__(self, method: str, url: str, status_code: Optional[int] = None, reason: str = ""):
        self.method = method
        self.url = url
        self.status_code = status_code
        message = f"{method} {url} failed"
        if status_code is not None:
            message = f"{message}: response code is {status_code}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class IncompleteTransferError(RemoteStoreError):
    """Raised when fewer bytes were received than the server announced."""

    def __init__(self, url: str, received: int, expected: int):
        self.url = url
        self.received = received
        self.expected = expected
        super().__init__(f"File was not fully downloaded from {url}: {received} of {expected} bytes")


class InsufficientStorageError(RemoteStoreError):
    """Raised when the storage reports that it ran out of space."""

    def __init__(self, remote_path: str):
        self.remote_path = remote_path
        super().__init__(f"No free space left on the storage for {remote_path}")
