"""Typed failures raised by the cutout pipeline stages."""

from typing import Optional


class CutoutError(RuntimeError):
    """Base exception for every pipeline failure."""
    pass


class DecodeError(CutoutError):
    """The source could not be read as an image."""
    pass


class SourceFetchError(DecodeError):
    """
    A remote source could not be retrieved.

    Kept distinct from plain decode failures so callers can retry through a
    different access path (a proxy, a signed URL) instead of giving up.

    Attributes:
        url: The reference that failed.
        status_code: HTTP status when the server answered, otherwise None.
    """
    def __init__(self, message: str, url: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class ProcessingError(CutoutError):
    """An invariant was violated while scoring or refining the mask."""
    pass


class PipelineCancelledError(ProcessingError):
    """The caller cancelled the run between two stages."""
    pass


class PipelineTimeoutError(ProcessingError):
    """The run exceeded its wall-clock budget."""
    def __init__(self, message: str, elapsed_seconds: float):
        super().__init__(message)
        self.elapsed_seconds = elapsed_seconds


class EncodeError(CutoutError):
    """The finished buffer could not be serialized."""
    pass
