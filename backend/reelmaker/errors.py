"""Error taxonomy for highlight reel runs.

Every error here is fatal to the run that raised it. The pipeline always
removes its scratch workspace before the error reaches the caller.
"""
from typing import Optional


class HighlightError(Exception):
    """Base class for highlight pipeline failures."""
    pass


class FetchError(HighlightError):
    """Source video was unreachable or the download stream failed."""
    pass


class DetectionError(HighlightError):
    """The detection service call itself failed (network, auth, quota)."""
    pass


class NoHighlightsError(HighlightError):
    """Detection and allocation produced no usable segment.

    This is an expected outcome for some assets; callers may retry with a
    different source.
    """
    pass


class _ToolError(HighlightError):
    """Failure of an external media tool invocation."""

    def __init__(
        self,
        message: str,
        exit_code: Optional[int] = None,
        stderr: str = "",
    ):
        super().__init__(message)
        self.exit_code = exit_code
        self.stderr = stderr

    def __str__(self) -> str:
        message = super().__str__()
        if self.exit_code is not None:
            message = f"{message} (exit code {self.exit_code})"
        if self.stderr:
            # ffmpeg puts the useful part at the end
            message = f"{message}: {self.stderr.strip()[-500:]}"
        return message


class TranscodeError(_ToolError):
    """An extraction or probe invocation failed."""
    pass


class ConcatenationError(_ToolError):
    """The join invocation failed or an expected clip was missing."""
    pass


class InvalidSegmentError(ValueError):
    """A time segment violated 0 <= start < end."""
    pass


class FinalizeError(HighlightError):
    """The finished reel could not be moved to its destination."""
    pass
