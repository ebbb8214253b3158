"""
Error types raised by Episode Processor.
"""

from typing import Optional, Tuple


class EpisodeProcessorError(Exception):
    """Base class for processing errors."""


class FormatError(EpisodeProcessorError, ValueError):
    """Timestamp text could not be parsed."""


class InvalidPlanError(EpisodeProcessorError):
    """A planned part has a negative duration or runs past the source."""

    def __init__(self, message: str, interval: Optional[Tuple[float, float]] = None):
        super().__init__(message)
        self.interval = interval


class ToolNotFoundError(EpisodeProcessorError, EnvironmentError):
    """A required external tool could not be launched."""


class EncodeError(EpisodeProcessorError):
    """External encoder exited with a non-zero code."""

    def __init__(self, exit_code: int, output: str = "", executable: str = "ffmpeg"):
        message = f"{executable} exit with {exit_code}"
        if output:
            message += "\n" + output
        super().__init__(message)
        self.exit_code = exit_code
        self.output = output


class NotificationError(EpisodeProcessorError):
    """Sending or editing a webhook message failed."""


class ChecklistError(EpisodeProcessorError):
    """A pre-run check did not pass."""
