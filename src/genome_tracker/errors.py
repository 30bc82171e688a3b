"""Exceptions raised by genome-tracker. All of them abort a run."""

from typing import Optional, Sequence


class TrackerError(Exception):
    """Base class for fatal tracker errors."""


class ConfigError(TrackerError):
    pass


class ToolSetupError(TrackerError):
    """The NCBI command-line tools could not be found or installed."""


class UpstreamQueryError(TrackerError):
    """A `datasets`/`dataformat` call failed or returned non-zero status."""

    def __init__(
        self,
        message: str,
        command: Optional[Sequence[str]] = None,
        stderr: str = "",
    ):
        self.command = list(command) if command else []
        self.stderr = stderr
        detail = message
        if self.command:
            detail += f"\nCMD: {' '.join(self.command)}"
        if stderr.strip():
            detail += f"\n{stderr.strip()}"
        super().__init__(detail)


class MalformedMatrixError(TrackerError):
    """The existing matrix file does not parse into the expected columns."""

    def __init__(self, path: str, message: str, line_number: Optional[int] = None):
        self.path = path
        self.line_number = line_number
        location = f"{path}:{line_number}" if line_number is not None else path
        super().__init__(f"{location}: {message}")


class PersistenceError(TrackerError):
    """Writing the matrix failed; the file on disk was left as it was."""


class InvalidRecordError(TrackerError, ValueError):
    """A metadata record cannot be stored as a matrix row."""
