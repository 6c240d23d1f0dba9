"""Exception types raised by laraguard services.

Detectors never let these escape: the runner turns anything raised from
``Detector.run`` into an ``Error`` result.
"""


class LaraguardError(Exception):
    """Base class for all laraguard errors."""


class ConfigError(LaraguardError):
    """The project configuration file is unreadable or malformed."""


class LockFileError(LaraguardError):
    """A dependency lock file exists but cannot be read or decoded."""


class ToolNotFoundError(LaraguardError):
    """A required external executable is not available on PATH."""

    def __init__(self, tool: str):
        super().__init__(f"{tool} is not installed or not on PATH")
        self.tool = tool


class AdvisoryFeedError(LaraguardError):
    """An advisory feed file cannot be read or has an unexpected shape."""
