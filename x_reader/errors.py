"""
Error taxonomy for x_reader.

Every failure that can reach the invocation boundary is a ReaderError, so the
harness can turn it into a well-formed failure envelope and an exit status.
"""

from typing import Any, Dict, Optional


EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INVALID_INPUT = 2
EXIT_SESSION_BUSY = 3
EXIT_INTERRUPTED = 130


class ReaderError(Exception):
    """Base error with envelope metadata."""

    retryable = False
    exit_code = EXIT_FAILURE

    def __init__(self, message: str, *, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        """Error metadata for the failure envelope."""
        data = {
            "type": type(self).__name__,
            "message": self.message,
            "retryable": self.retryable,
        }
        if self.cause is not None:
            data["cause"] = str(self.cause)
        return data


class ConfigurationError(ReaderError):
    """Configuration cannot be resolved; the process cannot proceed."""


class SessionBusy(ReaderError):
    """The profile is held by another live process. Retry later."""

    retryable = True
    exit_code = EXIT_SESSION_BUSY

    def __init__(self, message: str, *, artifact: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.artifact = artifact

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        if self.artifact:
            data["artifact"] = self.artifact
        return data


class SessionLaunchError(ReaderError):
    """The browser context could not be launched or attached."""


class InvalidReference(ReaderError):
    """Caller input does not identify a resource."""

    exit_code = EXIT_INVALID_INPUT


class InvalidTweetReference(InvalidReference):
    """Neither a status URL nor a numeric tweet id could be derived."""


class InvalidRequest(InvalidReference):
    """The request document on stdin is malformed."""


class NavigationTimeout(ReaderError):
    """A mandatory element did not appear within its time budget."""

    def __init__(self, message: str, *, url: Optional[str] = None,
                 selector: Optional[str] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.url = url
        self.selector = selector


class FieldExtractionFailure(ReaderError):
    """A single field could not be read. Never escapes record assembly."""

    def __init__(self, field_name: str, reason: str = "not found"):
        super().__init__(f"{field_name}: {reason}")
        self.field_name = field_name
