"""
Error taxonomy for the chronicler.

Nothing here terminates the process: every failure is terminal only for the
batch, round or marketing day it belongs to.
"""
from typing import Optional


class WhisperError(Exception):
    """Base class for chronicler errors."""


class ConfigurationError(WhisperError):
    """A required capability (API key, endpoint) is not configured."""


class UpstreamError(WhisperError):
    """A generation or publishing call failed or hit its deadline."""

    def __init__(self, message: str, service: Optional[str] = None):
        super().__init__(message)
        self.service = service


class PermitTimeoutError(WhisperError):
    """A caller gave up waiting for the generation permit."""


class ValidationRejection(WhisperError):
    """A generated draft failed its acceptance predicate."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason
