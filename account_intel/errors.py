"""
Error Types

Every failure in the intelligence layer degrades to stale or absent
derived data. These exceptions mark where that degradation happens.
"""

from typing import Optional


class IntelError(Exception):
    """Base exception for the account intelligence layer."""


class UpstreamUnavailable(IntelError):
    """Source gateway or synthesis engine could not be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None, response: dict = None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class CacheStoreUnavailable(IntelError):
    """Cache store is down or refusing requests."""


class MalformedSynthesisOutput(IntelError):
    """Synthesis engine returned output that could not be parsed."""

    def __init__(self, message: str, raw_output: str = ""):
        super().__init__(message)
        self.raw_output = raw_output
