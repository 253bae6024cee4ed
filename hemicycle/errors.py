"""Exception hierarchy for the sync engine.

Record-level problems (a malformed file, a bad CSV row, an unparsable dump
line) never surface as exceptions: decoders count and log them. Everything
here is source-level or operation-level and propagates to the orchestrator
or the CLI.
"""

from typing import Optional


class HemicycleError(Exception):
    """Base exception for sync engine errors."""

    pass


class SourceFetchError(HemicycleError):
    """Raised when an upstream source cannot be reached or returns an error.

    Attributes:
        status_code: HTTP status when the upstream answered with an error
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ArchiveError(HemicycleError):
    """Raised when a downloaded archive is corrupt or cannot be extracted."""

    pass


class MissingTableError(HemicycleError):
    """Raised when an expected table, file or directory is absent from an artifact."""

    pass


class FingerprintPersistError(HemicycleError):
    """Raised when a source fingerprint cannot be written after a successful sync."""

    pass


class LegislatorNotFoundError(HemicycleError):
    """Raised when a targeted operation names an unknown legislator."""

    pass


class LegifranceAuthError(HemicycleError):
    """Raised when an OAuth access token cannot be obtained."""

    pass


class UnknownSourceError(HemicycleError):
    """Raised when a source key is not in the registry."""

    pass
