"""
Error taxonomy for csvbuttler.

STARTUP ERRORS (fatal, process exits non-zero):
- ConfigurationError : missing/invalid settings (e.g. username without password)
- SourceIOError      : local CSV file cannot be read
- FetchError         : remote CSV cannot be fetched

PER-ROW ERRORS (recovered inside the indexer):
- RowParseError

PER-REQUEST ERRORS (translated to HTTP status codes in main.py):
- Unauthorized  -> 401
- InternalError -> 500 (SigningError is an InternalError)
"""


class ButtlerError(Exception):
    """Base class for every error raised by csvbuttler."""


class ConfigurationError(ButtlerError):
    pass


class SourceIOError(ButtlerError):
    """The local CSV source could not be read."""


class FetchError(ButtlerError):
    """The remote CSV source could not be fetched or decoded."""


class RowParseError(ButtlerError):
    """A single CSV row could not be turned into a Record."""

    def __init__(self, line: int, reason: str):
        super().__init__(f"line {line}: {reason}")
        self.line = line
        self.reason = reason


class Unauthorized(ButtlerError):
    """Client is not allowed to access the resource."""

    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(detail)
        self.detail = detail


class InternalError(ButtlerError):
    """Server-side failure; the cause is logged, never returned to the client."""


class SigningError(InternalError):
    pass
