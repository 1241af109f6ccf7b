"""Error taxonomy for talking to the ERP API."""
from typing import Optional


class ErpError(RuntimeError):
    """Base class for ERP API failures."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TransientRemoteError(ErpError):
    """HTTP 502/503/504, a request timeout, or a dropped connection. Retried."""


class FatalRemoteError(ErpError):
    """Any other HTTP failure, or a response body we cannot use. Not retried."""


class RemoteFetchFailure(ErpError):
    """Raised once the retry budget for a transient failure is exhausted."""


class RecordParseError(ValueError):
    """A single ERP record is malformed (e.g. has no usable id)."""
