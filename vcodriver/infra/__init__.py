"""Internal machinery: HTTP and retry."""

from .http import HttpClient, HttpError, Response
from .retry import on_status_code, retry

__all__ = [
    "HttpClient",
    "HttpError",
    "Response",
    "on_status_code",
    "retry",
]
