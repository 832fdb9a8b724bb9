"""
errors.py - Exceptions raised by the scan pipeline.

SessionError and InvalidInputError abort a scan.  ExtractionError and
EnrichmentError are raised inside best-effort stages and never reach the
caller of run_scan(); the stage's result field is left empty instead.
The cookie consent stage reports its own failures in CookieInfo.message.
"""


class ScanError(Exception):
    """Base class for every scan pipeline error."""


class InvalidInputError(ScanError):
    """Raised when the target URL is not an absolute http(s) URL."""


class SessionError(ScanError):
    """Raised when the browser cannot be started, navigated or loaded."""


class ExtractionError(ScanError):
    """Raised when the page HTML cannot be read for tag extraction."""


class EnrichmentError(ScanError):
    """Raised when the Tagstack API call fails or returns an error."""
