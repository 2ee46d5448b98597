"""
Exceptions raised by the request guard.
"""


class CliniioGuardError(Exception):
    """Base class for request guard errors."""


class FacilityResolutionError(CliniioGuardError):
    """
    No facility id is available and no fallback is allowed.

    Raised in production builds so that a query is never scoped to the
    wrong tenant.
    """


class RequestRewriteError(CliniioGuardError, ValueError):
    """The outgoing URL could not be parsed for rewriting."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Cannot rewrite request URL {url!r}: {reason}")
