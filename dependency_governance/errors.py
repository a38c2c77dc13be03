"""
Error taxonomy for registry lookups, policy loading and analysis runs.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Optional


class GovernanceError(Exception):
    """Base class for all dependency governance errors."""


class AnalysisError(GovernanceError):
    """An analysis run cannot proceed (e.g. no manifest for the ecosystem)."""


class PolicyDocumentError(GovernanceError):
    """A policy document is unreadable or malformed."""


class RegistryError(GovernanceError):
    """A registry metadata lookup failed."""

    def __init__(self, message: str, source: str = "") -> None:
        super().__init__(message)
        self.source = source


class NotFoundError(RegistryError):
    """The requested package version does not exist in the registry."""

    def __init__(self, source: str, name: str, version: str, detail: str = "") -> None:
        message = f"{source}: {name}@{version} not found"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message, source)
        self.name = name
        self.version = version


class RateLimitError(RegistryError):
    """The registry refused the request because a quota was exhausted."""

    def __init__(
        self,
        source: str,
        message: str,
        retry_after: Optional[datetime] = None,
        limit: int = 0,
        remaining: int = 0,
    ) -> None:
        self.retry_after = retry_after
        self.limit = limit
        self.remaining = remaining
        self.detail = message
        super().__init__(self._format(source, message), source)

    def _format(self, source: str, message: str) -> str:
        if self.retry_after is None:
            return f"{source} rate limit exceeded ({self.remaining}/{self.limit}): {message}"
        wait = self.retry_after - datetime.now(timezone.utc)
        minutes = max(0, round(wait.total_seconds() / 60))
        return (
            f"{source} rate limit exceeded ({self.remaining}/{self.limit}), "
            f"retry after {minutes}m: {message}"
        )


class NetworkError(RegistryError):
    """Transient transport failure; the underlying error is chained as __cause__."""

    def __init__(self, source: str, url: str, reason: object) -> None:
        super().__init__(f"network error fetching from {source} ({url}): {reason}", source)
        self.url = url


class ParseError(RegistryError):
    """The registry answered with a payload that could not be decoded."""

    def __init__(self, source: str, what: str, reason: object) -> None:
        super().__init__(f"failed to parse {what} response from {source}: {reason}", source)
        self.what = what


class FetchCancelledError(RegistryError):
    """The caller cancelled the lookup while it was in flight."""


def is_rate_limit_error(err: BaseException) -> bool:
    return isinstance(err, RateLimitError)


def get_retry_after(err: BaseException) -> Optional[datetime]:
    """Return the retry-after hint of a rate limit error, if any."""
    if isinstance(err, RateLimitError):
        return err.retry_after
    return None
