"""
Upstream failure taxonomy.

Each class maps to one cooldown in the resilience controller, so raise the
most specific one available.
"""
from __future__ import annotations


class ProviderError(Exception):
    """Base class for classified upstream failures."""


class QuotaExceeded(ProviderError):
    """The daily request budget is spent; no request was sent."""

    def __init__(self, provider: str, used: int, limit: int) -> None:
        self.provider = provider
        self.used = used
        self.limit = limit
        super().__init__(f"{provider} daily quota exceeded ({used}/{limit})")


class ProviderUnauthorized(ProviderError):
    """Credentials rejected or access not enabled for this account."""

    def __init__(self, provider: str, status_code: int) -> None:
        self.provider = provider
        self.status_code = status_code
        super().__init__(f"{provider} rejected credentials (HTTP {status_code})")


class PayloadShapeError(ProviderError):
    """Response body could not be parsed into the expected shape."""


class TransientProviderError(ProviderError):
    """Network, timeout or other failure expected to clear on its own."""
