"""Exception hierarchy shared by the provider clients and the HTTP layer."""
from __future__ import annotations

from typing import Optional


class DashboardError(RuntimeError):
    """Root of every error raised by this package."""


class ConfigError(DashboardError):
    """Raised when the configuration file or environment is invalid."""


class ProviderError(DashboardError):
    """An upstream call could not produce a usable value."""

    def __init__(self, provider: str, message: str, status: Optional[int] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.message = message
        self.status = status


class ProviderTimeoutError(ProviderError):
    """The upstream did not answer within the configured timeout."""


class ProviderHTTPError(ProviderError):
    """The upstream answered with a non-2xx status."""


class ProviderRateLimitedError(ProviderHTTPError):
    """The upstream answered 429."""


class ProviderQuotaError(ProviderHTTPError):
    """The upstream answered 402 (billing / credits exhausted)."""


class ProviderResponseError(ProviderError):
    """The upstream body was not the shape we expected."""


class ProviderAuthError(ProviderError):
    """Credentials were rejected (401/403) or could not be exchanged for a token.

    Receiving this switches the client into fallback-only mode for the rest
    of the process.
    """


class ProviderDisabledError(ProviderError):
    """The client is in fallback-only mode and did not attempt the call."""


__all__ = [
    "DashboardError",
    "ConfigError",
    "ProviderError",
    "ProviderTimeoutError",
    "ProviderHTTPError",
    "ProviderRateLimitedError",
    "ProviderQuotaError",
    "ProviderResponseError",
    "ProviderAuthError",
    "ProviderDisabledError",
]
