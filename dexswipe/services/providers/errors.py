"""Provider error taxonomy.

Workers branch on these classes: transient errors are retried with backoff, permanent
ones suppress the job, ``ProviderLimitedError`` is a business refusal reported in an
HTTP 200 envelope.
"""

from __future__ import annotations


class ProviderError(RuntimeError):
    """Base error of the outbound provider layer."""


class ProviderHTTPError(ProviderError):
    """Non-retryable HTTP status."""

    def __init__(self, status: int, url: str, body: str = "") -> None:
        self.status = status
        self.url = url
        self.body = body
        super().__init__(f"HTTP {status} from {url}: {body[:200]}")


class ProviderAuthError(ProviderHTTPError):
    """401/403: the credential style was rejected."""


class ProviderUnavailableError(ProviderError):
    """Retries exhausted on network errors, timeouts, 429 or 5xx."""


class ProviderLimitedError(ProviderError):
    """Non-success envelope code (quota, rate limit, unknown business error)."""

    def __init__(self, code: int | None, message: str = "") -> None:
        self.code = code
        self.message = message
        super().__init__(f"provider_limited:{code}: {message}".rstrip(": "))


class PermanentProviderError(ProviderError):
    """Retrying will never help."""

    reason = "permanent_provider_error"

    def __init__(self, code: int | None = None, message: str = "") -> None:
        self.code = code
        self.message = message
        super().__init__(f"{self.reason}:{code}: {message}".rstrip(": "))


class InvalidAddressError(PermanentProviderError):
    reason = "invalid_address"


class UnsupportedChainError(PermanentProviderError):
    reason = "unsupported_chain"


__all__ = [
    "InvalidAddressError",
    "PermanentProviderError",
    "ProviderAuthError",
    "ProviderError",
    "ProviderHTTPError",
    "ProviderLimitedError",
    "ProviderUnavailableError",
    "UnsupportedChainError",
]
