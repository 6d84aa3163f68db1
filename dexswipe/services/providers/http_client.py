"""Shared aiohttp client with one retry policy for every provider."""

from __future__ import annotations

import asyncio
import random
from dataclasses import dataclass
from typing import Any, Mapping

import aiohttp
from loguru import logger

from config.settings import RetrySettings
from .errors import ProviderAuthError, ProviderError, ProviderHTTPError, ProviderUnavailableError

RETRYABLE_STATUSES = frozenset({429, 500, 502, 503, 504, 520, 522, 524})
AUTH_STATUSES = frozenset({401, 403})


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    """Attempts, capped exponential delay and per-attempt timeout."""

    max_attempts: int = 3
    base_delay: float = 0.5
    max_delay: float = 4.0
    timeout: float = 15.0
    jitter: float = 0.0

    @classmethod
    def from_settings(cls, cfg: RetrySettings) -> "RetryPolicy":
        return cls(
            max_attempts=cfg.max_attempts,
            base_delay=cfg.base_delay_sec,
            max_delay=cfg.max_delay_sec,
            timeout=cfg.timeout_sec,
        )

    def delay(self, attempt: int) -> float:
        delay = min(self.base_delay * (2**attempt), self.max_delay)
        if self.jitter:
            delay += random.uniform(0, self.jitter)
        return delay


def _is_retryable(status: int) -> bool:
    return status in RETRYABLE_STATUSES or status >= 500


class ProviderClient:
    """JSON over HTTP with retries on network errors, timeouts, 429 and 5xx."""

    def __init__(
        self,
        *,
        user_agent: str,
        retry: RetryPolicy | None = None,
        session: aiohttp.ClientSession | None = None,
    ) -> None:
        self._user_agent = user_agent
        self.retry = retry or RetryPolicy()
        self._session = session
        self._owns_session = session is None

    async def start(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(headers={"User-Agent": self._user_agent})
            self._owns_session = True

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()

    async def fetch_json(
        self,
        url: str,
        *,
        method: str = "GET",
        params: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
        json: Any = None,
        retry: RetryPolicy | None = None,
    ) -> Any:
        if self._session is None:
            await self.start()
        retry = retry or self.retry
        request_headers = {"User-Agent": self._user_agent, "Accept": "application/json"}
        request_headers.update(headers or {})
        last_error = "no attempt made"

        for attempt in range(retry.max_attempts):
            if attempt:
                await asyncio.sleep(retry.delay(attempt - 1))
            try:
                async with self._session.request(
                    method,
                    url,
                    params=dict(params) if params else None,
                    headers=request_headers,
                    json=json,
                    timeout=aiohttp.ClientTimeout(total=retry.timeout),
                ) as resp:
                    if resp.status in AUTH_STATUSES:
                        raise ProviderAuthError(resp.status, url, await resp.text())
                    if _is_retryable(resp.status):
                        last_error = f"HTTP {resp.status}"
                        logger.debug(
                            "{url}: HTTP {status}, attempt {attempt}/{total}",
                            url=url,
                            status=resp.status,
                            attempt=attempt + 1,
                            total=retry.max_attempts,
                        )
                        continue
                    if resp.status >= 400:
                        raise ProviderHTTPError(resp.status, url, await resp.text())
                    try:
                        return await resp.json(content_type=None)
                    except ValueError as exc:
                        raise ProviderError(f"Invalid JSON from {url}: {exc}") from exc
            except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
                last_error = f"{type(exc).__name__}: {exc}"
                logger.debug(
                    "{url}: {error}, attempt {attempt}/{total}",
                    url=url,
                    error=last_error,
                    attempt=attempt + 1,
                    total=retry.max_attempts,
                )

        raise ProviderUnavailableError(
            f"{url} unavailable after {retry.max_attempts} attempt(s): {last_error}"
        )


__all__ = ["AUTH_STATUSES", "ProviderClient", "RETRYABLE_STATUSES", "RetryPolicy"]
