"""GoPlus Security client.

Credentials are resolved in a fixed order (explicit access token, token issued from the
app key pair, legacy API key, anonymous) and, when present, presented in three styles
until one is accepted. GoPlus answers HTTP 200 with a ``{code, message, result}``
envelope, so business failures are detected here and mapped to typed errors.
"""

from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass
from typing import Any, Callable, Sequence

from loguru import logger

from config.settings import GoPlusSettings
from dexswipe.services.chains import SOLANA, AddressCasing, ChainMapping
from dexswipe.utils.cache import cache_key, get_cache
from .errors import (
    InvalidAddressError,
    ProviderAuthError,
    ProviderError,
    ProviderLimitedError,
    UnsupportedChainError,
)
from .http_client import ProviderClient, RetryPolicy

SUCCESS_CODES = frozenset({1, 2})
TRANSIENT_AUTH_CODES = frozenset({4010, 4011, 4012, 4023})
INVALID_ADDRESS_CODES = frozenset({2004, 2020})
UNSUPPORTED_CHAIN_CODES = frozenset({2018, 2022})

TOKEN_REFRESH_MARGIN_SEC = 5 * 60
DEFAULT_TOKEN_LIFETIME_SEC = 6 * 3600


@dataclass(frozen=True, slots=True)
class Credential:
    token: str
    source: str


class _TransientAuthCode(ProviderError):
    def __init__(self, code: int, message: str) -> None:
        self.code = code
        self.message = message
        super().__init__(f"transient auth code {code}: {message}")


def _parse_code(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value.strip())
        except ValueError:
            return None
    return None


def check_envelope(payload: Any) -> Any:
    """Return ``result`` of a successful envelope or raise the matching error."""

    if not isinstance(payload, dict):
        raise ProviderLimitedError(None, "response is not a JSON object")
    code = _parse_code(payload.get("code", payload.get("Code")))
    message = str(payload.get("message") or "")
    if code in SUCCESS_CODES:
        return payload.get("result")
    if code in TRANSIENT_AUTH_CODES:
        raise _TransientAuthCode(code, message)
    if code in INVALID_ADDRESS_CODES:
        raise InvalidAddressError(code, message)
    if code in UNSUPPORTED_CHAIN_CODES:
        raise UnsupportedChainError(code, message)
    raise ProviderLimitedError(code, message)


def extract_result(
    result: Any,
    address: str,
    casing: AddressCasing,
    *,
    requested: int = 1,
) -> dict[str, Any] | None:
    """Find the entry for ``address`` in an address-keyed result map.

    Exact key first. Lower-cased families also match case-insensitively; for
    case-sensitive families the only fallback is the single entry of a
    single-address response.
    """

    if not isinstance(result, dict):
        return None
    entry = result.get(address)
    if isinstance(entry, dict):
        return entry
    if casing is AddressCasing.LOWERCASE:
        lowered = address.lower()
        entry = result.get(lowered)
        if isinstance(entry, dict):
            return entry
        for key, value in result.items():
            if isinstance(key, str) and key.lower() == lowered and isinstance(value, dict):
                return value
        return None
    if requested == 1 and len(result) == 1:
        (value,) = result.values()
        if isinstance(value, dict):
            return value
    return None


class GoPlusClient:
    """Token security, rug-pull, phishing and dApp endpoints."""

    def __init__(
        self,
        http: ProviderClient,
        cfg: GoPlusSettings,
        *,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._http = http
        self._cfg = cfg
        self._base_url = str(cfg.base_url).rstrip("/")
        self._retry = RetryPolicy.from_settings(cfg.retry)
        self._clock = clock

    async def resolve_credential(self) -> Credential | None:
        cfg = self._cfg
        if cfg.access_token is not None:
            return Credential(cfg.access_token.get_secret_value().strip(), "access_token")
        if cfg.app_key and cfg.app_secret is not None:
            token = await self._issued_access_token()
            if token:
                return Credential(token, "issued")
        if cfg.api_key is not None:
            return Credential(cfg.api_key.get_secret_value().strip(), "legacy_api_key")
        return None

    async def _issued_access_token(self) -> str | None:
        """Access token from the app key pair, cached until shortly before expiry."""

        cache = get_cache()
        key = cache_key("goplus", "access_token", self._cfg.app_key)
        cached = await cache.get(key)
        if cached:
            return cached

        issued_at = int(self._clock())
        secret = self._cfg.app_secret.get_secret_value()
        sign = hashlib.sha1(f"{self._cfg.app_key}{issued_at}{secret}".encode()).hexdigest()
        try:
            payload = await self._http.fetch_json(
                f"{self._base_url}/token",
                method="POST",
                json={"app_key": self._cfg.app_key, "sign": sign, "time": issued_at},
                retry=self._retry,
            )
            result = check_envelope(payload)
        except ProviderError as exc:
            logger.warning("GoPlus access token issue failed: {error}", error=exc)
            return None
        if not isinstance(payload, dict) or _parse_code(payload.get("code")) != 1:
            logger.warning("GoPlus access token issue returned code {code}", code=payload.get("code"))
            return None

        token = result.get("access_token") if isinstance(result, dict) else None
        if not isinstance(token, str) or not token.strip():
            logger.warning("GoPlus access token missing in response")
            return None
        expires_in = result.get("expires_in")
        if not isinstance(expires_in, (int, float)) or expires_in <= 60:
            expires_in = DEFAULT_TOKEN_LIFETIME_SEC
        ttl = max(int(expires_in) - TOKEN_REFRESH_MARGIN_SEC, 60)
        await cache.set(key, token.strip(), ttl=ttl)
        logger.info("GoPlus access token issued, cached for {ttl}s", ttl=ttl)
        return token.strip()

    @staticmethod
    def _presentations(credential: Credential | None) -> list[tuple[str, dict[str, str], dict[str, str]]]:
        if credential is None:
            return [("anonymous", {}, {})]
        token = credential.token
        return [
            ("bearer", {"Authorization": f"Bearer {token}"}, {}),
            ("x-api-key", {"X-API-KEY": token}, {}),
            ("query", {}, {"api_key": token}),
        ]

    async def request(self, path: str, params: dict[str, str] | None = None) -> Any:
        """GET ``path`` trying each credential style; returns the envelope result."""

        url = f"{self._base_url}/{path.lstrip('/')}"
        credential = await self.resolve_credential()
        last_error: ProviderError | None = None
        for style, headers, extra_params in self._presentations(credential):
            try:
                payload = await self._http.fetch_json(
                    url,
                    params={**(params or {}), **extra_params},
                    headers=headers,
                    retry=self._retry,
                )
                return check_envelope(payload)
            except ProviderAuthError as exc:
                last_error = exc
            except _TransientAuthCode as exc:
                last_error = ProviderLimitedError(exc.code, exc.message)
            logger.debug(
                "GoPlus {path}: {style} rejected ({error}), trying next style",
                path=path,
                style=style,
                error=last_error,
            )
        raise last_error or ProviderAuthError(0, url, "no credential style accepted")

    async def token_security(
        self,
        mapping: ChainMapping,
        addresses: Sequence[str],
    ) -> dict[str, dict[str, Any] | None]:
        """Per-address payloads (None where GoPlus returned nothing usable)."""

        joined = ",".join(addresses)
        if mapping.family is SOLANA:
            result = await self.request("solana/token_security", {"contract_addresses": joined})
        else:
            if not mapping.provider_chain_id:
                raise UnsupportedChainError(None, f"no provider chain for {mapping.chain_id}")
            result = await self.request(
                f"token_security/{mapping.provider_chain_id}", {"contract_addresses": joined}
            )
        return {
            address: extract_result(result, address, mapping.family.casing, requested=len(addresses))
            for address in addresses
        }

    async def rugpull(self, mapping: ChainMapping, address: str) -> dict[str, Any]:
        if not mapping.rugpull_supported:
            raise UnsupportedChainError(None, f"rug-pull detection unavailable on {mapping.chain_id}")
        result = await self.request(
            f"rugpull_detecting/{mapping.provider_chain_id}", {"contract_addresses": address}
        )
        entry = extract_result(result, address, mapping.family.casing)
        if entry is not None:
            return entry
        return result if isinstance(result, dict) else {}

    async def phishing_site(self, url: str) -> dict[str, Any]:
        result = await self.request("phishing_site", {"url": url})
        return result if isinstance(result, dict) else {"result": result}

    async def dapp_security(self, url: str) -> dict[str, Any]:
        result = await self.request("dapp_security", {"url": url})
        return result if isinstance(result, dict) else {"result": result}


__all__ = [
    "Credential",
    "GoPlusClient",
    "INVALID_ADDRESS_CODES",
    "SUCCESS_CODES",
    "TRANSIENT_AUTH_CODES",
    "UNSUPPORTED_CHAIN_CODES",
    "check_envelope",
    "extract_result",
]
