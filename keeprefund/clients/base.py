"""HTTP layer for the Bitcoin collaborator.

Provides:
- Per-endpoint request spacing shared by concurrent callers
- Retry with exponential backoff, honoring Retry-After on 429
- JSON or plain-text bodies (Esplora answers both)
- Ordered endpoint fallback

EsploraClient sits on top of this.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any

import httpx

from keeprefund.utils.diagnostics import debug, log


@dataclass
class RateLimiter:
    """Spaces requests at least 1/`max_per_second` apart.

    Slots are handed out under a lock; each caller sleeps until its own slot.
    """

    max_per_second: float
    _next_slot: float = field(init=False, default=0.0)
    _lock: asyncio.Lock = field(init=False, default_factory=asyncio.Lock)

    @property
    def interval(self) -> float:
        return 1.0 / self.max_per_second

    async def reserve(self) -> float:
        """Claim the next slot. Returns its delay from now in seconds."""
        async with self._lock:
            now = time.monotonic()
            slot = max(now, self._next_slot)
            self._next_slot = slot + self.interval
            return slot - now

    async def wait(self) -> None:
        delay = await self.reserve()
        if delay > 0:
            await asyncio.sleep(delay)


class APIError(Exception):
    """HTTP failure talking to a Bitcoin endpoint."""

    def __init__(
        self,
        message: str,
        status_code: int = 0,
        provider: str = "",
        retryable: bool = False,
        retry_after: float | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.provider = provider
        self.retryable = retryable
        self.retry_after = retry_after


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


def _decode(response: httpx.Response) -> Any:
    if "json" in response.headers.get("content-type", ""):
        return response.json()
    return response.text.strip()


class BaseClient:
    """One endpoint: rate limited GETs with bounded retry.

    Usage:
        client = BaseClient(base_url="https://blockstream.info/api", rate_limit=5.0)
        height = int(await client.get("/blocks/tip/height"))
    """

    def __init__(
        self,
        base_url: str = "",
        rate_limit: float = 10.0,
        timeout: float = 10.0,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        backoff_max: float = 60.0,
        provider_name: str = "",
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.provider_name = provider_name
        self.max_retries = max_retries
        self.backoff_base = backoff_base
        self.backoff_max = backoff_max
        self._rate_limiter = RateLimiter(max_per_second=rate_limit)
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    async def close(self) -> None:
        await self._client.aclose()

    def _check(self, response: httpx.Response) -> None:
        status = response.status_code
        if status == 429:
            raise APIError(
                f"Rate limited by {self.provider_name}",
                status_code=status,
                provider=self.provider_name,
                retryable=True,
                retry_after=_retry_after(response),
            )
        if status >= 500:
            raise APIError(
                f"Server error from {self.provider_name}: {status}",
                status_code=status,
                provider=self.provider_name,
                retryable=True,
            )
        if status >= 400:
            raise APIError(
                f"Client error from {self.provider_name}: {status}: {response.text[:200]}",
                status_code=status,
                provider=self.provider_name,
            )

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        """Decoded body of a successful GET. Non-retryable errors raise at once."""
        delay = self.backoff_base
        last_error: APIError | None = None

        for attempt in range(self.max_retries + 1):
            await self._rate_limiter.wait()
            try:
                response = await self._client.get(path, params=params)
                self._check(response)
                return _decode(response)
            except (httpx.TimeoutException, httpx.TransportError) as e:
                last_error = APIError(
                    f"Connection error to {self.provider_name}: {e}",
                    provider=self.provider_name,
                    retryable=True,
                )
            except APIError as e:
                if not e.retryable:
                    raise
                last_error = e

            if attempt < self.max_retries:
                pause = max(delay, last_error.retry_after or 0)
                debug("http", f"{self.provider_name} {path}: {last_error}, retry in {pause:.1f}s")
                await asyncio.sleep(min(pause, self.backoff_max))
                delay *= 2

        raise last_error or APIError(f"{self.provider_name}: request failed")


class FallbackClient:
    """Tries each endpoint in configured order; first success wins.

    Each endpoint gets a single quick retry so a dead provider costs
    little before the next one is asked.
    """

    def __init__(
        self,
        endpoints: list[dict[str, Any]],
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._clients = [
            BaseClient(
                base_url=ep["url"],
                rate_limit=ep.get("rate_limit", 10.0),
                timeout=ep.get("timeout_seconds", 10.0),
                provider_name=ep.get("provider", "unknown"),
                max_retries=1,
                transport=transport,
            )
            for ep in endpoints
        ]

    async def get(self, path: str, params: dict[str, Any] | None = None) -> Any:
        errors: list[str] = []
        for client in self._clients:
            try:
                return await client.get(path, params=params)
            except APIError as e:
                log("bitcoin", f"{client.provider_name} failed for {path}: {e}")
                errors.append(f"{client.provider_name}: {e}")

        raise APIError(f"All Bitcoin endpoints failed: {'; '.join(errors)}", provider="fallback")

    async def close(self) -> None:
        for client in self._clients:
            await client.close()
