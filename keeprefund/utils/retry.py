"""Retry and backoff for Ethereum node calls.

web3's async HTTP provider talks through aiohttp, so transport failures
surface as aiohttp errors. Those are retried with exponential backoff;
contract reverts and undecodable call output are answers, never retried.
"""
from __future__ import annotations

from functools import wraps
from typing import Any, Callable, TypeVar

import aiohttp
from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from keeprefund.utils.diagnostics import log

F = TypeVar('F', bound=Callable[..., Any])

RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (
    aiohttp.ClientError,
    ConnectionError,
    TimeoutError,
)


def _log_retry(state: RetryCallState) -> None:
    name = getattr(state.fn, "__name__", "call")
    error = state.outcome.exception() if state.outcome else None
    log("rpc", f"{name} attempt {state.attempt_number} failed ({error}), retrying")


def node_retry(attempts: int = 3, min_wait: float = 1, max_wait: float = 10) -> Callable[[F], F]:
    """Decorator factory: `attempts` tries, waits from `min_wait` up to `max_wait` seconds."""
    def decorator(func: F) -> F:
        @retry(
            stop=stop_after_attempt(attempts),
            wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
            retry=retry_if_exception_type(RETRYABLE_ERRORS),
            before_sleep=_log_retry,
            reraise=True,
        )
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            return await func(*args, **kwargs)

        return wrapper  # type: ignore

    return decorator


with_retry = node_retry()
