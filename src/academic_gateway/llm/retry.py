"""Retry primitives.

RetryPolicy.execute() spreads a call over every key of a provider
(breadth first: with N keys, trying another key beats waiting on a
rate-limited one). with_backoff() is for single-key calls where no
rotation is possible and only exponential backoff helps.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from academic_gateway.errors import ErrorKind, classify_error
from academic_gateway.llm.keys import KeyPool, mask_key

logger = structlog.get_logger()

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[None]]


class RetryPolicy:
    """Executes a credential-bound operation across a provider's key pool.

    Per key, up to ``max_retries_per_key`` attempts:
    - success returns immediately
    - quota error with more than one key: skip to the next key at once
    - quota error on a single-key pool: wait ``quota_delay`` and retry
    - any other error: next key, no delay
    When every key is exhausted, the last observed error is raised.
    """

    def __init__(
        self,
        key_pool: KeyPool,
        *,
        quota_delay: float = 0.5,
        sleep: Sleep | None = None,
    ) -> None:
        self._key_pool = key_pool
        self._quota_delay = quota_delay
        self._sleep = sleep or asyncio.sleep

    async def execute(
        self,
        provider: str,
        operation: Callable[[str], Awaitable[T]],
        max_retries_per_key: int = 1,
    ) -> T:
        """Run ``operation(api_key)`` until one key succeeds.

        Raises:
            ValueError: if ``max_retries_per_key`` is below 1.
            ConfigurationError: if the provider has no keys (before any call).
            Exception: the last error observed when all keys failed.
        """
        if max_retries_per_key < 1:
            raise ValueError("max_retries_per_key must be >= 1")
        keys = self._key_pool.shuffle(self._key_pool.require_keys(provider))
        last_error: Exception | None = None

        for index, api_key in enumerate(keys, start=1):
            for attempt in range(1, max_retries_per_key + 1):
                try:
                    return await operation(api_key)
                except Exception as exc:
                    last_error = exc
                    kind = classify_error(exc)
                    logger.warning(
                        "provider_key_attempt_failed",
                        provider=provider,
                        key=mask_key(api_key),
                        key_index=index,
                        keys_total=len(keys),
                        attempt=attempt,
                        error_kind=kind.value,
                        error=str(exc),
                    )
                    if kind is ErrorKind.QUOTA and len(keys) > 1:
                        break
                    if kind is ErrorKind.QUOTA and attempt < max_retries_per_key:
                        await self._sleep(self._quota_delay)
                        continue
                    break

        assert last_error is not None  # keys is never empty here
        raise last_error


async def with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    max_attempts: int = 3,
    initial_delay: float = 2.0,
    sleep: Sleep | None = None,
) -> T:
    """Retry a single-key call on quota errors with exponential backoff.

    Waits ``initial_delay * 2**attempt`` between attempts. Any error
    that is not a quota error, or a quota error on the final attempt,
    is raised unchanged.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be >= 1")
    sleep = sleep or asyncio.sleep

    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if classify_error(exc) is not ErrorKind.QUOTA or attempt >= max_attempts - 1:
                raise
            wait = initial_delay * 2**attempt
            logger.warning(
                "quota_backoff",
                attempt=attempt + 1,
                max_attempts=max_attempts,
                wait_seconds=wait,
                error=str(exc),
            )
            await sleep(wait)
            attempt += 1
