"""FallbackChain -- runs a task against an ordered list of Links.

Two-level resilience:
1. Within a link: RetryPolicy rotates through the provider's keys
2. Between links: a failed link is recorded and the next one is tried
"""

from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Generic, Literal, TypeVar

import structlog
from pydantic import BaseModel

from academic_gateway.errors import (
    AllLinksFailedError,
    ConfigurationError,
    ErrorKind,
    classify_error,
)
from academic_gateway.llm.chains import Link
from academic_gateway.llm.keys import KeyPool
from academic_gateway.llm.providers.base import LLMProvider
from academic_gateway.llm.retry import RetryPolicy
from academic_gateway.llm.schemas import AttemptOutcome, LLMRequest

logger = structlog.get_logger()

T = TypeVar("T")

CallFn = Callable[[LLMProvider, LLMRequest, str], Awaitable[T]]


class ChainEvent(BaseModel):
    """Layer transition, emitted so operators can see who served a task."""

    task: str
    layer: int  # 1-based
    layers_total: int
    link: str
    provider: str
    model_id: str
    status: Literal["attempt", "failed", "served"]
    error_kind: ErrorKind | None = None
    error: str | None = None


EventCallback = Callable[[ChainEvent], Awaitable[None]]


@dataclass
class ChainResult(Generic[T]):
    """Successful chain run plus the layers that failed before it."""

    value: T
    link: Link
    failed_layers: list[AttemptOutcome] = field(default_factory=list)

    @property
    def layers_attempted(self) -> int:
        return len(self.failed_layers) + 1


class FallbackChain:
    """Executes links in order until one succeeds.

    A missing adapter or an empty key pool counts as a failed layer.
    When every link failed for lack of credentials, ConfigurationError
    is raised instead of AllLinksFailedError since no request was sent.
    """

    def __init__(
        self,
        providers: dict[str, LLMProvider],
        retry_policy: RetryPolicy,
        key_pool: KeyPool,
        event_callback: EventCallback | None = None,
    ) -> None:
        self._providers = providers
        self._retry = retry_policy
        self._key_pool = key_pool
        self._event_callback = event_callback

    async def run(
        self,
        task: str,
        links: Sequence[Link],
        request: LLMRequest,
        call_fn: CallFn[T],
    ) -> ChainResult[T]:
        """Run ``call_fn`` for each link until one returns.

        Raises:
            ConfigurationError: if no link had credentials.
            AllLinksFailedError: if every link failed; wraps the last error.
        """
        failures: list[AttemptOutcome] = []
        last_error: Exception | None = None
        total = len(links)
        task_request = request.model_copy(update={"task": task})

        for layer, link in enumerate(links, start=1):
            await self._emit(task, layer, total, link, "attempt")
            try:
                value = await self._run_link(link, task_request, call_fn)
            except Exception as exc:
                last_error = exc
                kind = classify_error(exc)
                failures.append(
                    AttemptOutcome(
                        provider=link.provider,
                        model_id=link.model_id,
                        error_kind=kind,
                        error=str(exc),
                    )
                )
                logger.warning(
                    "fallback_layer_failed",
                    task=task,
                    layer=layer,
                    layers_total=total,
                    link=link.name,
                    error_kind=kind.value,
                    error=str(exc),
                )
                await self._emit(task, layer, total, link, "failed", exc)
                continue

            logger.info(
                "fallback_layer_served",
                task=task,
                layer=layer,
                layers_total=total,
                link=link.name,
                failed_layers=len(failures),
            )
            await self._emit(task, layer, total, link, "served")
            return ChainResult(value=value, link=link, failed_layers=failures)

        if failures and all(f.error_kind is ErrorKind.CONFIGURATION for f in failures):
            providers = ", ".join(dict.fromkeys(f.provider for f in failures))
            raise ConfigurationError(
                providers,
                f"No API keys available for any provider of task '{task}': {providers}",
            ) from last_error

        logger.error("fallback_chain_exhausted", task=task, layers_attempted=total)
        raise AllLinksFailedError(
            task,
            layers_attempted=total,
            errors=[(link.name, f.error or "") for link, f in zip(links, failures)],
            last_error=last_error,
        )

    async def _run_link(
        self,
        link: Link,
        request: LLMRequest,
        call_fn: CallFn[T],
    ) -> T:
        provider = self._providers.get(link.provider)
        if provider is None:
            raise ConfigurationError(
                link.provider, f"Provider '{link.provider}' is not configured"
            )

        link_request = link.apply(request)

        async def operation(api_key: str) -> T:
            return await call_fn(provider, link_request, api_key)

        if link.single_key:
            api_key = self._key_pool.pick_random(link.provider)
            if api_key is None:
                raise ConfigurationError(link.provider)
            return await operation(api_key)

        return await self._retry.execute(
            link.provider, operation, max_retries_per_key=link.max_retries_per_key
        )

    async def _emit(
        self,
        task: str,
        layer: int,
        total: int,
        link: Link,
        status: Literal["attempt", "failed", "served"],
        exc: Exception | None = None,
    ) -> None:
        if self._event_callback is None:
            return
        event = ChainEvent(
            task=task,
            layer=layer,
            layers_total=total,
            link=link.name,
            provider=link.provider,
            model_id=link.model_id,
            status=status,
            error_kind=classify_error(exc) if exc is not None else None,
            error=str(exc) if exc is not None else None,
        )
        try:
            await self._event_callback(event)
        except Exception:
            # callback failures are logged, never raised
            logger.error("chain_event_callback_failed", task=task, exc_info=True)
