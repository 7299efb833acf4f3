"""Abstract backend adapter interface."""

import abc
import json
import re
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any

import structlog
from pydantic import BaseModel, ValidationError

from academic_gateway.errors import (
    AuthError,
    ErrorKind,
    GatewayError,
    NotFoundError,
    QuotaError,
    StructuredOutputError,
    TransientError,
)
from academic_gateway.llm.schemas import LLMRequest, LLMResponse

logger = structlog.get_logger()

_ERROR_CLASSES: dict[ErrorKind, type[GatewayError]] = {
    ErrorKind.QUOTA: QuotaError,
    ErrorKind.AUTH: AuthError,
    ErrorKind.NOT_FOUND: NotFoundError,
}

_MD_JSON_RE = re.compile(r"```(?:json)?\s*\n?(.*?)\n?\s*```", re.DOTALL)


def strip_markdown_json(text: str) -> str:
    """Strip markdown code fences from a JSON response if present."""
    match = _MD_JSON_RE.search(text)
    return match.group(1).strip() if match else text.strip()


class ChatStream:
    """An opened streaming response.

    The HTTP request has already been accepted when a ChatStream exists,
    so status errors (401, 404, 429) surface from ``open_stream`` before
    any delta is produced. Iterating yields non-empty text deltas;
    errors raised mid-stream are classified by the owning adapter.
    Single pass: iterate once, then ``aclose()`` (or use ``async with``).
    """

    def __init__(
        self,
        source: AsyncIterator[Any],
        *,
        extract: Callable[[Any], str | None],
        classify: Callable[[Exception], GatewayError],
        close: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self._source = source
        self._extract = extract
        self._classify = classify
        self._close = close
        self._closed = False

    def __aiter__(self) -> AsyncIterator[str]:
        return self._deltas()

    async def _deltas(self) -> AsyncIterator[str]:
        try:
            async for chunk in self._source:
                text = self._extract(chunk)
                if text:
                    yield text
        except GatewayError:
            raise
        except Exception as exc:
            raise self._classify(exc) from exc

    async def aclose(self) -> None:
        """Release the underlying transport; safe to call twice."""
        if self._closed:
            return
        self._closed = True
        if self._close is not None:
            await self._close()

    async def __aenter__(self) -> "ChatStream":
        return self

    async def __aexit__(self, *args: object) -> None:
        await self.aclose()


class LLMProvider(abc.ABC):
    """Base class for all backend adapters.

    Adapters hold no credentials: the retry policy picks a key from
    the pool and passes it into every call. Each adapter implements:
    - complete(): one non-streaming call
    - classify(): map an SDK exception to the gateway taxonomy
    and, when ``supports_streaming`` is set, open_stream().
    """

    provider_name: str = ""
    supports_streaming: bool = False

    def __init__(self, *, timeout: float | None = None) -> None:
        self._timeout = timeout

    @abc.abstractmethod
    async def complete(self, request: LLMRequest, api_key: str) -> LLMResponse:
        """Generate a completion; raises GatewayError subclasses only."""
        ...

    @abc.abstractmethod
    def classify(self, exc: Exception, model: str = "") -> GatewayError:
        """Translate an SDK/transport exception into a GatewayError."""
        ...

    async def complete_json(
        self,
        request: LLMRequest,
        api_key: str,
        response_schema: type[BaseModel] | None = None,
    ) -> tuple[Any, LLMResponse]:
        """JSON-mode completion parsed into ``response_schema`` (or a dict).

        Returns:
            Tuple of (parsed_object, raw_llm_response).
        """
        json_request = request.model_copy(update={"json_mode": True})
        response = await self.complete(json_request, api_key)
        raw = strip_markdown_json(response.content) or "{}"
        return self._parse_structured(raw, response_schema), response

    async def open_stream(self, request: LLMRequest, api_key: str) -> ChatStream:
        """Open a streaming chat completion."""
        raise NotImplementedError(f"{self.provider_name} does not support streaming")

    async def aclose(self) -> None:
        """Close cached SDK clients."""

    def _error(
        self,
        kind: ErrorKind,
        message: str,
        status_code: int | None = None,
    ) -> GatewayError:
        """Build the taxonomy exception for ``kind``."""
        error_cls = _ERROR_CLASSES.get(kind, TransientError)
        return error_cls(
            f"{self.provider_name}: {message}",
            provider=self.provider_name,
            status_code=status_code,
        )

    def _parse_structured(
        self,
        raw_json: str,
        response_schema: type[BaseModel] | None,
    ) -> Any:
        """Parse raw JSON into a Pydantic model (or a plain dict).

        Raises:
            StructuredOutputError: If the response is not valid JSON
                or doesn't match the schema. Retry and fallback are
                handled by RetryPolicy and FallbackChain, not here.
        """
        schema_name = response_schema.__name__ if response_schema else "dict"
        try:
            if response_schema is None:
                parsed = json.loads(raw_json)
                if not isinstance(parsed, dict):
                    raise ValueError("expected a JSON object")
                return parsed
            return response_schema.model_validate_json(raw_json)
        except (ValidationError, ValueError) as exc:
            logger.error(
                "structured_output_parse_failed",
                provider=self.provider_name,
                schema=schema_name,
                raw_content=raw_json[:500],
            )
            raise StructuredOutputError(
                provider=self.provider_name,
                raw_content=raw_json,
                schema_name=schema_name,
                cause=exc,
            ) from exc

    def _measure_latency(self) -> "_LatencyTimer":
        """Context manager for measuring call latency."""
        return _LatencyTimer()


class _LatencyTimer:
    """Simple latency measurement helper."""

    def __init__(self) -> None:
        self.start: float = 0
        self.elapsed_ms: int = 0

    def __enter__(self) -> "_LatencyTimer":
        self.start = time.perf_counter()
        return self

    def __exit__(self, *args: object) -> None:
        self.elapsed_ms = int((time.perf_counter() - self.start) * 1000)
