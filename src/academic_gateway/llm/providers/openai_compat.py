"""OpenAI-compatible backend (Groq, OpenRouter)."""

from typing import Any

import openai

from academic_gateway.errors import ErrorKind, GatewayError, classify_error, kind_for_status
from academic_gateway.llm.providers.base import ChatStream, LLMProvider
from academic_gateway.llm.schemas import LLMRequest, LLMResponse


class OpenAICompatProvider(LLMProvider):
    """Adapter for the OpenAI chat-completions wire format.

    Groq and OpenRouter share the schema and differ only in base_url
    and, for OpenRouter, attribution headers. One SDK client is cached
    per credential; SDK-level retries are disabled because RetryPolicy
    owns retrying.
    """

    supports_streaming = True

    def __init__(
        self,
        provider_name: str,
        base_url: str,
        *,
        default_headers: dict[str, str] | None = None,
        timeout: float | None = None,
    ) -> None:
        super().__init__(timeout=timeout)
        self.provider_name = provider_name
        self._base_url = base_url
        self._default_headers = default_headers or {}
        self._clients: dict[str, openai.AsyncOpenAI] = {}

    def _client(self, api_key: str) -> openai.AsyncOpenAI:
        client = self._clients.get(api_key)
        if client is None:
            client = openai.AsyncOpenAI(
                api_key=api_key,
                base_url=self._base_url,
                default_headers=self._default_headers or None,
                timeout=self._timeout,
                max_retries=0,
            )
            self._clients[api_key] = client
        return client

    async def aclose(self) -> None:
        clients, self._clients = self._clients, {}
        for client in clients.values():
            await client.close()

    async def complete(self, request: LLMRequest, api_key: str) -> LLMResponse:
        """One non-streaming chat completion."""
        kwargs = self._build_kwargs(request)
        try:
            with self._measure_latency() as timer:
                response = await self._client(api_key).chat.completions.create(
                    **kwargs
                )
        except Exception as exc:
            raise self.classify(exc, request.model) from exc

        choice = response.choices[0] if response.choices else None
        usage = response.usage
        return LLMResponse(
            content=(choice.message.content if choice else None) or "",
            provider=self.provider_name,
            model_id=request.model,
            tokens_in=usage.prompt_tokens if usage else None,
            tokens_out=usage.completion_tokens if usage else None,
            latency_ms=timer.elapsed_ms,
            task=request.task,
        )

    async def open_stream(self, request: LLMRequest, api_key: str) -> ChatStream:
        """Start a streaming completion.

        ``create(stream=True)`` returns only after the response headers
        arrive, so a rejected credential raises AuthError here, before
        any delta exists.
        """
        kwargs = self._build_kwargs(request)
        try:
            stream = await self._client(api_key).chat.completions.create(
                **kwargs, stream=True
            )
        except Exception as exc:
            raise self.classify(exc, request.model) from exc

        return ChatStream(
            stream,
            extract=_delta_text,
            classify=lambda exc: self.classify(exc, request.model),
            close=stream.close,
        )

    def classify(self, exc: Exception, model: str = "") -> GatewayError:
        """Map openai SDK exceptions to the gateway taxonomy."""
        if isinstance(exc, GatewayError):
            return exc
        if isinstance(exc, openai.APIStatusError):
            kind = kind_for_status(exc.status_code) or ErrorKind.OTHER
            if kind is ErrorKind.NOT_FOUND:
                message = f"Model '{model}' not found on provider. Check availability."
            elif kind is ErrorKind.AUTH:
                message = f"invalid credential ({exc.status_code})"
            else:
                message = f"{exc.status_code} {exc.message}"
            return self._error(kind, message, exc.status_code)
        if isinstance(exc, openai.APIConnectionError):
            return self._error(ErrorKind.OTHER, f"connection failed: {exc}")
        return self._error(classify_error(exc), str(exc))

    @staticmethod
    def _build_kwargs(request: LLMRequest) -> dict[str, Any]:
        kwargs: dict[str, Any] = {
            "model": request.model,
            # The SDK types messages as a union of TypedDicts; plain
            # dicts are accepted at runtime.
            "messages": _build_messages(request),
        }
        if request.temperature is not None:
            kwargs["temperature"] = request.temperature
        if request.max_tokens is not None:
            kwargs["max_tokens"] = request.max_tokens
        if request.json_mode:
            kwargs["response_format"] = {"type": "json_object"}
        return kwargs


def _build_messages(request: LLMRequest) -> list[dict[str, Any]]:
    """Translate a request into an OpenAI ``messages`` array.

    Chat history wins over ``prompt``. Attachments become ``image_url``
    parts with base64 data URIs on the final user message.
    """
    messages: list[dict[str, Any]] = []
    if request.system_prompt:
        messages.append({"role": "system", "content": request.system_prompt})

    if request.messages:
        messages.extend(
            {"role": m.role, "content": m.content} for m in request.messages
        )
        return messages

    if request.attachments:
        content: list[dict[str, Any]] = [{"type": "text", "text": request.prompt}]
        content.extend(
            {"type": "image_url", "image_url": {"url": a.to_data_uri()}}
            for a in request.attachments
        )
        messages.append({"role": "user", "content": content})
    else:
        messages.append({"role": "user", "content": request.prompt})
    return messages


def _delta_text(chunk: Any) -> str | None:
    if not chunk.choices:
        return None
    return chunk.choices[0].delta.content
