"""Google Gemini backend via google-genai SDK."""

import base64
from collections.abc import AsyncIterator, Sequence
from typing import Any

from google import genai
from google.genai import errors as genai_errors
from google.genai import types

from academic_gateway.errors import ErrorKind, GatewayError, classify_error, kind_for_status
from academic_gateway.llm.providers.base import ChatStream, LLMProvider
from academic_gateway.llm.schemas import LLMRequest, LLMResponse


class GeminiProvider(LLMProvider):
    """Gemini adapter using the native google-genai API.

    Supports inline binary attachments, JSON mode via
    response_mime_type="application/json", optional thinking level and
    Google Search grounding, image generation, and streaming.
    """

    provider_name = "gemini"
    supports_streaming = True

    def __init__(self, *, timeout: float | None = None) -> None:
        super().__init__(timeout=timeout)
        self._clients: dict[str, genai.Client] = {}

    def _client(self, api_key: str) -> genai.Client:
        client = self._clients.get(api_key)
        if client is None:
            http_options = None
            if self._timeout is not None:
                # google-genai expects milliseconds
                http_options = types.HttpOptions(timeout=int(self._timeout * 1000))
            client = genai.Client(api_key=api_key, http_options=http_options)
            self._clients[api_key] = client
        return client

    async def aclose(self) -> None:
        self._clients.clear()

    async def complete(self, request: LLMRequest, api_key: str) -> LLMResponse:
        """Generate a completion via Gemini."""
        try:
            with self._measure_latency() as timer:
                response = await self._client(api_key).aio.models.generate_content(
                    model=request.model,
                    contents=_build_contents(request),
                    config=_build_config(request),
                )
        except Exception as exc:
            raise self.classify(exc, request.model) from exc

        usage = response.usage_metadata
        return LLMResponse(
            content=response.text or "",
            provider=self.provider_name,
            model_id=request.model,
            tokens_in=usage.prompt_token_count if usage else None,
            tokens_out=usage.candidates_token_count if usage else None,
            latency_ms=timer.elapsed_ms,
            task=request.task,
        )

    async def generate_image(
        self,
        request: LLMRequest,
        api_key: str,
        aspect_ratio: str = "4:3",
    ) -> str:
        """Generate an image and return it as a base64 PNG data URI."""
        config = _build_config(request)
        config.image_config = types.ImageConfig(aspect_ratio=aspect_ratio)
        try:
            response = await self._client(api_key).aio.models.generate_content(
                model=request.model,
                contents=_build_contents(request),
                config=config,
            )
        except Exception as exc:
            raise self.classify(exc, request.model) from exc

        candidates = response.candidates or []
        content = candidates[0].content if candidates else None
        for part in (content.parts or []) if content else []:
            if part.inline_data and part.inline_data.data:
                encoded = base64.b64encode(part.inline_data.data).decode("ascii")
                return f"data:image/png;base64,{encoded}"
        raise self._error(ErrorKind.OTHER, "Diagram generation failed.")

    async def open_stream(self, request: LLMRequest, api_key: str) -> ChatStream:
        """Start a streaming generation.

        google-genai sends the request lazily on first iteration, so the
        first chunk is read here: credential and model errors surface
        from this call, before the stream is handed out.
        """
        try:
            stream = await self._client(api_key).aio.models.generate_content_stream(
                model=request.model,
                contents=_build_contents(request),
                config=_build_config(request),
            )
            chunks = aiter(stream)
            head = [await anext(chunks)]
        except StopAsyncIteration:
            head = []
        except Exception as exc:
            raise self.classify(exc, request.model) from exc

        return ChatStream(
            _replay(head, chunks),
            extract=lambda chunk: chunk.text,
            classify=lambda exc: self.classify(exc, request.model),
            close=getattr(stream, "aclose", None),
        )

    def classify(self, exc: Exception, model: str = "") -> GatewayError:
        """Map google-genai errors (``.code`` / ``.status``) to the taxonomy."""
        if isinstance(exc, GatewayError):
            return exc
        if isinstance(exc, genai_errors.APIError):
            kind = kind_for_status(exc.code) or ErrorKind.OTHER
            if exc.status == "RESOURCE_EXHAUSTED":
                kind = ErrorKind.QUOTA
            if kind is ErrorKind.NOT_FOUND:
                message = f"Model '{model}' not found on provider. Check availability."
            else:
                message = f"{exc.code} {exc.status or ''} {exc.message or ''}".strip()
            return self._error(kind, message, exc.code)
        return self._error(classify_error(exc), str(exc))


async def _replay(head: Sequence[Any], rest: AsyncIterator[Any]) -> AsyncIterator[Any]:
    for chunk in head:
        yield chunk
    async for chunk in rest:
        yield chunk


def _build_contents(request: LLMRequest) -> list[Any]:
    """Attachments first, prompt last; chat history maps to Content turns."""
    if request.messages:
        return [
            types.Content(
                role="model" if m.role == "assistant" else "user",
                parts=[types.Part.from_text(text=m.content)],
            )
            for m in request.messages
            if m.role != "system"
        ]

    parts: list[types.Part] = [
        types.Part.from_bytes(
            data=base64.b64decode(a.clean_data),
            mime_type=a.mime_type,
        )
        for a in request.attachments
    ]
    parts.append(types.Part.from_text(text=request.prompt))
    return [types.Content(role="user", parts=parts)]


def _build_config(request: LLMRequest) -> types.GenerateContentConfig:
    system = request.system_prompt
    if request.messages:
        history_system = [m.content for m in request.messages if m.role == "system"]
        if history_system:
            system = "\n\n".join(filter(None, [system, *history_system]))

    config = types.GenerateContentConfig(
        temperature=request.temperature,
        max_output_tokens=request.max_tokens,
        system_instruction=system,
    )
    if request.json_mode:
        config.response_mime_type = "application/json"
    if request.thinking_level:
        config.thinking_config = types.ThinkingConfig(
            thinking_level=request.thinking_level,
        )
    if request.search_tools:
        config.tools = [types.Tool(google_search=types.GoogleSearch())]
    return config
