"""InferenceGateway -- the entry points application code calls.

One instance per client session: it owns the session's KeyPool (key
overrides and the chat rotation cursor), so sessions never interfere.

Usage::

    from academic_gateway import InferenceGateway

    gateway = InferenceGateway()
    analysis = await gateway.analyze(["data:image/png;base64,..."])
    async for delta in gateway.stream_chat(history, "flash"):
        ...
"""

import asyncio
import random
from collections.abc import AsyncIterator, Mapping, Sequence

import structlog

from academic_gateway.batch import BatchReport, ProgressCallback, run_in_waves
from academic_gateway.config import Settings, get_settings
from academic_gateway.errors import ConfigurationError, GatewayError
from academic_gateway.exam import ExamAnalysis, ExamQuestion, RefinedAnswer
from academic_gateway.llm.chain import EventCallback, FallbackChain
from academic_gateway.llm.chains import (
    DEFAULT_ANALYZE_MODEL,
    DIAGRAM_MODEL,
    TaskKind,
    analyze_chain,
    refine_chain,
    title_chain,
)
from academic_gateway.llm.factory import create_providers
from academic_gateway.llm.keys import KeyPool
from academic_gateway.llm.providers import GeminiProvider, LLMProvider
from academic_gateway.llm.retry import RetryPolicy, Sleep, with_backoff
from academic_gateway.llm.schemas import Attachment, ChatMessage, LLMRequest, Provider
from academic_gateway.llm.streaming import ChatMode, ChatStreamer, ChatTurn
from academic_gateway.prompts import (
    ANALYZE_PROMPT,
    DEFAULT_TITLE,
    build_diagram_prompt,
    build_refine_prompt,
    build_title_prompt,
)

logger = structlog.get_logger()

FAILED_ANSWER_PLACEHOLDER = "<b>Generation failed for this question.</b>"


class InferenceGateway:
    """Session-scoped facade over key pools, retry, fallback and streaming."""

    def __init__(
        self,
        settings: Settings | None = None,
        *,
        providers: dict[str, LLMProvider] | None = None,
        key_pool: KeyPool | None = None,
        rng: random.Random | None = None,
        sleep: Sleep | None = None,
        event_callback: EventCallback | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self.key_pool = key_pool or KeyPool(self._settings, rng=rng)
        self._providers = (
            providers if providers is not None else create_providers(self._settings)
        )
        self._sleep = sleep or asyncio.sleep
        retry = RetryPolicy(
            self.key_pool,
            quota_delay=self._settings.quota_retry_delay,
            sleep=self._sleep,
        )
        self._chain = FallbackChain(
            self._providers, retry, self.key_pool, event_callback=event_callback
        )
        self._chat = ChatStreamer(self._providers, self.key_pool)

    # -- user settings --------------------------------------------------

    def set_key_override(self, provider: str, raw_keys: str) -> None:
        """Use ``raw_keys`` (comma/newline separated) instead of env keys."""
        self.key_pool.set_override(provider, raw_keys)

    def clear_key_override(self, provider: str) -> None:
        self.key_pool.clear_override(provider)

    # -- tasks ----------------------------------------------------------

    async def analyze(
        self,
        files: Sequence[Attachment | str],
        model_hint: str = DEFAULT_ANALYZE_MODEL,
        *,
        prompt: str = ANALYZE_PROMPT,
    ) -> ExamAnalysis:
        """Extract the question structure from exam page images.

        Args:
            files: Attachments, data URIs, or raw base64 PNG strings.
            model_hint: Gemini model for the first layer.
        """
        request = LLMRequest(
            prompt=prompt,
            attachments=tuple(
                f if isinstance(f, Attachment) else Attachment.from_data_uri(f)
                for f in files
            ),
        )

        async def call_fn(
            provider: LLMProvider, req: LLMRequest, api_key: str
        ) -> ExamAnalysis:
            parsed, _ = await provider.complete_json(req, api_key, ExamAnalysis)
            return parsed

        result = await self._chain.run(
            TaskKind.ANALYZE, analyze_chain(model_hint), request, call_fn
        )
        return result.value

    async def refine(
        self,
        question: ExamQuestion,
        model_id: str,
        provider: str = Provider.GEMINI,
    ) -> str:
        """Write a model answer for one question."""
        request = LLMRequest(prompt=build_refine_prompt(question))

        async def call_fn(p: LLMProvider, req: LLMRequest, api_key: str) -> str:
            response = await p.complete(req, api_key)
            return response.content or question.suggested_answer

        result = await self._chain.run(
            TaskKind.REFINE, refine_chain(model_id, provider), request, call_fn
        )
        return result.value

    async def refine_many(
        self,
        questions: Sequence[ExamQuestion],
        model_id: str,
        provider: str = Provider.GEMINI,
        *,
        width: int | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> BatchReport[RefinedAnswer]:
        """Refine questions in waves; failures become placeholder answers."""

        async def worker(question: ExamQuestion) -> RefinedAnswer:
            text = await self.refine(question, model_id, provider)
            return RefinedAnswer(
                label=question.label,
                text=question.text,
                marks=question.marks,
                refined_answer=text,
            )

        def on_error(question: ExamQuestion, exc: Exception) -> RefinedAnswer:
            return RefinedAnswer(
                label=question.label,
                text=question.text,
                marks=question.marks,
                refined_answer=FAILED_ANSWER_PLACEHOLDER,
                failed=True,
            )

        return await run_in_waves(
            questions,
            worker,
            on_error,
            width=width or self._settings.batch_width,
            on_progress=on_progress,
        )

    async def generate_image(self, description: str, aspect_ratio: str = "4:3") -> str:
        """Render a technical diagram; returns a base64 PNG data URI.

        Single random Gemini key per attempt, exponential backoff on
        quota errors only.
        """
        provider = self._providers.get(Provider.GEMINI)
        if not isinstance(provider, GeminiProvider):
            raise ConfigurationError(Provider.GEMINI, "Gemini backend is not configured")

        request = LLMRequest(
            prompt=build_diagram_prompt(description),
            model=DIAGRAM_MODEL,
            task=TaskKind.DIAGRAM,
        )

        async def attempt() -> str:
            api_key = self.key_pool.pick_random(Provider.GEMINI)
            if api_key is None:
                raise ConfigurationError(
                    Provider.GEMINI,
                    "Missing Gemini API key. Add it in Settings or via env.",
                )
            return await provider.generate_image(request, api_key, aspect_ratio)

        return await with_backoff(
            attempt,
            max_attempts=self._settings.backoff_attempts,
            initial_delay=self._settings.backoff_initial_delay,
            sleep=self._sleep,
        )

    def stream_chat(
        self,
        turns: Sequence[ChatMessage | Mapping[str, str]],
        mode: ChatMode | str,
        turn: ChatTurn | None = None,
    ) -> AsyncIterator[str]:
        """Stream incremental deltas for the next assistant turn.

        Pass a ChatTurn to observe state and the accumulated text.
        """
        return self._chat.stream(_as_messages(turns), ChatMode(mode), turn)

    async def generate_title(
        self, turns: Sequence[ChatMessage | Mapping[str, str]]
    ) -> str:
        """Short chat title; "New Chat" when history is empty or all links fail."""
        messages = _as_messages(turns)
        if not messages:
            return DEFAULT_TITLE

        first = next((m.content for m in messages if m.role == "user"), "Chat")
        request = LLMRequest(prompt=build_title_prompt(first))

        async def call_fn(p: LLMProvider, req: LLMRequest, api_key: str) -> str:
            response = await p.complete(req, api_key)
            return response.content.strip() or DEFAULT_TITLE

        try:
            result = await self._chain.run(
                TaskKind.TITLE, title_chain(), request, call_fn
            )
        except GatewayError as exc:
            logger.warning("title_generation_failed", error=str(exc))
            return DEFAULT_TITLE
        return result.value

    async def aclose(self) -> None:
        """Release SDK clients held by the adapters."""
        for provider in self._providers.values():
            await provider.aclose()


def _as_messages(
    turns: Sequence[ChatMessage | Mapping[str, str]],
) -> list[ChatMessage]:
    return [
        t if isinstance(t, ChatMessage) else ChatMessage.model_validate(t)
        for t in turns
    ]
