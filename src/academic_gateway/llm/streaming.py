"""Streaming chat: mode routing, key rotation at open, delta relay.

A chat turn moves through::

    IDLE -> SENDING -> STREAMING -> COMPLETED
                  \\            \\-> FAILED
                   \\-> SENDING (AuthError at open: rotate key, resend)
                    \\-> FAILED

Deltas are incremental ("Hel", "lo"); the cumulative text lives on
ChatTurn.text. Nothing is buffered beyond that: each delta is handed
to the consumer as soon as it arrives, and the producer only reads the
next chunk when the consumer asks for it.
"""

from collections.abc import AsyncIterator, Sequence
from dataclasses import dataclass, field
from enum import StrEnum

import structlog

from academic_gateway.errors import AuthError, ConfigurationError
from academic_gateway.llm.chains import TaskKind
from academic_gateway.llm.keys import KeyPool, mask_key
from academic_gateway.llm.providers.base import ChatStream, LLMProvider
from academic_gateway.llm.schemas import ChatMessage, LLMRequest, Provider

logger = structlog.get_logger()


class ChatMode(StrEnum):
    PRO = "pro"
    FLASH = "flash"
    UNCENSORED = "uncensored"


MODE_MODELS: dict[ChatMode, str] = {
    ChatMode.PRO: "openai/gpt-oss-120b",
    ChatMode.FLASH: "moonshotai/kimi-k2-instruct",
    ChatMode.UNCENSORED: "cognitivecomputations/dolphin-mistral-24b-venice-edition:free",
}

# Modes served natively by Groq; they fall back to OpenRouter without a Groq key.
GROQ_MODES: frozenset[ChatMode] = frozenset({ChatMode.PRO, ChatMode.FLASH})

# Groq-native model ids that OpenRouter publishes under another name.
OPENROUTER_SUBSTITUTES: dict[str, str] = {
    "llama3-70b-8192": "meta-llama/llama-3.1-70b-instruct",
    "llama3-8b-8192": "meta-llama/llama-3.1-8b-instruct",
}

CHAT_MAX_TOKENS = 4096


class ChatTurnState(StrEnum):
    IDLE = "idle"
    SENDING = "sending"
    STREAMING = "streaming"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class ChatTurn:
    """Observable state of one chat turn.

    On failure ``text`` keeps whatever was streamed before the error;
    the caller decides whether to keep or discard it.
    """

    state: ChatTurnState = ChatTurnState.IDLE
    deltas: list[str] = field(default_factory=list)
    attempts: int = 0
    provider: str | None = None
    model_id: str | None = None
    error: Exception | None = None

    @property
    def text(self) -> str:
        return "".join(self.deltas)


class ChatStreamer:
    """Relays a backend token stream for one client session.

    Uses the session KeyPool's round-robin cursor: an AuthError while
    opening the stream rotates to the next key and resends the turn,
    at most once per key. Rotation never happens after the first
    delta, because partial output cannot be retracted.
    """

    def __init__(self, providers: dict[str, LLMProvider], key_pool: KeyPool) -> None:
        self._providers = providers
        self._key_pool = key_pool

    def route(self, mode: ChatMode) -> tuple[str, str]:
        """Pick (provider, model) for a chat mode.

        Raises:
            ConfigurationError: if neither eligible provider has keys.
        """
        model = MODE_MODELS[mode]
        if mode in GROQ_MODES and self._key_pool.has_keys(Provider.GROQ):
            return Provider.GROQ, model

        if not self._key_pool.has_keys(Provider.OPENROUTER):
            if mode in GROQ_MODES:
                raise ConfigurationError(
                    Provider.OPENROUTER,
                    f"Mode '{mode}' requires Groq API Key or OpenRouter fallback. "
                    "Please check your Settings.",
                )
            raise ConfigurationError(
                Provider.OPENROUTER,
                f"Mode '{mode}' requires OpenRouter API Key. Please check your Settings.",
            )
        return Provider.OPENROUTER, OPENROUTER_SUBSTITUTES.get(model, model)

    async def stream(
        self,
        messages: Sequence[ChatMessage],
        mode: ChatMode,
        turn: ChatTurn | None = None,
    ) -> AsyncIterator[str]:
        """Yield incremental text deltas for one chat turn.

        The full history is sent on every call. Errors propagate after
        ``turn`` is marked FAILED; the provider stream is closed on
        every exit path, including the consumer stopping early.
        """
        turn = turn if turn is not None else ChatTurn()
        # each call resends the full history, so a reused turn starts empty
        turn.state = ChatTurnState.IDLE
        turn.deltas.clear()
        turn.attempts = 0
        turn.error = None

        provider_name, model = self.route(mode)
        adapter = self._providers.get(provider_name)
        if adapter is None:
            raise ConfigurationError(
                provider_name, f"Provider '{provider_name}' is not configured"
            )
        if not adapter.supports_streaming:
            raise ConfigurationError(
                provider_name, f"Provider '{provider_name}' does not support streaming"
            )

        turn.provider, turn.model_id = provider_name, model
        request = LLMRequest(
            messages=tuple(messages),
            model=model,
            temperature=0.7 if mode == ChatMode.PRO else 0.6,
            max_tokens=CHAT_MAX_TOKENS,
            task=TaskKind.CHAT,
        )

        stream = await self._open(adapter, provider_name, request, turn)
        turn.state = ChatTurnState.STREAMING
        try:
            async with stream:
                async for delta in stream:
                    turn.deltas.append(delta)
                    yield delta
            turn.state = ChatTurnState.COMPLETED
        except Exception as exc:
            self._fail(turn, exc)
            raise
        finally:
            if turn.state == ChatTurnState.STREAMING:
                # consumer stopped reading (GeneratorExit)
                turn.state = ChatTurnState.FAILED
                logger.info("chat_stream_abandoned", chars=len(turn.text))

        logger.info(
            "chat_stream_completed",
            provider=provider_name,
            model=model,
            attempts=turn.attempts,
            chars=len(turn.text),
        )

    async def _open(
        self,
        adapter: LLMProvider,
        provider_name: str,
        request: LLMRequest,
        turn: ChatTurn,
    ) -> ChatStream:
        keys_total = len(self._key_pool.require_keys(provider_name))
        last_error: AuthError | None = None

        for _ in range(keys_total):
            api_key = self._key_pool.current(provider_name)
            turn.state = ChatTurnState.SENDING
            turn.attempts += 1
            try:
                return await adapter.open_stream(request, api_key)
            except AuthError as exc:
                last_error = exc
                logger.warning(
                    "chat_stream_auth_failed",
                    provider=provider_name,
                    key=mask_key(api_key),
                    attempt=turn.attempts,
                    keys_total=keys_total,
                )
                self._key_pool.rotate(provider_name, from_key=api_key)
            except Exception as exc:
                self._fail(turn, exc)
                raise

        assert last_error is not None
        self._fail(turn, last_error)
        raise last_error

    @staticmethod
    def _fail(turn: ChatTurn, exc: Exception) -> None:
        turn.state = ChatTurnState.FAILED
        turn.error = exc
        logger.warning(
            "chat_stream_failed",
            provider=turn.provider,
            model=turn.model_id,
            partial_chars=len(turn.text),
            error=str(exc),
        )
