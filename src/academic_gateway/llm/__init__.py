"""LLM infrastructure: key pools, adapters, retry, fallback chains, streaming.

Quick start::

    from academic_gateway.config import get_settings
    from academic_gateway.llm import FallbackChain, KeyPool, RetryPolicy, create_providers

    settings = get_settings()
    pool = KeyPool(settings)
    chain = FallbackChain(create_providers(settings), RetryPolicy(pool), pool)
"""

from academic_gateway.llm.chain import ChainEvent, ChainResult, FallbackChain
from academic_gateway.llm.chains import Link, TaskKind
from academic_gateway.llm.factory import create_providers
from academic_gateway.llm.keys import KeyPool, parse_keys
from academic_gateway.llm.retry import RetryPolicy, with_backoff
from academic_gateway.llm.schemas import (
    Attachment,
    AttemptOutcome,
    ChatMessage,
    LLMRequest,
    LLMResponse,
    Provider,
)
from academic_gateway.llm.streaming import ChatMode, ChatStreamer, ChatTurn, ChatTurnState

__all__ = [
    "Attachment",
    "AttemptOutcome",
    "ChainEvent",
    "ChainResult",
    "ChatMessage",
    "ChatMode",
    "ChatStreamer",
    "ChatTurn",
    "ChatTurnState",
    "FallbackChain",
    "KeyPool",
    "LLMRequest",
    "LLMResponse",
    "Link",
    "Provider",
    "RetryPolicy",
    "TaskKind",
    "create_providers",
    "parse_keys",
    "with_backoff",
]
