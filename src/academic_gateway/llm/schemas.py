"""Shared schemas for the inference gateway."""

import re
from datetime import datetime
from enum import StrEnum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from academic_gateway.errors import ErrorKind

_DATA_URI_RE = re.compile(r"^data:(?P<mime>[^;,]+);base64,(?P<data>.*)$", re.DOTALL)


class Provider(StrEnum):
    """Supported backends."""

    GEMINI = "gemini"
    GROQ = "groq"
    OPENROUTER = "openrouter"


class Attachment(BaseModel):
    """Inline binary payload (page scan, photo) sent with a prompt."""

    model_config = ConfigDict(frozen=True)

    mime_type: str
    data: str  # base64 without the data-URI prefix

    @classmethod
    def from_data_uri(cls, value: str, mime_type: str = "image/png") -> "Attachment":
        """Build from a ``data:<mime>;base64,<data>`` URI or raw base64."""
        match = _DATA_URI_RE.match(value)
        if match:
            return cls(mime_type=match.group("mime"), data=match.group("data"))
        return cls(mime_type=mime_type, data=value)

    @property
    def clean_data(self) -> str:
        """Base64 payload with whitespace stripped."""
        return re.sub(r"\s", "", self.data)

    def to_data_uri(self) -> str:
        return f"data:{self.mime_type};base64,{self.clean_data}"


class ChatMessage(BaseModel):
    """One turn of a chat history."""

    model_config = ConfigDict(frozen=True)

    role: Literal["user", "assistant", "system"]
    content: str


class LLMRequest(BaseModel):
    """Task invocation: everything a backend needs for one call.

    Immutable; the fallback chain derives per-link copies via
    ``model_copy(update=...)``.
    """

    model_config = ConfigDict(frozen=True)

    prompt: str = ""
    system_prompt: str | None = None
    messages: tuple[ChatMessage, ...] = ()  # chat history; overrides prompt
    attachments: tuple[Attachment, ...] = ()
    model: str = ""  # set per link by the fallback chain
    temperature: float | None = None
    max_tokens: int | None = None
    json_mode: bool = False
    thinking_level: str | None = None  # Gemini only, e.g. "HIGH"
    search_tools: bool = False  # Gemini only
    task: str = ""  # analyze, refine, title, chat, diagram


class LLMResponse(BaseModel):
    """Unified response from any backend."""

    content: str
    provider: str  # gemini, groq, openrouter
    model_id: str
    tokens_in: int | None = None
    tokens_out: int | None = None
    latency_ms: int = 0
    task: str = ""
    finished_at: datetime = Field(default_factory=datetime.now)


class AttemptOutcome(BaseModel):
    """Result of one fallback layer or one key attempt.

    ``error_kind`` is None for a successful attempt.
    """

    provider: str
    model_id: str = ""
    key: str = ""  # masked credential, empty at chain level
    error_kind: ErrorKind | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.error_kind is None
