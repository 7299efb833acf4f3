"""Fallback chains per task kind.

Each chain is an ordered list of Links. The order is product policy
fixed here, not user configuration:

- analyze: newest Gemini, older Gemini, Groq vision x2, OpenRouter vision
- refine: OpenRouter first, then Gemini (the secondary vendor is
  preferred for answer quality in this deployment)
- title: small fast models, one random key per link
"""

from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from academic_gateway.llm.schemas import LLMRequest, Provider
from academic_gateway.prompts import REFINE_SYSTEM_PROMPT, TITLE_SYSTEM_PROMPT


class TaskKind(StrEnum):
    ANALYZE = "analyze"
    REFINE = "refine"
    TITLE = "title"
    CHAT = "chat"
    DIAGRAM = "diagram"


class Link(BaseModel):
    """One layer of a fallback chain: (provider, model, overrides).

    ``overrides`` are LLMRequest fields applied on top of the caller's
    request. ``single_key`` links use one randomly picked key instead of
    rotating through the whole pool.
    """

    model_config = ConfigDict(frozen=True)

    provider: str
    model_id: str
    overrides: dict[str, Any] = Field(default_factory=dict)
    label: str = ""
    max_retries_per_key: int = 1
    single_key: bool = False

    @property
    def name(self) -> str:
        return self.label or f"{self.provider}:{self.model_id}"

    def apply(self, request: LLMRequest) -> LLMRequest:
        return request.model_copy(update={**self.overrides, "model": self.model_id})


DEFAULT_ANALYZE_MODEL = "gemini-3-flash-preview"
GEMINI_FALLBACK_MODEL = "gemini-2.0-flash-exp"
OPENROUTER_REFINE_MODEL = "google/gemini-2.0-flash-001"
DIAGRAM_MODEL = "gemini-2.5-flash-image"


def analyze_chain(model_hint: str = DEFAULT_ANALYZE_MODEL) -> list[Link]:
    """Document analysis: JSON output from vision-capable models."""
    primary: dict[str, Any] = {"json_mode": True}
    if "gemini-3" in model_hint:
        primary.update(thinking_level="HIGH", search_tools=True)

    groq_opts = {"json_mode": True, "temperature": 0.2, "max_tokens": 4096}
    return [
        Link(
            provider=Provider.GEMINI,
            model_id=model_hint,
            overrides=primary,
            label="gemini-primary",
        ),
        Link(
            provider=Provider.GEMINI,
            model_id=GEMINI_FALLBACK_MODEL,
            overrides={"json_mode": True},
            label="gemini-fallback",
        ),
        Link(
            provider=Provider.GROQ,
            model_id="meta-llama/llama-4-maverick-17b-128e-instruct",
            overrides=groq_opts,
            label="groq-vision",
        ),
        Link(
            provider=Provider.GROQ,
            model_id="llama-3.2-90b-vision-preview",
            overrides=groq_opts,
            label="groq-vision-fallback",
        ),
        Link(
            provider=Provider.OPENROUTER,
            model_id="google/gemini-flash-1.5",
            overrides={"json_mode": True},
            label="openrouter-vision",
        ),
    ]


def refine_chain(model_id: str, provider: str) -> list[Link]:
    """Answer refinement: OpenRouter before Gemini.

    The caller's model is used on its own vendor; the other vendor
    gets its default model.
    """
    return [
        Link(
            provider=Provider.OPENROUTER,
            model_id=model_id if provider == Provider.OPENROUTER else OPENROUTER_REFINE_MODEL,
            overrides={"system_prompt": REFINE_SYSTEM_PROMPT, "temperature": 0.6},
            label="openrouter-refine",
        ),
        Link(
            provider=Provider.GEMINI,
            model_id=model_id if provider == Provider.GEMINI else GEMINI_FALLBACK_MODEL,
            label="gemini-refine",
        ),
    ]


def title_chain() -> list[Link]:
    opts = {"system_prompt": TITLE_SYSTEM_PROMPT, "temperature": 0.5, "max_tokens": 20}
    return [
        Link(
            provider=Provider.GROQ,
            model_id="llama-3.1-8b-instant",
            overrides=opts,
            single_key=True,
        ),
        Link(
            provider=Provider.OPENROUTER,
            model_id="meta-llama/llama-3.1-8b-instruct",
            overrides=opts,
            single_key=True,
        ),
        Link(
            provider=Provider.GEMINI,
            model_id=GEMINI_FALLBACK_MODEL,
            overrides={"system_prompt": TITLE_SYSTEM_PROMPT},
            single_key=True,
        ),
    ]
