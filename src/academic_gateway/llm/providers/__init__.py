"""Backend adapter implementations.

PROVIDER_REGISTRY maps provider ids (as used in fallback links and
key pools) to their adapter classes. To add a backend:

1. Create a new module in this package
2. Implement an LLMProvider subclass (complete + classify)
3. Add entries to PROVIDER_REGISTRY below and to
   ``academic_gateway.llm.factory.PROVIDER_CONFIGS``
"""

from academic_gateway.llm.providers.base import ChatStream, LLMProvider
from academic_gateway.llm.providers.gemini import GeminiProvider
from academic_gateway.llm.providers.openai_compat import OpenAICompatProvider

PROVIDER_REGISTRY: dict[str, type[LLMProvider]] = {
    "gemini": GeminiProvider,
    "groq": OpenAICompatProvider,
    "openrouter": OpenAICompatProvider,
}

__all__ = [
    "PROVIDER_REGISTRY",
    "ChatStream",
    "GeminiProvider",
    "LLMProvider",
    "OpenAICompatProvider",
]
