from coachbot.services.llm.base import LLMProvider, LLMResponse, TranscriptionProvider
from coachbot.services.llm.openrouter_provider import OpenAITranscriptionProvider, OpenRouterProvider

__all__ = [
    "LLMProvider",
    "LLMResponse",
    "TranscriptionProvider",
    "OpenRouterProvider",
    "OpenAITranscriptionProvider",
]
