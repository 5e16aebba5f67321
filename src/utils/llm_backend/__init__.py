"""llm backend package: one interface for the reasoning engine, OpenRouter behind it"""

from .base import LLMResponse, LLMBackend, NORMAL_STOP_REASONS
from .openrouter import OpenRouterBackend
from .factory import create_backend


__all__ = [
    "LLMResponse",
    "LLMBackend",
    "NORMAL_STOP_REASONS",
    "OpenRouterBackend",
    "create_backend",
]
