"""utilities for the hcs audit agent"""
from .logging import SessionLogger, LogCategory, setup_logging
from .llm_backend import LLMBackend, create_backend, LLMResponse
from .retry import RetryPolicy, RetryExhausted

__all__ = [
    "SessionLogger",
    "LogCategory",
    "setup_logging",
    "LLMBackend",
    "create_backend",
    "LLMResponse",
    "RetryPolicy",
    "RetryExhausted",
]
