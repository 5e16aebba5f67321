"""llm backend factory"""

import logging
from typing import Optional

from config import config
from utils.llm_backend.base import LLMBackend
from utils.llm_backend.openrouter import OpenRouterBackend

logger = logging.getLogger(__name__)

SUPPORTED_BACKENDS = ("openrouter",)


def create_backend(
    backend_type: Optional[str] = None,
    model: Optional[str] = None,
    **kwargs
) -> LLMBackend:
    """build the configured backend; unknown types raise ValueError"""
    backend_type = (backend_type or config.DEFAULT_BACKEND_TYPE).lower()
    model = model or config.DEFAULT_MODEL

    if model not in config.MODEL_REGISTRY:
        logger.warning(f"Model '{model}' not in registry; pricing falls back to defaults")

    if backend_type == "openrouter":
        return OpenRouterBackend(model=model, api_key=kwargs.pop("api_key", None), **kwargs)

    raise ValueError(f"Unknown backend type: {backend_type!r} (supported: {', '.join(SUPPORTED_BACKENDS)})")
