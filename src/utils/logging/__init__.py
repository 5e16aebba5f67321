"""logging package: stdlib setup plus dual-layer (json + sqlite) session logs"""

from .types import LogCategory
from .core import SessionLogger, setup_logging, LOG_FORMAT

__all__ = [
    "LogCategory",
    "SessionLogger",
    "setup_logging",
    "LOG_FORMAT",
]
