"""logging types: categories for raw json files"""

from enum import Enum


class LogCategory(Enum):
    """one raw-json subdirectory per category"""
    ENGINE = "engine_calls"
    TOOL = "tool_calls"
    SESSION = "sessions"
    DELIVERY = "deliveries"
    ERROR = "errors"
