"""
Prompt Templates Module

Exports:
    From audit_prompts:
        - AUDIT_SYSTEM_PROMPT: system prompt template for the audit session
        - TOOL_DECLARATIONS: tool schemas offered to the reasoning engine
        - build_system_prompt: prompt with the turn budget filled in
        - build_initial_prompt: first user turn from the requester's query
"""

from .audit_prompts import (
    AUDIT_SYSTEM_PROMPT,
    TOOL_DECLARATIONS,
    build_system_prompt,
    build_initial_prompt,
)

__all__ = [
    "AUDIT_SYSTEM_PROMPT",
    "TOOL_DECLARATIONS",
    "build_system_prompt",
    "build_initial_prompt",
]
