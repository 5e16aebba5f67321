"""llm backend base classes: the response type and the abstract backend"""

from abc import ABC, abstractmethod
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field

# finish reasons that mean the engine stopped normally
NORMAL_STOP_REASONS = frozenset({"stop", "tool_calls", "end_turn", "tool_use"})


@dataclass
class LLMResponse:
    """
    Unified response from any backend.

    tool_calls entries are {"id", "name", "input"}; metadata["stop_reason"]
    carries the provider's finish reason.
    """
    text: str
    thinking: Optional[str] = None
    reasoning_details: Optional[List[Dict[str, Any]]] = None
    prompt_tokens: int = 0
    output_tokens: int = 0
    thinking_tokens: int = 0
    cost: float = 0.0
    model: str = ""
    metadata: Dict[str, Any] = None
    tool_calls: List[Dict[str, Any]] = field(default_factory=list)

    def __post_init__(self):
        if self.metadata is None:
            self.metadata = {}

    @property
    def stop_reason(self) -> Optional[str]:
        return self.metadata.get("stop_reason")

    @property
    def stopped_abnormally(self) -> bool:
        reason = self.stop_reason
        return reason is not None and reason not in NORMAL_STOP_REASONS


class LLMBackend(ABC):
    """every backend the orchestrator can drive"""

    def __init__(self, model: str):
        self.model = model

    @abstractmethod
    def generate_with_tools_multi_turn(
        self,
        messages: List[Dict[str, Any]],
        tools: List[Dict[str, Any]],
        max_tokens: Optional[int] = None,
        temperature: Optional[float] = None,
        system_prompt: Optional[str] = None,
        **kwargs
    ) -> LLMResponse:
        """
        One turn of a tool-calling conversation.

        messages use content blocks: assistant turns carry {"type": "tool_use",
        "id", "name", "input"} blocks, user turns answer them with
        {"type": "tool_result", "tool_use_id", "name", "content"} blocks.
        """

    @abstractmethod
    def is_available(self) -> bool:
        """api key present and client constructed"""

    def close(self) -> None:
        """release network resources; the default holds none"""
