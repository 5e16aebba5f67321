"""Collaborator contracts the audit session depends on."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class ToolInvocationResult:
    """
    Outcome of any collaborator call.

    success=False means output is log-only and must not be read as findings.
    """
    success: bool
    output: Optional[Any] = None
    error: Optional[str] = None

    @classmethod
    def failure(cls, error: str, output: Optional[Any] = None) -> "ToolInvocationResult":
        return cls(success=False, output=output, error=error)

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success}
        if self.output is not None:
            payload["output"] = self.output
        if self.error is not None:
            payload["error"] = self.error
        return payload


@dataclass(frozen=True)
class SourceFile:
    path: str
    content: str


@dataclass
class FetchResult:
    """source fetch outcome: a file set plus the designated main file, or an error"""
    success: bool
    files: List[SourceFile] = field(default_factory=list)
    main_file_name: Optional[str] = None
    error: Optional[str] = None

    def to_engine_payload(self) -> Dict[str, Any]:
        """what the reasoning engine sees; full file bodies included"""
        if not self.success:
            return {"success": False, "error": self.error}
        return {
            "success": True,
            "mainFileName": self.main_file_name,
            "files": [{"path": f.path, "content": f.content} for f in self.files],
        }


class SourceFetcher(ABC):
    """given a 0.0.N contract id, return its verified source"""

    @abstractmethod
    def fetch(self, contract_id: str) -> FetchResult:
        pass


class StaticToolRunner(ABC):
    """run a static analysis tool over a file set in an isolated workspace"""

    @abstractmethod
    def run(self, tool_name: str, files: List[SourceFile], main_file_path: str) -> ToolInvocationResult:
        pass


class DynamicTestRunner(ABC):
    """compile and run a foundry test against a file set"""

    TEST_SUFFIX = ".t.sol"

    @abstractmethod
    def run(
        self,
        test_contract_code: str,
        test_contract_file_name: str,
        original_contract_file_name: str,
        files: List[SourceFile],
    ) -> ToolInvocationResult:
        pass
