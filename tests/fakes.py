"""shared fakes for the reasoning engine and the audit collaborators"""

import copy
import itertools
from typing import Any, Dict, List, Optional

from interfaces import (
    DynamicTestRunner,
    FetchResult,
    SourceFetcher,
    SourceFile,
    StaticToolRunner,
    ToolInvocationResult,
)
from utils.llm_backend.base import LLMBackend, LLMResponse

VAULT_SOURCE = """// SPDX-License-Identifier: MIT
pragma solidity ^0.8.20;

import "./interfaces/IVault.sol";

contract Vault is IVault {
    mapping(address => uint256) public balances;

    function withdraw(uint256 amount) external {
        (bool ok, ) = msg.sender.call{value: amount}("");
        require(ok);
        balances[msg.sender] -= amount;
    }
}
"""

IVAULT_SOURCE = """// SPDX-License-Identifier: MIT
pragma solidity ^0.8.20;

interface IVault {
    function withdraw(uint256 amount) external;
}
"""

SAMPLE_FILES = [
    SourceFile("/sources/project_/contracts/interfaces/IVault.sol", IVAULT_SOURCE),
    SourceFile("/sources/project_/contracts/Vault.sol", VAULT_SOURCE),
]

VALID_REPORT = {
    "score": 62,
    "summary": "Reentrancy in withdraw.",
    "findings": [{
        "title": "Reentrancy in withdraw",
        "severity": "high",
        "description": "State is updated after the external call.",
        "recommendation": "Apply checks-effects-interactions.",
        "confirmation": "VaultTest.t.sol",
    }],
    "tools_used": ["slither", "forge test", "slither"],
}

_call_ids = itertools.count(1)


def tool_call(name: str, **arguments: Any) -> Dict[str, Any]:
    return {"id": f"call_{next(_call_ids)}", "name": name, "input": arguments}


def engine_turn(*calls: Dict[str, Any], text: str = "", stop_reason: Optional[str] = None) -> LLMResponse:
    if stop_reason is None:
        stop_reason = "tool_calls" if calls else "stop"
    return LLMResponse(
        text=text,
        model="fake-model",
        cost=0.01,
        prompt_tokens=100,
        output_tokens=20,
        metadata={"stop_reason": stop_reason},
        tool_calls=list(calls),
    )


class ScriptedBackend(LLMBackend):
    """returns queued responses in order; queued exceptions are raised"""

    def __init__(self, turns: List[Any], model: str = "fake-model"):
        super().__init__(model)
        self.turns = list(turns)
        self.requests: List[Dict[str, Any]] = []

    def generate_with_tools_multi_turn(self, messages, tools, max_tokens=None, temperature=None,
                                       system_prompt=None, **kwargs):
        self.requests.append({
            "messages": copy.deepcopy(messages),
            "tools": tools,
            "system_prompt": system_prompt,
        })
        if not self.turns:
            raise AssertionError("ScriptedBackend ran out of turns")
        turn = self.turns.pop(0)
        if isinstance(turn, BaseException):
            raise turn
        return turn

    def is_available(self) -> bool:
        return True


class LoopingBackend(ScriptedBackend):
    """answers every turn with the same tool call"""

    def __init__(self, name: str, arguments: Dict[str, Any]):
        super().__init__([])
        self.name = name
        self.arguments = arguments

    def generate_with_tools_multi_turn(self, messages, tools, max_tokens=None, temperature=None,
                                       system_prompt=None, **kwargs):
        self.requests.append({"messages": copy.deepcopy(messages)})
        return engine_turn(tool_call(self.name, **self.arguments))


class FakeFetcher(SourceFetcher):
    def __init__(self, result: Optional[FetchResult] = None, error: Optional[BaseException] = None):
        self.result = result or FetchResult(
            success=True,
            files=list(SAMPLE_FILES),
            main_file_name=SAMPLE_FILES[1].path,
        )
        self.error = error
        self.calls: List[str] = []

    def fetch(self, contract_id: str) -> FetchResult:
        self.calls.append(contract_id)
        if self.error:
            raise self.error
        return self.result


class FakeStaticRunner(StaticToolRunner):
    def __init__(self, result: Optional[ToolInvocationResult] = None, error: Optional[BaseException] = None):
        self.result = result or ToolInvocationResult(success=True, output={"success": True, "results": {}})
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def run(self, tool_name, files, main_file_path):
        self.calls.append({"tool_name": tool_name, "files": files, "main_file_path": main_file_path})
        if self.error:
            raise self.error
        return self.result


class FakeDynamicRunner(DynamicTestRunner):
    def __init__(self, result: Optional[ToolInvocationResult] = None, error: Optional[BaseException] = None):
        self.result = result or ToolInvocationResult(success=True, output="[PASS] testWithdraw()")
        self.error = error
        self.calls: List[Dict[str, Any]] = []

    def run(self, test_contract_code, test_contract_file_name, original_contract_file_name, files):
        self.calls.append({
            "test_contract_code": test_contract_code,
            "test_contract_file_name": test_contract_file_name,
            "original_contract_file_name": original_contract_file_name,
            "files": files,
        })
        if self.error:
            raise self.error
        return self.result
