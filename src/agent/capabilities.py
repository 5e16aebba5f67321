"""
Capabilities the reasoning engine can invoke.

Engine tool calls name an action as free text. They are resolved here into a
closed set of variants; the orchestrator dispatches over exactly these types.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from utils.json_sanitizer import coerce_json_object

logger = logging.getLogger(__name__)

GET_SOURCE_CODE = "get_source_code"
RUN_AUDIT_TOOL = "run_audit_tool"
EXECUTE_SOLIDITY_TEST = "execute_solidity_test"
FINALIZE_AUDIT_REPORT = "finalize_audit_report"

CAPABILITY_NAMES = (GET_SOURCE_CODE, RUN_AUDIT_TOOL, EXECUTE_SOLIDITY_TEST, FINALIZE_AUDIT_REPORT)


@dataclass(frozen=True)
class FetchSource:
    call_id: str
    contract_id: Any
    name: str = GET_SOURCE_CODE


@dataclass(frozen=True)
class RunStaticTool:
    call_id: str
    tool_name: Optional[str]
    file_name: Optional[str] = None
    name: str = RUN_AUDIT_TOOL


@dataclass(frozen=True)
class RunDynamicTest:
    call_id: str
    test_contract_code: Optional[str]
    test_contract_file_name: Optional[str]
    original_contract_file_name: Optional[str] = None
    name: str = EXECUTE_SOLIDITY_TEST


@dataclass(frozen=True)
class Finalize:
    call_id: str
    report: Any
    name: str = FINALIZE_AUDIT_REPORT


@dataclass(frozen=True)
class UnknownCapability:
    call_id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)


Capability = Union[FetchSource, RunStaticTool, RunDynamicTest, Finalize, UnknownCapability]


def _arguments(raw: Any) -> Dict[str, Any]:
    if raw is None:
        return {}
    parsed = coerce_json_object(raw)
    if parsed is None:
        logger.warning(f"Tool call arguments are not a JSON object: {str(raw)[:200]}")
        return {}
    return parsed


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    return value if isinstance(value, str) else str(value)


def parse_capability(tool_call: Dict[str, Any]) -> Capability:
    """map one {"id", "name", "input"} tool call to its variant"""
    call_id = str(tool_call.get("id") or "")
    name = str(tool_call.get("name") or "")
    args = _arguments(tool_call.get("input"))

    if name == GET_SOURCE_CODE:
        return FetchSource(call_id=call_id, contract_id=args.get("contract_id"))
    if name == RUN_AUDIT_TOOL:
        return RunStaticTool(
            call_id=call_id,
            tool_name=_optional_str(args.get("tool_name")),
            file_name=_optional_str(args.get("file_name")),
        )
    if name == EXECUTE_SOLIDITY_TEST:
        return RunDynamicTest(
            call_id=call_id,
            test_contract_code=_optional_str(args.get("test_contract_code")),
            test_contract_file_name=_optional_str(args.get("test_contract_file_name")),
            original_contract_file_name=_optional_str(args.get("original_contract_file_name")),
        )
    if name == FINALIZE_AUDIT_REPORT:
        report = args.get("report")
        if isinstance(report, str):
            report = coerce_json_object(report) or report
        return Finalize(call_id=call_id, report=report)
    return UnknownCapability(call_id=call_id, name=name, arguments=args)


def describe(capability: Capability) -> str:
    """log-safe summary; never includes source or test bodies"""
    if isinstance(capability, FetchSource):
        return f"{capability.name}(contract_id={json.dumps(capability.contract_id)})"
    if isinstance(capability, RunStaticTool):
        return f"{capability.name}(tool_name={capability.tool_name!r}, file_name={capability.file_name!r})"
    if isinstance(capability, RunDynamicTest):
        return (f"{capability.name}(test={capability.test_contract_file_name!r}, "
                f"original={capability.original_contract_file_name!r})")
    if isinstance(capability, Finalize):
        return f"{capability.name}(report=...)"
    return f"{capability.name}(...)"
