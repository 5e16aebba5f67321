"""
Tool Session Orchestrator

Drives one audit session: a bounded multi-turn loop in which the reasoning
engine requests capabilities (fetch source, run a static tool, run a Foundry
test, finalize). Collaborator failures are fed back to the engine as data;
the session ends on finalize, on an engine-side failure, or at the turn cap,
and always ends with exactly one delivery attempt.
"""

from __future__ import annotations

import json
import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from config import config
from interfaces import (
    DynamicTestRunner,
    FetchResult,
    SourceFetcher,
    SourceFile,
    StaticToolRunner,
    ToolInvocationResult,
)
from models.findings import AuditReport, parse_report
from utils.llm_backend import LLMBackend, LLMResponse
from utils.logging import SessionLogger
from agent.capabilities import (
    Capability,
    Finalize,
    FetchSource,
    RunDynamicTest,
    RunStaticTool,
    UnknownCapability,
    describe,
    parse_capability,
)
from agent.delivery import ResultDelivery
from agent.errors import DeliveryError, SessionBoundExceeded, SessionError, UnrecoverableSessionError
from agent.prompts import TOOL_DECLARATIONS, build_initial_prompt, build_system_prompt
from sandbox.static_runner import find_source

logger = logging.getLogger(__name__)

CONTRACT_ID_FORMAT = re.compile(r"^0\.0\.\d+$")

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"


@dataclass(frozen=True)
class AuditRequest:
    """what the router hands over once a private channel exists"""
    query: str
    contract_id: str
    reply_channel_id: str
    requester_account_id: str
    connection_id: int


@dataclass
class SessionState:
    messages: List[Dict[str, Any]] = field(default_factory=list)
    files: Optional[List[SourceFile]] = None
    main_file_path: Optional[str] = None
    turn: int = 0
    terminal_report: Optional[AuditReport] = None
    total_cost: float = 0.0

    @property
    def has_source(self) -> bool:
        return bool(self.files) and bool(self.main_file_path)

    def store_fetch(self, result: FetchResult) -> None:
        if result.success:
            self.files = list(result.files)
            self.main_file_path = result.main_file_name
        else:
            self.files = None
            self.main_file_path = None


@dataclass
class SessionOutcome:
    status: str
    contract_id: str
    turns: int
    report: AuditReport
    failure_reason: Optional[str] = None
    reference: Optional[str] = None
    delivered: bool = False
    total_cost: float = 0.0

    @property
    def succeeded(self) -> bool:
        return self.status == STATUS_SUCCESS


class _Finished(Exception):
    """raised inside the loop when finalize ends the session"""

    def __init__(self, outcome: SessionOutcome):
        super().__init__(outcome.status)
        self.outcome = outcome


def _fetch_first(name: str) -> ToolInvocationResult:
    return ToolInvocationResult.failure(
        f"Cannot execute tool '{name}' because source file data has not been successfully fetched yet."
    )


class ToolSessionOrchestrator:
    """
    Bounded tool-calling loop over an injected LLMBackend.

    Collaborators are injected; nothing here reaches module-level clients.
    """

    def __init__(
        self,
        backend: LLMBackend,
        fetcher: SourceFetcher,
        static_runner: StaticToolRunner,
        dynamic_runner: DynamicTestRunner,
        delivery: ResultDelivery,
        session_logger: Optional[SessionLogger] = None,
        max_turns: Optional[int] = None,
        tools: Optional[List[Dict[str, Any]]] = None,
    ):
        self.backend = backend
        self.fetcher = fetcher
        self.static_runner = static_runner
        self.dynamic_runner = dynamic_runner
        self.delivery = delivery
        self.session_logger = session_logger
        self.max_turns = max_turns or config.MAX_AGENT_TURNS
        self.tools = tools if tools is not None else TOOL_DECLARATIONS
        self.system_prompt = build_system_prompt(self.max_turns)

    def run(self, request: AuditRequest) -> SessionOutcome:
        logger.info(f"Starting audit session for {request.contract_id} "
                    f"(query from {request.requester_account_id}: {request.query!r})")
        state = SessionState(messages=[{"role": "user", "content": build_initial_prompt(request.query)}])

        try:
            self._loop(request, state)
        except _Finished as finished:
            outcome = finished.outcome
        except SessionError as e:
            outcome = self._fail(request, state, e.reason)
        except Exception as e:
            logger.error(f"Unexpected error in audit session for {request.contract_id}: {e}", exc_info=True)
            outcome = self._fail(request, state, f"Unexpected error: {e}")
        else:
            outcome = self._fail(request, state, "No tool results were produced.")

        try:
            self._record_outcome(outcome)
        except Exception as e:
            logger.error(f"Failed to record session outcome: {e}", exc_info=True)
        return outcome

    def _loop(self, request: AuditRequest, state: SessionState) -> None:
        while state.turn < self.max_turns:
            state.turn += 1
            response = self._call_engine(request, state)

            calls = response.tool_calls or []
            if not calls:
                logger.info("Engine finished with no tool calls")
                if not state.has_source:
                    raise UnrecoverableSessionError("AI stopped before source code could be fetched.")
                raise UnrecoverableSessionError("AI stopped unexpectedly before generating final report.")

            state.messages.append(self._assistant_message(response))
            results = []
            for call in calls:
                capability = parse_capability(call)
                logger.info(f"[turn {state.turn}] Engine called {describe(capability)}")
                result = self._execute(request, state, capability)
                results.append(self._tool_result_block(capability, result))

            if not results:
                return
            state.messages.append({"role": "user", "content": results})

        logger.error(f"Audit for {request.contract_id} exceeded {self.max_turns} turns")
        raise SessionBoundExceeded(self.max_turns)

    def _call_engine(self, request: AuditRequest, state: SessionState) -> LLMResponse:
        started = time.time()
        try:
            response = self.backend.generate_with_tools_multi_turn(
                messages=state.messages,
                tools=self.tools,
                system_prompt=self.system_prompt,
            )
        except Exception as e:
            logger.error(f"Reasoning engine call failed on turn {state.turn}: {e}", exc_info=True)
            raise UnrecoverableSessionError(f"AI processing error: {e}") from e

        if response is None:
            raise UnrecoverableSessionError("AI response was empty.")

        state.total_cost += response.cost or 0.0
        if response.text:
            logger.info(f"[turn {state.turn}] Engine text: {response.text[:500]}")
        if self.session_logger:
            self.session_logger.log_engine_call(
                contract_id=request.contract_id,
                turn=state.turn,
                model=response.model or self.backend.model,
                stop_reason=response.stop_reason,
                tool_calls=len(response.tool_calls or []),
                prompt_tokens=response.prompt_tokens,
                output_tokens=response.output_tokens,
                thinking_tokens=response.thinking_tokens,
                cost=response.cost,
                duration_seconds=time.time() - started,
                response_text=response.text or "",
            )

        if response.stopped_abnormally:
            logger.error(f"Engine stopped unexpectedly: {response.stop_reason}")
            raise UnrecoverableSessionError(f"AI processing error: {response.stop_reason or 'Unknown'}")
        return response

    def _execute(self, request: AuditRequest, state: SessionState, capability: Capability) -> ToolInvocationResult:
        started = time.time()
        try:
            result = self._dispatch(request, state, capability)
        except _Finished:
            raise
        except Exception as e:
            logger.error(f"Error executing '{capability.name}': {e}", exc_info=True)
            result = ToolInvocationResult.failure(f"{self._error_prefix(capability)}: {e}")

        if not result.success:
            logger.warning(f"'{capability.name}' failed: {result.error}")
        if self.session_logger:
            self.session_logger.log_tool_call(
                contract_id=request.contract_id,
                turn=state.turn,
                tool_name=capability.name,
                arguments=self._loggable_arguments(capability),
                success=result.success,
                error=result.error,
                duration_seconds=time.time() - started,
                output_preview=str(result.output)[:500] if result.output is not None else None,
            )
        return result

    @staticmethod
    def _error_prefix(capability: Capability) -> str:
        if isinstance(capability, RunStaticTool):
            return "Internal Docker runner error"
        if isinstance(capability, RunDynamicTest):
            return "Internal Forge runner error"
        return "Host execution error"

    def _dispatch(self, request: AuditRequest, state: SessionState, capability: Capability) -> ToolInvocationResult:
        if isinstance(capability, FetchSource):
            return self._fetch_source(state, capability)
        if isinstance(capability, RunStaticTool):
            return self._run_static_tool(state, capability)
        if isinstance(capability, RunDynamicTest):
            return self._run_dynamic_test(state, capability)
        if isinstance(capability, Finalize):
            raise _Finished(self._finalize(request, state, capability))
        if isinstance(capability, UnknownCapability):
            logger.error(f"Engine called unknown function: {capability.name}")
            return ToolInvocationResult.failure(f"Function {capability.name} not found.")
        raise TypeError(f"Unhandled capability: {capability!r}")

    def _fetch_source(self, state: SessionState, capability: FetchSource) -> ToolInvocationResult:
        contract_id = capability.contract_id
        if not isinstance(contract_id, str) or not CONTRACT_ID_FORMAT.match(contract_id):
            state.store_fetch(FetchResult(success=False))
            return ToolInvocationResult.failure(f"Invalid contractId format: {json.dumps(contract_id)}")

        fetched = self.fetcher.fetch(contract_id)
        state.store_fetch(fetched)
        if not fetched.success:
            logger.warning(f"Source fetch failed for {contract_id}: {fetched.error}")
            return ToolInvocationResult.failure(fetched.error or f"Failed to fetch source for {contract_id}.")

        logger.info(f"Stored {len(fetched.files)} fetched file(s) for {contract_id}")
        return ToolInvocationResult(success=True, output=fetched.to_engine_payload())

    def _run_static_tool(self, state: SessionState, capability: RunStaticTool) -> ToolInvocationResult:
        if not state.has_source:
            return _fetch_first(capability.name)
        if not capability.tool_name:
            return ToolInvocationResult.failure(f"Missing toolName for {capability.name}")

        target = state.main_file_path
        if capability.file_name:
            chosen = find_source(state.files, capability.file_name)
            if chosen is not None:
                target = chosen.path
            else:
                logger.info(f"'{capability.file_name}' not among fetched files; using {target}")
        return self.static_runner.run(capability.tool_name, state.files, target)

    def _run_dynamic_test(self, state: SessionState, capability: RunDynamicTest) -> ToolInvocationResult:
        if not state.files:
            return _fetch_first(capability.name)
        if not capability.test_contract_code:
            return ToolInvocationResult.failure(f"Missing 'testContractCode' for {capability.name}")
        if not capability.test_contract_file_name:
            return ToolInvocationResult.failure(f"Missing 'testContractFileName' for {capability.name}")
        if not capability.test_contract_file_name.endswith(DynamicTestRunner.TEST_SUFFIX):
            return ToolInvocationResult.failure(f"Test filename must end with '{DynamicTestRunner.TEST_SUFFIX}'.")

        original_name = capability.original_contract_file_name or state.main_file_path
        original = find_source(state.files, original_name) if original_name else None
        if original is None and capability.original_contract_file_name and state.main_file_path:
            logger.info(f"'{original_name}' not among fetched files; falling back to {state.main_file_path}")
            original_name = state.main_file_path
            original = find_source(state.files, original_name)
        if original is None or not original.content:
            return ToolInvocationResult.failure(
                f"Could not find original contract content for '{original_name}' in fetched files."
            )

        return self.dynamic_runner.run(
            test_contract_code=capability.test_contract_code,
            test_contract_file_name=capability.test_contract_file_name,
            original_contract_file_name=original.path,
            files=state.files,
        )

    def _finalize(self, request: AuditRequest, state: SessionState, capability: Finalize) -> SessionOutcome:
        raw = capability.report
        contract_id = request.contract_id
        if isinstance(raw, dict) and isinstance(raw.get("contract_id"), str) and raw["contract_id"]:
            contract_id = raw["contract_id"]

        report, error = parse_report(raw, contract_id)
        if report is None:
            logger.error(f"Final report for {contract_id} is invalid: {error}")
            return self._fail(request, state, f"Invalid final report: {error}", contract_id=contract_id)

        logger.info(f"Audit complete for {contract_id}: {report!r}")
        state.terminal_report = report
        outcome = SessionOutcome(
            status=STATUS_SUCCESS,
            contract_id=contract_id,
            turns=state.turn,
            report=report,
            total_cost=state.total_cost,
        )
        try:
            outcome.reference = self.delivery.deliver_success(request.reply_channel_id, contract_id, report)
            outcome.delivered = outcome.reference is not None
        except DeliveryError as e:
            logger.error(f"Failed to send final SUCCESS result: {e}")
        return outcome

    def _fail(self, request: AuditRequest, state: SessionState, reason: str,
              contract_id: Optional[str] = None) -> SessionOutcome:
        contract_id = contract_id or request.contract_id
        logger.error(f"Audit for {contract_id} failed: {reason}")
        report = AuditReport.failure(contract_id, reason)
        state.terminal_report = report
        outcome = SessionOutcome(
            status=STATUS_ERROR,
            contract_id=report.contract_id,
            turns=state.turn,
            report=report,
            failure_reason=reason,
            total_cost=state.total_cost,
        )
        try:
            outcome.reference = self.delivery.deliver_failure(request.reply_channel_id, contract_id, reason)
            outcome.delivered = outcome.reference is not None
        except DeliveryError as e:
            logger.error(f"Failed to send final ERROR result: {e}")
        return outcome

    def _record_outcome(self, outcome: SessionOutcome) -> None:
        if not self.session_logger:
            return
        self.session_logger.log_session_outcome(
            contract_id=outcome.contract_id,
            status=outcome.status,
            turns=outcome.turns,
            score=outcome.report.score,
            num_findings=len(outcome.report.findings),
            total_cost=outcome.total_cost,
            failure_reason=outcome.failure_reason,
            metadata={"delivered": outcome.delivered, "reference": outcome.reference},
        )

    @staticmethod
    def _assistant_message(response: LLMResponse) -> Dict[str, Any]:
        blocks: List[Dict[str, Any]] = []
        if response.text:
            blocks.append({"type": "text", "text": response.text})
        for call in response.tool_calls:
            blocks.append({
                "type": "tool_use",
                "id": call.get("id"),
                "name": call.get("name"),
                "input": call.get("input") or {},
            })
        message: Dict[str, Any] = {"role": "assistant", "content": blocks}
        if response.reasoning_details:
            message["reasoning_details"] = response.reasoning_details
        return message

    @staticmethod
    def _tool_result_block(capability: Capability, result: ToolInvocationResult) -> Dict[str, Any]:
        return {
            "type": "tool_result",
            "tool_use_id": capability.call_id,
            "name": capability.name,
            "content": json.dumps(result.to_dict(), default=str),
        }

    @staticmethod
    def _loggable_arguments(capability: Capability) -> Dict[str, Any]:
        if isinstance(capability, FetchSource):
            return {"contract_id": capability.contract_id}
        if isinstance(capability, RunStaticTool):
            return {"tool_name": capability.tool_name, "file_name": capability.file_name}
        if isinstance(capability, RunDynamicTest):
            return {
                "test_contract_file_name": capability.test_contract_file_name,
                "original_contract_file_name": capability.original_contract_file_name,
            }
        if isinstance(capability, Finalize):
            return {"report_keys": sorted(capability.report) if isinstance(capability.report, dict) else []}
        return {"arguments": sorted(capability.arguments)}
