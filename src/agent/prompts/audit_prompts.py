"""
Audit Session Prompt Templates

System prompt and tool declarations for the tool-calling audit session.
Tool names here must match the capability names in agent/capabilities.py.
"""

from agent.capabilities import (
    EXECUTE_SOLIDITY_TEST,
    FINALIZE_AUDIT_REPORT,
    GET_SOURCE_CODE,
    RUN_AUDIT_TOOL,
)

AUDIT_SYSTEM_PROMPT = """You are a smart contract security auditor for contracts deployed on Hedera.
You receive a free-form request naming a Hedera contract id (0.0.N). Fetch its verified Solidity
source, analyse it with the available tools, and finish by submitting a structured JSON report.

# WORKFLOW

1. Call {get_source_code} with the contract id from the request. Nothing else works until
   source has been fetched successfully.
2. Run static analysis with {run_audit_tool}. Start with 'slither'; its JSON output is requested
   automatically. Only pass file_name when you want a file other than the main file.
   Static tools do not model Hedera Token Service (HTS) precompiles; findings around HTS calls
   may be incomplete.
3. Read every result. Each result is {{"success": bool, "output": ..., "error": ...}}.
   When success is false the output is diagnostic only. Do not report it as a finding.
4. Where a suspected issue needs confirmation, write a minimal Foundry test and run it with
   {execute_solidity_test}:
   - import "forge-std/Test.sol" and inherit from Test; test functions start with `test`
   - the filename MUST end in '.t.sol' and must be a bare filename (it is placed in test/)
   - fetched sources live under src/; a file fetched as 'contracts/Vault.sol' is imported as
     "contracts/Vault.sol"
   - HTS precompiles (0x167) do not exist in the test EVM; keep tests to pure Solidity logic
     or mock the precompile
   - if your test fails to compile, fix it and try again; skip it after repeated failures
5. Synthesize. Explain findings in plain language, prioritised by severity and confidence.
6. Call {finalize_audit_report} exactly once, when the report is complete. The report object MUST
   contain:
   - "score": number 0-100, 100 being best
   - "summary": short overall conclusion
   - "findings": array of objects with "title", "severity" (one of Critical, High, Medium, Low,
     Informational, Optimization), "description", "recommendation", "confirmation" (Foundry test
     reference or "N/A"), and optional "details"
   - "tools_used": array of tool names actually run, e.g. ["slither", "forge test"]

You have {max_turns} turns in total. Submit the report before the last one.
Always call at least one tool per turn.
"""

TOOL_DECLARATIONS = [
    {
        "name": GET_SOURCE_CODE,
        "description": (
            "Fetch the verified Solidity source for a Hedera contract id from the verification "
            "service. Returns {success, mainFileName, files: [{path, content}]} or {success: false, error}."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "contract_id": {"type": "string", "description": "Hedera contract id in '0.0.N' format."},
            },
            "required": ["contract_id"],
        },
    },
    {
        "name": RUN_AUDIT_TOOL,
        "description": (
            "Run a static analysis tool (e.g. 'slither') over the fetched source inside a container. "
            "Returns {success, output, error}; output is parsed JSON when the tool emits it."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "tool_name": {"type": "string", "description": "Tool command, e.g. 'slither'."},
                "file_name": {
                    "type": "string",
                    "description": "Optional fetched file to analyse; defaults to the main file.",
                },
            },
            "required": ["tool_name"],
        },
    },
    {
        "name": EXECUTE_SOLIDITY_TEST,
        "description": (
            "Compile and run a Foundry test against the fetched source (forge test). "
            "Returns {success, output, error}; inspect output for [PASS]/[FAIL] and compiler errors."
        ),
        "input_schema": {
            "type": "object",
            "properties": {
                "test_contract_code": {
                    "type": "string",
                    "description": "Full Solidity source of the test contract.",
                },
                "test_contract_file_name": {
                    "type": "string",
                    "description": "Bare filename ending in '.t.sol', e.g. 'VaultTest.t.sol'.",
                },
                "original_contract_file_name": {
                    "type": "string",
                    "description": "Fetched file under test, e.g. 'Vault.sol'; defaults to the main file.",
                },
            },
            "required": ["test_contract_code", "test_contract_file_name", "original_contract_file_name"],
        },
    },
    {
        "name": FINALIZE_AUDIT_REPORT,
        "description": "Submit the final structured audit report. Call only once the audit is complete.",
        "input_schema": {
            "type": "object",
            "properties": {
                "report": {
                    "type": "object",
                    "description": (
                        "Report with 'score' (number), 'summary' (string), 'findings' (array of "
                        "{title, severity, description, recommendation, confirmation, details?}) "
                        "and 'tools_used' (string array)."
                    ),
                },
            },
            "required": ["report"],
        },
    },
]


def build_system_prompt(max_turns: int) -> str:
    return AUDIT_SYSTEM_PROMPT.format(
        get_source_code=GET_SOURCE_CODE,
        run_audit_tool=RUN_AUDIT_TOOL,
        execute_solidity_test=EXECUTE_SOLIDITY_TEST,
        finalize_audit_report=FINALIZE_AUDIT_REPORT,
        max_turns=max_turns,
    )


def build_initial_prompt(query: str) -> str:
    return f'"{query}"'
