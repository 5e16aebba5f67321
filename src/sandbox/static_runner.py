"""static analysis tools (slither and friends) inside the audit-tools image"""
from __future__ import annotations

import json
import logging
import re
import shlex
from typing import List, Optional, Sequence, Tuple

from config import config
from interfaces import SourceFile, StaticToolRunner, ToolInvocationResult
from sandbox.solidity import normalize_source_path, parse_solidity_version, solc_select_command
from sandbox.workspace import CONTAINER_ROOT, SandboxError, run_container, workspace, write_sources
from utils.json_sanitizer import clean_tool_output

logger = logging.getLogger(__name__)

SAFE_ARGUMENT = re.compile(r"^[A-Za-z0-9_\-\.=,:/@+]+$")
SOLC_SELECT_TOOLS = ("slither", "myth")


def parse_tool_command(tool_name: str, allowed: Sequence[str]) -> Tuple[str, List[str]]:
    """split `tool_name` into an allow-listed executable and validated arguments"""
    try:
        parts = shlex.split(tool_name or "")
    except ValueError as e:
        raise ValueError(f"Could not parse tool command {tool_name!r}: {e}") from e
    if not parts:
        raise ValueError("Missing toolName")
    executable, args = parts[0], parts[1:]
    if executable not in allowed:
        raise ValueError(f"Tool '{executable}' is not allowed. Allowed tools: {', '.join(allowed)}")
    for arg in args:
        if not SAFE_ARGUMENT.match(arg) and arg != "-":
            raise ValueError(f"Unsafe argument for {executable}: {arg!r}")
    return executable, args


def find_source(files: Sequence[SourceFile], wanted: str) -> Optional[SourceFile]:
    """normalised match on whole path segments first, then the first path containing `wanted`"""
    wanted_norm = normalize_source_path(wanted)
    for source in files:
        candidate = normalize_source_path(source.path)
        if candidate == wanted_norm or candidate.endswith("/" + wanted_norm):
            return source
    for source in files:
        if wanted and wanted in source.path:
            return source
    return None


class DockerStaticToolRunner(StaticToolRunner):
    def __init__(self, image: Optional[str] = None, timeout: Optional[int] = None,
                 allowed_tools: Optional[Sequence[str]] = None):
        self.image = image or config.AUDIT_TOOL_IMAGE
        self.timeout = timeout or config.TOOL_TIMEOUT
        self.allowed_tools = list(allowed_tools or config.ALLOWED_AUDIT_TOOLS)

    def build_command(self, executable: str, args: List[str], target_path: str, version: Optional[str]) -> List[str]:
        command = [executable, target_path, *args]
        if executable == "slither" and "--json" not in args:
            command += ["--json", "-"]
            logger.info("Auto-added '--json -' to slither command.")
        if version and executable in SOLC_SELECT_TOOLS:
            logger.info(f"Will ensure solc {version} is available and selected")
            return solc_select_command(version, command)
        return command

    def run(self, tool_name: str, files: List[SourceFile], main_file_path: str) -> ToolInvocationResult:
        if not files:
            return ToolInvocationResult.failure("Missing 'files' array.")
        if not main_file_path:
            return ToolInvocationResult.failure("Missing 'mainFilePath'.")
        try:
            executable, args = parse_tool_command(tool_name, self.allowed_tools)
        except ValueError as e:
            return ToolInvocationResult.failure(str(e))

        main_file = find_source(files, main_file_path)
        if main_file is None or not main_file.content:
            return ToolInvocationResult.failure(
                f"Could not find content for main file path '{main_file_path}' in fetched files."
            )

        version = parse_solidity_version(main_file.content)
        logger.info(f"Parsed Solidity version requirement: {version or 'Default'}")
        target_path = f"{CONTAINER_ROOT}/{normalize_source_path(main_file.path)}"
        command = self.build_command(executable, args, target_path, version)

        try:
            with workspace(prefix=f"{executable}_") as host_dir:
                write_sources(host_dir, files)
                result = run_container(host_dir, command, timeout=self.timeout, image=self.image,
                                       name_prefix=executable)
        except (SandboxError, OSError) as e:
            logger.error(f"Error executing {tool_name}: {e}")
            return ToolInvocationResult.failure(f"Internal Docker runner error during {tool_name}: {e}")

        return self.interpret(executable, command, result.exit_code, result.stdout, result.stderr)

    def interpret(self, executable: str, command: Sequence[str], exit_code: int,
                  stdout: str, stderr: str) -> ToolInvocationResult:
        """exit code 0, or json output reporting success, counts as success"""
        json_requested = any("--json" in part for part in command)
        parsed = None
        parse_error = None
        cleaned = ""
        if stdout and json_requested:
            cleaned = clean_tool_output(stdout)
            try:
                parsed = json.loads(cleaned)
            except json.JSONDecodeError as e:
                parse_error = e
                logger.warning(f"Failed to parse cleaned JSON output: {e}")

        reported_success = isinstance(parsed, dict) and parsed.get("success") is True
        if exit_code == 0 or reported_success:
            if exit_code != 0:
                logger.warning(f"{executable} exited non-zero ({exit_code}) but produced success JSON.")
            return ToolInvocationResult(success=True, output=parsed if parsed is not None else (cleaned or stdout or stderr))

        logger.error(f"{executable} execution failed. Status code: {exit_code}")
        message = (
            f"Execution failed with status code {exit_code}. Stderr: {stderr or '(empty)'}. "
            f"Raw Stdout was: {stdout or '(empty)'}."
        )
        if parse_error:
            message += f" ParseError: {parse_error}"
        return ToolInvocationResult.failure(message)
