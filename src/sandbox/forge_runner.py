"""foundry test execution: scaffold a project, drop in sources and the generated test, run forge test"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional

from config import config
from interfaces import DynamicTestRunner, SourceFile, ToolInvocationResult
from sandbox.solidity import parse_solidity_version, solc_select_command
from sandbox.static_runner import find_source
from sandbox.workspace import CONTAINER_ROOT, SandboxError, run_container, workspace, write_sources, write_test

logger = logging.getLogger(__name__)

TEMPLATE_FILES = ("src/Counter.sol", "test/Counter.t.sol", "script/Counter.s.sol")


class DockerForgeRunner(DynamicTestRunner):
    def __init__(self, image: Optional[str] = None, timeout: Optional[int] = None,
                 remapping: Optional[str] = None):
        self.image = image or config.AUDIT_TOOL_IMAGE
        self.timeout = timeout or config.FORGE_TIMEOUT
        self.remapping = remapping or config.FORGE_REMAPPING

    def validate(self, test_contract_code: str, test_contract_file_name: str,
                 original_contract_file_name: str, files: List[SourceFile]) -> Optional[str]:
        if not test_contract_code:
            return "Missing test contract code."
        if not test_contract_file_name or not test_contract_file_name.endswith(self.TEST_SUFFIX):
            return f"Test filename must end with '{self.TEST_SUFFIX}'."
        if not original_contract_file_name or not original_contract_file_name.endswith(".sol"):
            return "Original filename must end with '.sol'."
        if not files:
            return "Missing original source files."
        return None

    def build_test_command(self, version: Optional[str]) -> List[str]:
        command = ["forge", "test", "--root", CONTAINER_ROOT, "--remappings", self.remapping]
        return solc_select_command(version, command)

    def _scaffold(self, host_dir: Path) -> None:
        init = run_container(host_dir, ["forge", "init", "--force", CONTAINER_ROOT], timeout=self.timeout,
                             working_dir="/", image=self.image, name_prefix="forge-init")
        if init.exit_code != 0:
            raise SandboxError(f"forge init failed with exit code {init.exit_code}: {init.combined}")
        for template in TEMPLATE_FILES:
            (host_dir / template).unlink(missing_ok=True)

    def run(self, test_contract_code: str, test_contract_file_name: str,
            original_contract_file_name: str, files: List[SourceFile]) -> ToolInvocationResult:
        problem = self.validate(test_contract_code, test_contract_file_name, original_contract_file_name, files)
        if problem:
            return ToolInvocationResult.failure(problem)

        original = find_source(files, original_contract_file_name)
        if original is None or not original.content:
            return ToolInvocationResult.failure(
                f"Could not find content for original contract '{original_contract_file_name}' in fetched files."
            )
        version = parse_solidity_version(original.content)
        logger.info(f"Forge test {test_contract_file_name} using solc {version or 'default'}")

        try:
            with workspace(prefix="forge_") as host_dir:
                self._scaffold(host_dir)
                write_sources(host_dir, files, subdir="src")
                write_test(host_dir, test_contract_file_name, test_contract_code)
                result = run_container(host_dir, self.build_test_command(version), timeout=self.timeout,
                                       image=self.image, name_prefix="forge-test")
        except (SandboxError, ValueError, OSError) as e:
            logger.error(f"Forge run failed for {test_contract_file_name}: {e}")
            return ToolInvocationResult.failure(f"Internal Forge runner error: {e}")

        output = f"{result.stdout}\n{result.stderr}"
        if result.exit_code == 0:
            logger.info(f"Forge test {test_contract_file_name} passed")
            return ToolInvocationResult(success=True, output=output)
        logger.info(f"Forge test {test_contract_file_name} failed with exit code {result.exit_code}")
        return ToolInvocationResult.failure(
            f"Forge test failed with exit code {result.exit_code}. See output for details.",
            output=output,
        )
