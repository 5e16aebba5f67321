from .solidity import normalize_source_path, parse_solidity_version, solc_select_command
from .workspace import SandboxError, ContainerResult, workspace, run_container
from .static_runner import DockerStaticToolRunner, parse_tool_command
from .forge_runner import DockerForgeRunner

__all__ = [
    'normalize_source_path',
    'parse_solidity_version',
    'solc_select_command',
    'SandboxError',
    'ContainerResult',
    'workspace',
    'run_container',
    'DockerStaticToolRunner',
    'parse_tool_command',
    'DockerForgeRunner',
]
