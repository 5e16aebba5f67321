"""
Per-invocation workspaces and docker containers.

Every invocation gets its own temp directory mounted at /app and its own
named container. Both are removed on every exit path; directories still
alive at shutdown are removed by the registered cleanup handler.
"""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
import tempfile
import threading
import urllib.parse
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence, Set

from config import config
from interfaces import SourceFile
from sandbox.solidity import normalize_source_path

logger = logging.getLogger(__name__)

CONTAINER_ROOT = "/app"

_active_workspaces: Set[Path] = set()
_workspace_lock = threading.Lock()
_cleanup_registered = False


class SandboxError(RuntimeError):
    """workspace or container setup failed"""


@dataclass
class ContainerResult:
    exit_code: int
    stdout: str
    stderr: str

    @property
    def combined(self) -> str:
        return f"{self.stdout}\n{self.stderr}".strip()


def _cleanup_all_workspaces():
    with _workspace_lock:
        remaining = list(_active_workspaces)
    if remaining:
        logger.info(f"Cleaning up {len(remaining)} active workspaces...")
    for path in remaining:
        cleanup_workspace(path)


def make_workspace(prefix: str = "audit_", base_dir: Optional[Path] = None) -> Path:
    global _cleanup_registered
    base = Path(base_dir or config.WORKSPACE_DIR)
    base.mkdir(parents=True, exist_ok=True)
    workspace = Path(tempfile.mkdtemp(prefix=prefix, dir=str(base)))

    with _workspace_lock:
        _active_workspaces.add(workspace)
        if not _cleanup_registered:
            from utils.shutdown import register_cleanup
            register_cleanup(_cleanup_all_workspaces, "workspace_cleanup")
            _cleanup_registered = True
            logger.debug("Workspace cleanup handler registered")

    logger.debug(f"Created workspace: {workspace}")
    return workspace


def cleanup_workspace(workspace: Path | str) -> None:
    path = Path(workspace)
    with _workspace_lock:
        _active_workspaces.discard(path)
    # files written by the container may be root-owned
    shutil.rmtree(path, ignore_errors=True)
    logger.debug(f"Cleaned up workspace: {path}")


def active_workspaces() -> List[Path]:
    with _workspace_lock:
        return sorted(_active_workspaces)


@contextmanager
def workspace(prefix: str = "audit_", base_dir: Optional[Path] = None) -> Iterator[Path]:
    path = make_workspace(prefix, base_dir)
    try:
        yield path
    finally:
        cleanup_workspace(path)


def _inside(root: Path, target: Path) -> bool:
    try:
        target.resolve().relative_to(root.resolve())
        return True
    except ValueError:
        return False


def write_sources(root: Path, files: Iterable[SourceFile], subdir: str = "") -> List[str]:
    """write files under root/subdir using normalised paths; returns the relative paths written"""
    base = (root / subdir) if subdir else root
    written: List[str] = []
    for source in files:
        relative = normalize_source_path(source.path)
        target = base / relative
        if not _inside(base, target):
            raise SandboxError(f"Source path escapes workspace: {source.path}")
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(source.content, encoding="utf-8")
        logger.debug(f"Wrote source '{source.path}' -> '{target}'")
        written.append(relative)
    logger.info(f"Wrote {len(written)} source file(s) to {base}")
    return written


def write_test(root: Path, filename: str, solidity: str, subdir: str = "test") -> Path:
    """write a generated test into root/test/, rejecting anything that is not a bare filename"""
    if "\x00" in filename:
        raise ValueError(f"Null byte detected in filename: {filename!r}")
    if urllib.parse.unquote(filename) != filename:
        raise ValueError(f"URL-encoded filename detected: {filename}")
    if not re.match(r"^[a-zA-Z0-9_\-\.]+$", filename):
        raise ValueError(f"Invalid characters in filename: {filename}")
    safe_filename = Path(filename).name
    if not safe_filename or safe_filename in (".", ".."):
        raise ValueError(f"Invalid filename: {filename}")

    target_dir = root / subdir
    target = target_dir / safe_filename
    if not _inside(target_dir, target):
        raise ValueError(f"Path traversal detected: {filename} resolves outside workspace")

    target_dir.mkdir(parents=True, exist_ok=True)
    target.write_text(solidity, encoding="utf-8")
    return target


def container_name(prefix: str = "audit") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


def remove_container(name: str, docker_binary: Optional[str] = None) -> None:
    """force-remove; a container that already exited with --rm is not an error"""
    try:
        subprocess.run(
            [docker_binary or config.DOCKER_BINARY, "rm", "-f", name],
            capture_output=True,
            text=True,
            timeout=30,
        )
    except (OSError, subprocess.SubprocessError) as e:
        logger.warning(f"Failed to remove container {name}: {e}")


def run_container(
    host_dir: Path,
    command: Sequence[str],
    timeout: int,
    working_dir: str = CONTAINER_ROOT,
    image: Optional[str] = None,
    docker_binary: Optional[str] = None,
    name_prefix: str = "audit",
) -> ContainerResult:
    """
    Run `command` in a fresh container with host_dir mounted at /app.

    The container is removed in all cases, including timeout.
    """
    docker = docker_binary or config.DOCKER_BINARY
    name = container_name(name_prefix)
    args = [
        docker, "run", "--rm",
        "--name", name,
        "-v", f"{Path(host_dir).resolve()}:{CONTAINER_ROOT}",
        "-w", working_dir,
        image or config.AUDIT_TOOL_IMAGE,
        *command,
    ]
    logger.info(f"Running in container {name}: {list(command)}")
    try:
        completed = subprocess.run(args, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired as e:
        raise SandboxError(f"Container {name} timed out after {timeout}s") from e
    except FileNotFoundError as e:
        raise SandboxError(f"Docker binary not found: {docker}") from e
    finally:
        remove_container(name, docker)

    logger.info(f"Container {name} finished with status code: {completed.returncode}")
    logger.debug(f"Container {name} stdout:\n{completed.stdout}")
    if completed.stderr:
        logger.debug(f"Container {name} stderr:\n{completed.stderr}")
    return ContainerResult(completed.returncode, completed.stdout or "", completed.stderr or "")
