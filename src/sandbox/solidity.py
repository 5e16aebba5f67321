"""solidity source helpers: pragma parsing, verified-path normalisation, solc-select wrapping"""

from __future__ import annotations

import logging
import posixpath
import re
import shlex
from typing import List, Optional, Sequence

logger = logging.getLogger(__name__)

PRAGMA_PATTERN = re.compile(r"pragma\s+solidity\s+([^;]+);")
_EXACT = re.compile(r"=\s*(\d+\.\d+\.\d+)")
_CARET = re.compile(r"\^\s*(\d+\.\d+\.\d+)")
_LOWER_BOUND = re.compile(r">=\s*(\d+\.\d+\.\d+)")
_BARE = re.compile(r"^\s*(\d+\.\d+\.\d+)\s*$")

SOURCES_MARKER = "/sources/"
PROJECT_PREFIX = "project_/"


def parse_solidity_version(source: Optional[str]) -> Optional[str]:
    """
    Pick a concrete compiler version from the first pragma.

    Order: exact (`=x.y.z` or bare `x.y.z`), caret lower bound, `>=` lower
    bound. Anything else (e.g. `<0.9.0` alone) yields None and the image's
    default solc is used.
    """
    if not source:
        return None
    match = PRAGMA_PATTERN.search(source)
    if not match:
        return None
    constraint = match.group(1).strip()

    for pattern, label in ((_EXACT, "specific"), (_BARE, "specific"),
                           (_CARET, "caret lower bound"), (_LOWER_BOUND, "range lower bound")):
        found = pattern.search(constraint)
        if found:
            logger.debug(f"Pragma '{constraint}': using {label} {found.group(1)}")
            return found.group(1)

    logger.warning(f"Could not parse a specific version from pragma '{constraint}'. Using default.")
    return None


def normalize_source_path(path: str) -> str:
    """
    Map a verification-service path to a project-relative one.

    Everything up to "/sources/" is dropped, then a leading "project_/"
    segment. Absolute prefixes and ".." segments never survive.
    """
    relative = (path or "").replace("\\", "/")
    index = relative.find(SOURCES_MARKER)
    if index != -1:
        relative = relative[index + len(SOURCES_MARKER):]
    if relative.startswith(PROJECT_PREFIX):
        relative = relative[len(PROJECT_PREFIX):]
    elif "/" + PROJECT_PREFIX in relative:
        relative = relative[relative.index("/" + PROJECT_PREFIX) + len(PROJECT_PREFIX) + 1:]

    parts = [p for p in relative.split("/") if p not in ("", ".", "..")]
    if not parts:
        return posixpath.basename(path or "") or "Contract.sol"
    return "/".join(parts)


def path_segments(path: str) -> List[str]:
    return [segment.lower() for segment in normalize_source_path(path).split("/")]


def solc_select_command(version: Optional[str], command: Sequence[str]) -> List[str]:
    """
    Prefix `command` with solc-select install/use for `version`.

    Without a version the command is returned unchanged.
    """
    if not version:
        return list(command)
    quoted_version = shlex.quote(version)
    inner = " ".join(shlex.quote(part) for part in command)
    script = (
        f"if ! solc-select use {quoted_version} --check >/dev/null 2>&1; then "
        f"echo \"Solc {version} not found, attempting install...\"; "
        f"solc-select install {quoted_version}; "
        f"fi && solc-select use {quoted_version} && {inner}"
    )
    return ["sh", "-c", script]
