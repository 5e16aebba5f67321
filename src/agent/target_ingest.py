"""
Verified-source ingestion for Hedera contracts.

A 0.0.N contract id is resolved to an EVM address, then the HashScan
verification service is asked for every file it holds for that address.
Only Solidity files are kept; one of them is designated the main file.
"""

from __future__ import annotations

import logging
import re
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import requests

from config import config
from interfaces import FetchResult, SourceFetcher, SourceFile
from sandbox.solidity import path_segments

logger = logging.getLogger(__name__)

CONTRACT_ID_PATTERN = re.compile(r"^0\.0\.(\d+)$")
AUXILIARY_SEGMENTS = {"interfaces", "libraries"}
NOT_FOUND_MARKER = "Files have not been found"


def entity_num(contract_id: str) -> int:
    match = CONTRACT_ID_PATTERN.match(contract_id or "")
    if not match:
        raise ValueError(f"Invalid contract id: {contract_id!r}")
    return int(match.group(1))


def long_zero_address(contract_id: str) -> str:
    return "0x" + format(entity_num(contract_id), "x").zfill(40)


def select_main_file(files: List[SourceFile]) -> Optional[str]:
    """first file outside interfaces/ and libraries/, else the first file"""
    if not files:
        return None
    for source in files:
        if not AUXILIARY_SEGMENTS.intersection(path_segments(source.path)):
            return source.path
    return files[0].path


class AddressResolver(ABC):
    @abstractmethod
    def resolve(self, contract_id: str) -> str:
        pass


class LongZeroAddressResolver(AddressResolver):
    def resolve(self, contract_id: str) -> str:
        return long_zero_address(contract_id)


class MirrorAddressResolver(AddressResolver):
    """
    Ask the mirror node for the contract's evm_address.

    Contracts created via CREATE2 carry a non long-zero address, which is
    the one the verifier indexes. Lookup failures fall back to long-zero.
    """

    def __init__(self, mirror_url: Optional[str] = None, timeout: Optional[int] = None,
                 session: Optional[requests.Session] = None):
        self.mirror_url = (mirror_url or config.MIRROR_NODE_URL).rstrip("/")
        self.timeout = timeout or config.SOURCE_FETCH_TIMEOUT
        self.session = session or requests.Session()

    def resolve(self, contract_id: str) -> str:
        fallback = long_zero_address(contract_id)
        url = f"{self.mirror_url}/api/v1/contracts/{contract_id}"
        try:
            response = self.session.get(url, timeout=self.timeout)
            if response.status_code != 200:
                logger.warning(f"Mirror lookup for {contract_id} returned {response.status_code}; using long-zero address")
                return fallback
            evm_address = (response.json() or {}).get("evm_address")
        except (requests.RequestException, ValueError) as e:
            logger.warning(f"Mirror lookup for {contract_id} failed: {e}; using long-zero address")
            return fallback
        if not evm_address:
            return fallback
        return evm_address if evm_address.startswith("0x") else f"0x{evm_address}"


def create_address_resolver(strategy: Optional[str] = None, **kwargs) -> AddressResolver:
    strategy = (strategy or config.ADDRESS_RESOLUTION).lower()
    if strategy == "mirror":
        return MirrorAddressResolver(**kwargs)
    if strategy == "long_zero":
        return LongZeroAddressResolver()
    raise ValueError(f"Unknown address resolution strategy: {strategy}. Supported: mirror, long_zero")


class HashScanSourceFetcher(SourceFetcher):
    def __init__(self, resolver: Optional[AddressResolver] = None, base_url: Optional[str] = None,
                 chain_id: Optional[str] = None, timeout: Optional[int] = None,
                 session: Optional[requests.Session] = None):
        self.resolver = resolver or create_address_resolver()
        self.base_url = (base_url or config.SOURCE_VERIFY_URL).rstrip("/")
        self.chain_id = chain_id or config.VERIFY_CHAIN_ID
        self.timeout = timeout or config.SOURCE_FETCH_TIMEOUT
        self.session = session or requests.Session()

    def fetch(self, contract_id: str) -> FetchResult:
        not_found = FetchResult(success=False, error=f"Verified source code not found for contract {contract_id}.")
        try:
            evm_address = self.resolver.resolve(contract_id)
        except ValueError as e:
            return FetchResult(success=False, error=str(e))

        url = f"{self.base_url}/files/any/{self.chain_id}/{evm_address}"
        logger.info(f"Fetching verified source for {contract_id} ({evm_address}) from {url}")
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            logger.error(f"Source fetch for {contract_id} failed: {e}")
            return FetchResult(success=False, error=f"Failed to fetch source code: {e}")

        body_text = response.text or ""
        if response.status_code == 404 or NOT_FOUND_MARKER in body_text:
            logger.info(f"No verified source for {contract_id}")
            return not_found
        if response.status_code != 200:
            return FetchResult(
                success=False,
                error=f"Failed to fetch source code: HTTP {response.status_code}: {body_text[:200]}",
            )

        try:
            payload = response.json()
        except ValueError as e:
            return FetchResult(success=False, error=f"Failed to fetch source code: invalid JSON response ({e})")

        files = self._solidity_files(payload)
        if not files:
            return not_found
        main_file = select_main_file(files)
        logger.info(f"Fetched {len(files)} Solidity file(s) for {contract_id}; main file {main_file}")
        return FetchResult(success=True, files=files, main_file_name=main_file)

    @staticmethod
    def _solidity_files(payload: Any) -> List[SourceFile]:
        entries: List[Dict[str, Any]] = []
        if isinstance(payload, dict):
            entries = payload.get("files") or []
        elif isinstance(payload, list):
            entries = payload
        files = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            path = entry.get("path") or entry.get("name") or ""
            content = entry.get("content")
            if path.endswith(".sol") and isinstance(content, str):
                files.append(SourceFile(path=path, content=content))
        return files
