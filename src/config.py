import os
import re
import warnings
from pathlib import Path
from typing import Optional, List, Dict
from dataclasses import dataclass, field


def safe_int(value: Optional[str], default: int, min_val: Optional[int] = None, max_val: Optional[int] = None) -> int:
    if value is None:
        return default
    try:
        result = int(value)
        if min_val is not None and result < min_val:
            warnings.warn(
                f"Value {result} is below minimum {min_val}, using default {default}",
                RuntimeWarning,
                stacklevel=2
            )
            return default
        if max_val is not None and result > max_val:
            warnings.warn(
                f"Value {result} exceeds maximum {max_val}, using default {default}",
                RuntimeWarning,
                stacklevel=2
            )
            return default
        return result
    except (ValueError, TypeError):
        return default


def safe_float(value: Optional[str], default: float, min_val: Optional[float] = None, max_val: Optional[float] = None) -> float:
    if value is None:
        return default
    try:
        result = float(value)
        if min_val is not None and result < min_val:
            warnings.warn(
                f"Value {result} is below minimum {min_val}, using default {default}",
                RuntimeWarning,
                stacklevel=2
            )
            return default
        if max_val is not None and result > max_val:
            warnings.warn(
                f"Value {result} exceeds maximum {max_val}, using default {default}",
                RuntimeWarning,
                stacklevel=2
            )
            return default
        return result
    except (ValueError, TypeError):
        return default


def validate_api_key(key: Optional[str], key_name: str) -> bool:
    if not key:
        return False
    if not isinstance(key, str):
        warnings.warn(
            f"{key_name} must be a string",
            RuntimeWarning,
            stacklevel=2
        )
        return False

    if len(key) < 20:
        warnings.warn(
            f"{key_name} appears too short (min 20 characters expected)",
            RuntimeWarning,
            stacklevel=2
        )
        return False

    if len(key) > 500:
        warnings.warn(
            f"{key_name} appears too long (max 500 characters)",
            RuntimeWarning,
            stacklevel=2
        )
        return False

    if not re.match(r'^[A-Za-z0-9_\-\.]+$', key):
        warnings.warn(
            f"{key_name} contains invalid characters (only alphanumeric, -, _, . allowed)",
            RuntimeWarning,
            stacklevel=2
        )
        return False

    return True


HEDERA_ENTITY_ID_PATTERN = re.compile(r'^0\.0\.\d+$')


@dataclass
class AuditAgentConfig:
    PROJECT_ROOT: Path = field(default_factory=lambda: Path(
        os.getenv("HCS_AUDIT_ROOT")
        or Path(__file__).parent.parent.absolute()
    ))

    @property
    def DATA_DIR(self) -> Path:
        return self.PROJECT_ROOT / "data"

    @property
    def LOGS_DIR(self) -> Path:
        return self.DATA_DIR / "logs"

    @property
    def LOGS_RAW_DIR(self) -> Path:
        return self.LOGS_DIR / "raw"

    @property
    def LOGS_DB_PATH(self) -> Path:
        return self.LOGS_DIR / "sessions.db"

    @property
    def STATE_FILE(self) -> Path:
        explicit = os.getenv("HCS_STATE_FILE")
        if explicit:
            return Path(explicit)
        return self.DATA_DIR / "hcs_state.json"

    @property
    def WORKSPACE_DIR(self) -> Path:
        return self.DATA_DIR / "contracts-temp"

    # hedera
    HEDERA_NETWORK: str = os.getenv("HEDERA_NETWORK", "testnet").lower()

    MIRROR_NODE_URLS: Dict[str, str] = field(default_factory=lambda: {
        "mainnet": "https://mainnet-public.mirrornode.hedera.com",
        "testnet": "https://testnet.mirrornode.hedera.com",
        "previewnet": "https://previewnet.mirrornode.hedera.com",
    })

    # sourcify-style chain ids used by the hashscan verification service
    VERIFY_CHAIN_IDS: Dict[str, str] = field(default_factory=lambda: {
        "mainnet": "295",
        "testnet": "296",
        "previewnet": "297",
    })

    SOURCE_VERIFY_URL: str = os.getenv("SOURCE_VERIFY_URL", "https://server-verify.hashscan.io")
    SOURCE_FETCH_TIMEOUT: int = safe_int(os.getenv("SOURCE_FETCH_TIMEOUT"), default=30, min_val=5, max_val=300)
    ADDRESS_RESOLUTION: str = os.getenv("ADDRESS_RESOLUTION", "mirror").lower()

    @property
    def HEDERA_ACCOUNT_ID(self) -> Optional[str]:
        return os.getenv("HEDERA_ACCOUNT_ID")

    @property
    def HEDERA_PRIVATE_KEY(self) -> Optional[str]:
        return os.getenv("HEDERA_PRIVATE_KEY")

    @property
    def AGENT_INBOUND_TOPIC_ID(self) -> Optional[str]:
        return os.getenv("AGENT_INBOUND_TOPIC_ID")

    @property
    def AGENT_OUTBOUND_TOPIC_ID(self) -> Optional[str]:
        return os.getenv("AGENT_OUTBOUND_TOPIC_ID")

    @property
    def MIRROR_NODE_URL(self) -> str:
        explicit = os.getenv("MIRROR_NODE_URL")
        if explicit:
            return explicit.rstrip("/")
        return self.MIRROR_NODE_URLS.get(self.HEDERA_NETWORK, self.MIRROR_NODE_URLS["testnet"])

    # transport
    MAX_FRAME_BYTES: int = 1024
    CLIENT_INIT_MAX_RETRIES: int = safe_int(os.getenv("CLIENT_INIT_MAX_RETRIES"), default=5, min_val=1, max_val=20)
    CLIENT_INIT_BACKOFF_SECONDS: float = safe_float(os.getenv("CLIENT_INIT_BACKOFF_SECONDS"), default=1.0, min_val=0.0, max_val=60.0)
    SUBSCRIPTION_POLL_INTERVAL: float = safe_float(os.getenv("SUBSCRIPTION_POLL_INTERVAL"), default=2.0, min_val=0.1, max_val=60.0)
    SUBSCRIPTION_LOOKBACK_SECONDS: int = safe_int(os.getenv("SUBSCRIPTION_LOOKBACK_SECONDS"), default=60, min_val=0, max_val=86400)
    MIRROR_PAGE_LIMIT: int = safe_int(os.getenv("MIRROR_PAGE_LIMIT"), default=100, min_val=1, max_val=100)
    CONNECTION_TOPIC_TTL_SECONDS: int = 86400

    # session
    MAX_AGENT_TURNS: int = safe_int(os.getenv("MAX_AGENT_TURNS"), default=15, min_val=1, max_val=100)
    AUDIT_WORKERS: int = safe_int(os.getenv("AUDIT_WORKERS"), default=1, min_val=1, max_val=16)

    # sandbox
    AUDIT_TOOL_IMAGE: str = os.getenv("AUDIT_TOOL_IMAGE", "hedera-audit-tools:latest")
    DOCKER_BINARY: str = os.getenv("DOCKER_BINARY", "docker")
    TOOL_TIMEOUT: int = safe_int(os.getenv("TOOL_TIMEOUT"), default=300, min_val=30, max_val=3600)
    FORGE_TIMEOUT: int = safe_int(os.getenv("FORGE_TIMEOUT"), default=600, min_val=30, max_val=3600)
    ALLOWED_AUDIT_TOOLS: List[str] = field(default_factory=lambda: ["slither", "myth", "solhint"])
    FORGE_REMAPPING: str = "contracts/=src/contracts/"

    # reasoning engine
    DEFAULT_BACKEND_TYPE: str = os.getenv("BACKEND", "openrouter")
    MODEL_GROK_4_FAST: str = "x-ai/grok-4.1-fast"
    DEFAULT_MODEL: str = os.getenv("MODEL", MODEL_GROK_4_FAST)
    MODEL_REGISTRY = {
        "x-ai/grok-4.1-fast": {
            "provider": "xai",
            "name": "Grok-4.1 Fast",
            "capabilities": {"thinking": True, "tools": True, "vision": False},
            "reasoning_support": "openrouter_unified",
            "reasoning_default": {"enabled": True, "effort": "high"},
        },
        "google/gemini-2.0-flash-001": {
            "provider": "google",
            "name": "Gemini 2.0 Flash",
            "capabilities": {"thinking": False, "tools": True, "vision": True},
        },
    }
    MODEL_PRICING = {
        "x-ai/grok-4.1-fast": {"input": 0.20, "output": 0.50, "reasoning_output": 0.50},
        "google/gemini-2.0-flash-001": {"input": 0.10, "output": 0.40},
    }
    REASONING_EFFORT: str = os.getenv("REASONING_EFFORT", "high")
    REASONING_EXCLUDE: bool = os.getenv("REASONING_EXCLUDE", "0") == "1"
    NORMAL_TEMPERATURE: float = 0.7
    MAX_OUTPUT_TOKENS: int = safe_int(os.getenv("MAX_OUTPUT_TOKENS"), default=16000, min_val=256, max_val=64000)

    # logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "info").upper()
    ENABLE_EVENT_LOG: bool = os.getenv("ENABLE_EVENT_LOG", "1") != "0"
    LOG_TO_SQLITE: bool = os.getenv("LOG_TO_SQLITE", "1") != "0"
    DEBUG_LLM_CALLS: bool = bool(os.getenv("DEBUG_LLM", "0") == "1")

    def __post_init__(self) -> None:
        if self.ADDRESS_RESOLUTION not in {"mirror", "long_zero"}:
            warnings.warn(
                f"[config] Invalid ADDRESS_RESOLUTION='{self.ADDRESS_RESOLUTION}', defaulting to 'mirror'",
                RuntimeWarning,
                stacklevel=2,
            )
            self.ADDRESS_RESOLUTION = "mirror"
        if self.HEDERA_NETWORK not in self.MIRROR_NODE_URLS:
            warnings.warn(
                f"[config] Unknown HEDERA_NETWORK='{self.HEDERA_NETWORK}', defaulting to 'testnet'",
                RuntimeWarning,
                stacklevel=2,
            )
            self.HEDERA_NETWORK = "testnet"

    @property
    def OPENROUTER_API_KEY(self) -> Optional[str]:
        return os.getenv("OPENROUTER_API_KEY")

    @property
    def VERIFY_CHAIN_ID(self) -> Optional[str]:
        return self.VERIFY_CHAIN_IDS.get(self.HEDERA_NETWORK)

    @property
    def OPERATOR_ID(self) -> str:
        """hcs-10 operator id of this agent: <inbound topic>@<account>"""
        return f"{self.AGENT_INBOUND_TOPIC_ID}@{self.HEDERA_ACCOUNT_ID}"

    def ensure_directories(self):
        directories = [
            self.DATA_DIR,
            self.LOGS_DIR,
            self.LOGS_RAW_DIR,
            self.WORKSPACE_DIR,
        ]

        for directory in directories:
            directory.mkdir(parents=True, exist_ok=True)

    def get_model_pricing(self, model_name: str) -> dict:
        if model_name not in self.MODEL_PRICING:
            warnings.warn(f"Unknown model '{model_name}', using fallback pricing", RuntimeWarning)
        return self.MODEL_PRICING.get(model_name, {"input": 3.00, "output": 15.00, "reasoning_output": 15.00})

    def validate(self):
        missing = [
            name for name in ("HEDERA_ACCOUNT_ID", "HEDERA_PRIVATE_KEY", "AGENT_INBOUND_TOPIC_ID")
            if not getattr(self, name)
        ]
        if missing:
            raise ValueError(
                f"Missing required environment variables: {', '.join(missing)}. "
                "Set the Hedera operator credentials and the agent inbound topic id."
            )

        for name in ("HEDERA_ACCOUNT_ID", "AGENT_INBOUND_TOPIC_ID"):
            if not HEDERA_ENTITY_ID_PATTERN.match(getattr(self, name)):
                raise ValueError(f"{name} must look like 0.0.<number>, got {getattr(self, name)!r}")

        if self.DEFAULT_BACKEND_TYPE == "openrouter":
            if not self.OPENROUTER_API_KEY:
                raise ValueError(
                    "OPENROUTER_API_KEY environment variable not set. "
                    "Set it with: export OPENROUTER_API_KEY='your-key'"
                )
            if not validate_api_key(self.OPENROUTER_API_KEY, "OPENROUTER_API_KEY"):
                warnings.warn(
                    "OPENROUTER_API_KEY format validation failed. "
                    "Please ensure it is a valid API key.",
                    RuntimeWarning,
                    stacklevel=2
                )

        if not self.PROJECT_ROOT.exists():
            raise ValueError(f"Project root does not exist: {self.PROJECT_ROOT}")

        self.ensure_directories()

    def summary(self) -> str:
        api_status = "Set" if self.OPENROUTER_API_KEY else "NOT SET"

        return f"""
HCS Audit Agent Configuration:
  Project Root: {self.PROJECT_ROOT}
  Data Dir: {self.DATA_DIR}
  Network: {self.HEDERA_NETWORK}
  Operator: {self.HEDERA_ACCOUNT_ID or 'NOT SET'}
  Inbound Topic: {self.AGENT_INBOUND_TOPIC_ID or 'NOT SET'}
  Outbound Topic: {self.AGENT_OUTBOUND_TOPIC_ID or 'not used'}
  Mirror Node: {self.MIRROR_NODE_URL}
  Model: {self.DEFAULT_MODEL}
  Max Turns: {self.MAX_AGENT_TURNS}
  Workers: {self.AUDIT_WORKERS}
  Tool Image: {self.AUDIT_TOOL_IMAGE}
  State File: {self.STATE_FILE}
  API Key: {api_status}
""".strip()


config = AuditAgentConfig()
if os.getenv("HCS_AUDIT_SKIP_VALIDATION") != "1":
    try:
        config.validate()
    except ValueError as e:
        print(f"[WARNING]  Configuration warning: {e}")
