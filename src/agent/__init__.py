"""audit session agent: routing, the tool-calling loop, result delivery"""

from .errors import SessionError, SessionBoundExceeded, UnrecoverableSessionError, DeliveryError
from .capabilities import (
    FetchSource,
    RunStaticTool,
    RunDynamicTest,
    Finalize,
    UnknownCapability,
    parse_capability,
)
from .delivery import ResultDelivery
from .orchestrator import AuditRequest, SessionState, SessionOutcome, ToolSessionOrchestrator
from .router import RequestRouter, RouteResult, RouteState
from .listener import AuditListener

__all__ = [
    "SessionError", "SessionBoundExceeded", "UnrecoverableSessionError", "DeliveryError",
    "FetchSource", "RunStaticTool", "RunDynamicTest", "Finalize", "UnknownCapability", "parse_capability",
    "ResultDelivery",
    "AuditRequest", "SessionState", "SessionOutcome", "ToolSessionOrchestrator",
    "RequestRouter", "RouteResult", "RouteState",
    "AuditListener",
]
