"""
Request Router

Turns one inbound envelope into at most one audit session:

    LISTENING -> PARSING -> CHANNEL_ESTABLISHED -> DISPATCHED
                    |               |
                 SKIPPED          FAILED

Envelopes that are not valid connection requests are skipped with no side
effects. A valid request gets exactly one fresh private channel.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from config import config
from hcs import hcs10
from hcs.errors import HCSError, ParseError
from hcs.transport import ChannelTransport, InboundEnvelope
from utils.logging import SessionLogger
from agent.delivery import ResultDelivery
from agent.errors import DeliveryError
from agent.orchestrator import AuditRequest, SessionOutcome, ToolSessionOrchestrator

logger = logging.getLogger(__name__)

CONTRACT_ID_PARSE_ERROR = "Error: Could not parse contract ID from your request."


class RouteState(Enum):
    LISTENING = "listening"
    PARSING = "parsing"
    CHANNEL_ESTABLISHED = "channel_established"
    DISPATCHED = "dispatched"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass
class RouteResult:
    state: RouteState
    channel_id: Optional[str] = None
    contract_id: Optional[str] = None
    reason: Optional[str] = None
    outcome: Optional[SessionOutcome] = None


class RequestRouter:
    def __init__(
        self,
        transport: ChannelTransport,
        orchestrator: ToolSessionOrchestrator,
        delivery: ResultDelivery,
        inbound_channel_id: str,
        operator_id: str,
        session_logger: Optional[SessionLogger] = None,
        connection_ttl_seconds: Optional[int] = None,
    ):
        self.transport = transport
        self.orchestrator = orchestrator
        self.delivery = delivery
        self.inbound_channel_id = inbound_channel_id
        self.operator_id = operator_id
        self.session_logger = session_logger
        self.connection_ttl_seconds = connection_ttl_seconds or config.CONNECTION_TOPIC_TTL_SECONDS

    def handle(self, envelope: InboundEnvelope) -> RouteResult:
        logger.debug(f"[{RouteState.PARSING.value}] envelope #{envelope.sequence_number} "
                     f"at {envelope.consensus_timestamp}")
        try:
            request = hcs10.parse_connection_request(envelope.payload)
        except hcs10.NotConnectionRequest as e:
            logger.debug(f"Skipping envelope #{envelope.sequence_number}: {e}")
            return RouteResult(RouteState.SKIPPED, reason=str(e))
        except ParseError as e:
            logger.warning(f"Skipping malformed envelope #{envelope.sequence_number}: {e}")
            return RouteResult(RouteState.SKIPPED, reason=str(e))

        if not request.query:
            logger.warning(f"Connection request #{envelope.sequence_number} has no message; skipping")
            return RouteResult(RouteState.SKIPPED, reason="empty request message")

        logger.info(f"Connection request #{envelope.sequence_number} from {request.requester}: {request.query!r}")

        memo = hcs10.connection_topic_memo(self.inbound_channel_id, self.connection_ttl_seconds)
        try:
            channel_id = self.transport.create_channel(memo)
        except HCSError as e:
            return self._failed(None, None, f"Failed to create connection channel: {e}")
        logger.info(f"[{RouteState.CHANNEL_ESTABLISHED.value}] private channel {channel_id} "
                    f"for {request.requester.account_id}")

        contract_id = hcs10.extract_resource_id(request.query)
        ack = hcs10.connection_created(
            self.operator_id,
            channel_id,
            request.requester.account_id,
            envelope.sequence_number,
        )
        try:
            self.transport.append_text(self.inbound_channel_id, ack)
        except HCSError as e:
            reason = f"Failed to confirm connection: {e}"
            self._best_effort_failure(channel_id, contract_id, reason)
            return self._failed(channel_id, contract_id, reason)

        if contract_id is None:
            try:
                self.transport.append_text(channel_id, hcs10.inline_message(self.operator_id, CONTRACT_ID_PARSE_ERROR))
            except HCSError as e:
                logger.error(f"Could not send contract id parse error to {channel_id}: {e}")
            return self._failed(channel_id, None, "no contract id in request")

        audit_request = AuditRequest(
            query=request.query,
            contract_id=contract_id,
            reply_channel_id=channel_id,
            requester_account_id=request.requester.account_id,
            connection_id=envelope.sequence_number,
        )
        logger.info(f"[{RouteState.DISPATCHED.value}] audit of {contract_id} on {channel_id}")
        outcome = self.orchestrator.run(audit_request)
        return RouteResult(RouteState.DISPATCHED, channel_id=channel_id, contract_id=contract_id, outcome=outcome)

    def _best_effort_failure(self, channel_id: str, contract_id: Optional[str], reason: str) -> None:
        try:
            self.delivery.deliver_failure(channel_id, contract_id, reason)
        except DeliveryError as e:
            logger.error(f"Best-effort failure report to {channel_id} also failed: {e}")

    def _failed(self, channel_id: Optional[str], contract_id: Optional[str], reason: str) -> RouteResult:
        logger.error(f"[{RouteState.FAILED.value}] {reason}")
        if self.session_logger:
            self.session_logger.log_error(
                contract_id,
                "route_failed",
                reason,
                context={"channel_id": channel_id},
            )
        return RouteResult(RouteState.FAILED, channel_id=channel_id, contract_id=contract_id, reason=reason)
