"""publish final reports: chunked payload on a fresh channel, pointer message on the private channel"""

from __future__ import annotations

import json
import logging
from typing import Optional

from agent.errors import DeliveryError
from hcs import hcs10
from hcs.chunked_store import ChunkedChannelStore
from hcs.errors import HCSError
from hcs.transport import ChannelTransport
from models.findings import AuditReport
from utils.logging import SessionLogger

logger = logging.getLogger(__name__)

STATUS_SUCCESS = "success"
STATUS_ERROR = "error"


class ResultDelivery:
    def __init__(
        self,
        transport: ChannelTransport,
        operator_id: str,
        store: Optional[ChunkedChannelStore] = None,
        session_logger: Optional[SessionLogger] = None,
    ):
        self.transport = transport
        self.operator_id = operator_id
        self.store = store or ChunkedChannelStore(transport)
        self.session_logger = session_logger

    def deliver_success(self, channel_id: Optional[str], contract_id: str, report: AuditReport) -> Optional[str]:
        return self._deliver(channel_id, contract_id, STATUS_SUCCESS, report)

    def deliver_failure(self, channel_id: Optional[str], contract_id: Optional[str], reason: str) -> Optional[str]:
        logger.info(f"Reporting failure for {contract_id or 'Unknown'} on {channel_id}: {reason}")
        report = AuditReport.failure(contract_id, reason)
        return self._deliver(channel_id, report.contract_id, STATUS_ERROR, report)

    def _deliver(self, channel_id: Optional[str], contract_id: Optional[str], status: str,
                 report: AuditReport) -> Optional[str]:
        """returns the reference, or None when there is no channel to deliver to"""
        if not channel_id:
            logger.error(
                f"Cannot deliver {status} report for {contract_id}: no private channel was established"
            )
            self._record(contract_id, None, status, delivered=False, error="no private channel")
            return None

        payload = json.dumps({"status": status, "report": report.to_dict()}).encode("utf-8")
        try:
            reference = self.store.store(payload)
            self.transport.append_text(channel_id, hcs10.result_pointer(self.operator_id, reference, contract_id))
        except HCSError as e:
            logger.error(f"Failed to deliver {status} report for {contract_id} to {channel_id}: {e}")
            self._record(contract_id, channel_id, status, delivered=False, payload_bytes=len(payload), error=str(e))
            raise DeliveryError(channel_id, str(e)) from e

        logger.info(f"Delivered {status} report for {contract_id} to {channel_id} ({len(payload)} bytes, {reference})")
        self._record(contract_id, channel_id, status, delivered=True, reference=reference, payload_bytes=len(payload))
        return reference

    def _record(self, contract_id, channel_id, status, delivered, reference=None, payload_bytes=0, error=None):
        if self.session_logger is None:
            return
        self.session_logger.log_delivery(
            contract_id=contract_id,
            channel_id=channel_id,
            status=status,
            delivered=delivered,
            reference=reference,
            payload_bytes=payload_bytes,
            error=error,
        )
