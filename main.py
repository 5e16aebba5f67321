"""HCS audit agent entry point

listens for hcs-10 connection requests, runs a tool-calling audit session per
request and publishes the report back over hcs

usage:
    python main.py                          # listen on AGENT_INBOUND_TOPIC_ID
    python main.py --simulate "please audit 0.0.1456985"
    python main.py --show-config
"""
import argparse
import json
import logging
import sys
import tempfile
from pathlib import Path
from typing import Optional

sys.path.insert(0, str(Path(__file__).parent / "src"))

logger = logging.getLogger(__name__)

from config import config
from agent import (
    AuditListener,
    RequestRouter,
    ResultDelivery,
    RouteState,
    ToolSessionOrchestrator,
)
from agent.target_ingest import HashScanSourceFetcher
from hcs import ChunkedChannelStore, InMemoryChannelTransport, ResumeCheckpoint, hcs10
from hcs.chunked_store import parse_reference
from hcs.errors import HCSError, ParseError
from hcs.transport import ChannelTransport
from interfaces import DynamicTestRunner, SourceFetcher, StaticToolRunner
from sandbox import DockerForgeRunner, DockerStaticToolRunner
from utils.llm_backend import LLMBackend, create_backend
from utils.logging import SessionLogger, setup_logging
from utils.shutdown import get_shutdown_manager, register_cleanup

SIMULATED_REQUESTER = "0.0.5000@0.0.5001"
SIMULATED_OPERATOR_ACCOUNT = "0.0.4999"


def build_listener(
    transport: ChannelTransport,
    inbound_channel_id: str,
    operator_id: str,
    backend: LLMBackend,
    checkpoint: ResumeCheckpoint,
    session_logger: Optional[SessionLogger] = None,
    workers: Optional[int] = None,
    fetcher: Optional[SourceFetcher] = None,
    static_runner: Optional[StaticToolRunner] = None,
    dynamic_runner: Optional[DynamicTestRunner] = None,
    register_for_shutdown: bool = True,
    collect_results: bool = False,
) -> AuditListener:
    """wire transport, collaborators and the session pipeline together; docker and hashscan by default"""
    delivery = ResultDelivery(transport, operator_id, ChunkedChannelStore(transport), session_logger)
    orchestrator = ToolSessionOrchestrator(
        backend=backend,
        fetcher=fetcher or HashScanSourceFetcher(),
        static_runner=static_runner or DockerStaticToolRunner(),
        dynamic_runner=dynamic_runner or DockerForgeRunner(),
        delivery=delivery,
        session_logger=session_logger,
    )
    router = RequestRouter(transport, orchestrator, delivery, inbound_channel_id, operator_id, session_logger)
    return AuditListener(transport, router, checkpoint, inbound_channel_id, workers=workers,
                         register_for_shutdown=register_for_shutdown, collect_results=collect_results)


def run_listener(args) -> int:
    try:
        config.validate()
    except ValueError as e:
        logger.error(f"AGENT FAILED TO START: {e}")
        return 1

    from hcs.hedera_transport import HederaChannelTransport

    try:
        transport = HederaChannelTransport()
    except (HCSError, ImportError) as e:
        logger.error(f"AGENT FAILED TO START: Client initialization failed critically. {e}")
        return 1
    register_cleanup(transport.close, "hedera_transport")

    backend = create_backend(args.backend, args.model)
    register_cleanup(backend.close, "llm_backend")
    listener = build_listener(
        transport,
        config.AGENT_INBOUND_TOPIC_ID,
        config.OPERATOR_ID,
        backend,
        ResumeCheckpoint(config.STATE_FILE),
        SessionLogger(),
        workers=args.workers,
    )

    logger.info(f"Listening for HCS-10 connection requests on {config.AGENT_INBOUND_TOPIC_ID}")
    try:
        listener.start()
    except HCSError as e:
        logger.error(f"AGENT FAILED TO START HCS-10 LISTENING: {e}")
        return 1

    shutdown = get_shutdown_manager()
    try:
        while not shutdown.wait(timeout=1.0):
            pass
    except KeyboardInterrupt:
        shutdown.request_shutdown("keyboard_interrupt")
    finally:
        listener.stop()
    return 0


def run_simulation(args) -> int:
    """one full session over the in-memory transport; prints the reassembled result"""
    logger.info("--- RUNNING IN SIMULATION MODE ---")
    transport = InMemoryChannelTransport()
    inbound = transport.create_channel("simulated agent inbound topic")
    operator_id = f"{inbound}@{SIMULATED_OPERATOR_ACCOUNT}"
    backend = create_backend(args.backend, args.model)

    state_dir = Path(tempfile.mkdtemp(prefix="hcs_sim_"))
    checkpoint = ResumeCheckpoint(state_dir / "state.json")
    listener = build_listener(transport, inbound, operator_id, backend, checkpoint, SessionLogger(), workers=1,
                              collect_results=True)
    listener.start()

    logger.info(f"Simulating user query: {args.simulate!r}")
    transport.append_text(inbound, hcs10.build_message(
        hcs10.OP_CONNECTION_REQUEST, SIMULATED_REQUESTER, m=args.simulate,
    ))
    listener.drain()
    listener.stop()
    backend.close()

    routed = [r for r in listener.results if r.state is not RouteState.SKIPPED]
    if not routed or routed[0].channel_id is None:
        print(json.dumps({"status": "error", "reason": "request was not routed"}, indent=2))
        return 1

    result = routed[0]
    store = ChunkedChannelStore(transport)
    for envelope in transport.read_channel(result.channel_id):
        try:
            message = json.loads(envelope.text())
            reference = parse_reference(message.get("data", ""))
        except (ValueError, ParseError):
            print(envelope.text())
            continue
        payload = json.loads(store.resolve(str(reference)))
        print(json.dumps(payload, indent=2))
        return 0 if payload.get("status") == "success" else 1

    return 1


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description="HCS audit agent - AI smart contract audits over Hedera Consensus Service"
    )
    parser.add_argument(
        "--simulate",
        metavar="QUERY",
        help="Run one audit for QUERY over an in-memory transport and print the result"
    )
    parser.add_argument(
        "--backend",
        default=None,
        help=f"Reasoning backend (default: {config.DEFAULT_BACKEND_TYPE})"
    )
    parser.add_argument(
        "--model",
        default=None,
        help=f"Model override (default: {config.DEFAULT_MODEL})"
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help=f"Concurrent audit sessions (default: {config.AUDIT_WORKERS})"
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help=f"Log level (default: {config.LOG_LEVEL})"
    )
    parser.add_argument(
        "--show-config",
        action="store_true",
        help="Print the resolved configuration and exit"
    )
    args = parser.parse_args()

    setup_logging(args.log_level)

    if args.show_config:
        print(config.summary())
        sys.exit(0)

    if args.simulate:
        sys.exit(run_simulation(args))
    sys.exit(run_listener(args))


if __name__ == "__main__":
    main()
