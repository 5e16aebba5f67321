"""graceful shutdown: signal handling, executor drain, cleanup handlers"""

import atexit
import logging
import signal
import sys
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Tuple

logger = logging.getLogger(__name__)


class ShutdownManager:
    """
    Process-wide shutdown coordinator.

    Cleanup order: executors are drained first, then cleanup handlers run
    in reverse registration order. Cleanup runs at most once.
    """

    _instance: Optional["ShutdownManager"] = None
    _lock = threading.Lock()

    def __init__(self, install_signal_handlers: bool = True):
        self._shutdown_requested = threading.Event()
        self._cleanup_handlers: List[Tuple[Callable[[], None], str]] = []
        self._executors: List[ThreadPoolExecutor] = []
        self._handlers_lock = threading.Lock()
        self._cleanup_done = threading.Event()
        self._cleanup_lock = threading.Lock()
        self._shutdown_reason: Optional[str] = None
        if install_signal_handlers:
            self._setup_signal_handlers()

    @classmethod
    def get_instance(cls) -> "ShutdownManager":
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    def _setup_signal_handlers(self):
        try:
            signal.signal(signal.SIGTERM, self._signal_handler)
            signal.signal(signal.SIGINT, self._signal_handler)
            atexit.register(self.run_cleanup)
            logger.debug("Shutdown handlers registered successfully")
        except (ValueError, OSError) as e:
            # signal.signal only works on the main thread
            logger.warning(f"Failed to register shutdown handlers: {e}")

    def _signal_handler(self, signum, frame):
        """no blocking i/o here; cleanup runs from atexit"""
        try:
            self._shutdown_reason = signal.Signals(signum).name
        except (ValueError, AttributeError):
            self._shutdown_reason = f"signal_{signum}"
        self._shutdown_requested.set()
        sys.exit(128 + signum)

    def register_cleanup(self, handler: Callable[[], None], name: Optional[str] = None):
        handler_name = name or getattr(handler, '__name__', 'unknown')
        with self._handlers_lock:
            self._cleanup_handlers.append((handler, handler_name))
        logger.debug(f"Registered cleanup handler: {handler_name}")

    def register_executor(self, executor: ThreadPoolExecutor):
        with self._handlers_lock:
            self._executors.append(executor)
        logger.debug(f"Registered executor for shutdown: {id(executor)}")

    def is_shutdown_requested(self) -> bool:
        return self._shutdown_requested.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        """block until shutdown is requested; returns True if it was"""
        return self._shutdown_requested.wait(timeout)

    def request_shutdown(self, reason: str = "programmatic"):
        logger.info(f"Programmatic shutdown requested: {reason}")
        self._shutdown_reason = reason
        self._shutdown_requested.set()

    def run_cleanup(self):
        if not self._cleanup_lock.acquire(blocking=False):
            logger.debug("Cleanup already in progress (another thread), skipping")
            return

        try:
            if self._cleanup_done.is_set():
                return

            logger.info(f"Running shutdown cleanup (reason: {self._shutdown_reason or 'unknown'})...")

            with self._handlers_lock:
                executors = list(self._executors)
                handlers = list(self._cleanup_handlers)

            for i, executor in enumerate(executors):
                try:
                    # in-flight sessions finish; queued envelopes are dropped and
                    # will be redelivered from the checkpoint on restart
                    executor.shutdown(wait=True, cancel_futures=True)
                    logger.debug(f"Executor {i + 1}/{len(executors)} shut down")
                except Exception as e:
                    logger.warning(f"Error shutting down executor {id(executor)}: {e}")

            for handler, name in reversed(handlers):
                try:
                    logger.debug(f"Running cleanup: {name}")
                    handler()
                except Exception as e:
                    logger.warning(f"Error in cleanup handler '{name}': {e}", exc_info=True)

            self._cleanup_done.set()
            logger.info("Shutdown cleanup complete")
        finally:
            self._cleanup_lock.release()


def get_shutdown_manager() -> ShutdownManager:
    return ShutdownManager.get_instance()


def register_cleanup(handler: Callable[[], None], name: Optional[str] = None):
    get_shutdown_manager().register_cleanup(handler, name)


def register_executor(executor: ThreadPoolExecutor):
    get_shutdown_manager().register_executor(executor)
