"""correlation ids tying every log line of one audit session together"""
import logging
import threading
import uuid
from contextvars import ContextVar
from typing import Optional


_session_id: ContextVar[Optional[str]] = ContextVar('session_id', default=None)

# executor worker threads do not inherit context vars
_thread_local = threading.local()


def generate_session_id() -> str:
    """8-character hex string (e.g. "a3f9b2c4")"""
    return str(uuid.uuid4())[:8]


def set_session_id(session_id: str) -> None:
    _session_id.set(session_id)
    _thread_local.session_id = session_id


def get_session_id() -> Optional[str]:
    ctx_id = _session_id.get()
    if ctx_id is not None:
        return ctx_id
    return getattr(_thread_local, 'session_id', None)


def clear_session_id() -> None:
    _session_id.set(None)
    if hasattr(_thread_local, 'session_id'):
        delattr(_thread_local, 'session_id')


class auditcontext:
    """
    Scope a session id to a block.

        with auditcontext(f"seq-{envelope.sequence_number}") as session_id:
            router.handle(envelope)

    The previous id (if any) is restored on exit.
    """

    def __init__(self, session_id: Optional[str] = None):
        self.session_id = session_id or generate_session_id()
        self.previous_id: Optional[str] = None

    def __enter__(self) -> str:
        self.previous_id = get_session_id()
        set_session_id(self.session_id)
        return self.session_id

    def __exit__(self, *args):
        if self.previous_id is not None:
            set_session_id(self.previous_id)
        else:
            clear_session_id()


class SessionIdFilter(logging.Filter):
    """adds `session_id` to every record ("-" outside a session)"""

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = get_session_id() or "-"
        return True
