"""session-level failures; collaborator failures never raise, they come back as ToolInvocationResult"""


class SessionError(Exception):
    """base for anything that ends an audit session early"""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class SessionBoundExceeded(SessionError):
    """turn cap reached without a finalize call"""

    def __init__(self, max_turns: int, reason: str = "Audit process timed out (max loops reached)."):
        super().__init__(reason)
        self.max_turns = max_turns


class UnrecoverableSessionError(SessionError):
    """engine failure, abnormal stop, or a stop with nothing left to do"""


class DeliveryError(Exception):
    """storing the result or publishing its pointer failed"""

    def __init__(self, channel_id: str, message: str):
        super().__init__(f"Delivery to {channel_id} failed: {message}")
        self.channel_id = channel_id
