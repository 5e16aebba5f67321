"""transport-level error taxonomy"""


class HCSError(Exception):
    """base class for consensus-service errors"""


class ParseError(HCSError):
    """inbound payload is malformed or irrelevant; skip it, never retry"""


class TransportError(HCSError):
    """channel create/append/subscribe did not reach terminal success"""


class PayloadTooLarge(TransportError):
    """single frame exceeds the transport's per-message byte limit"""

    def __init__(self, size: int, limit: int):
        super().__init__(
            f"Message size ({size} bytes) exceeds the maximum allowed size of {limit} bytes "
            f"for a single submission. Use the chunked store for larger payloads."
        )
        self.size = size
        self.limit = limit
