"""
Exception types for the scan scheduler, dispatch queue and diff engine.
"""


class NetDeltaError(Exception):
    """Base exception for all netdelta errors"""


class ValidationError(NetDeltaError):
    """Malformed input: bad scan request, schedule definition or snapshot pair"""


class NotFoundError(NetDeltaError):
    """Raised when an operation references an unknown identity.

    Attributes:
        kind: Kind of object that was looked up (e.g. "scheduled scan").
        identity: The identity that was not found.
    """

    def __init__(self, kind: str, identity: str):
        self.kind = kind
        self.identity = identity
        super().__init__(f"{kind.capitalize()} {identity} not found")


class CapacityError(NetDeltaError):
    """Dispatch queue backlog is full (or the queue is shut down)"""


class ScheduleBusyError(NetDeltaError):
    """A scheduled scan already has an execution in flight"""

    def __init__(self, scan_id: str):
        self.scan_id = scan_id
        super().__init__(f"Scheduled scan {scan_id} is already running")


class ExecutionError(NetDeltaError):
    """The scan executor failed for a request.

    Attributes:
        request_id: ID of the failed scan request.
    """

    def __init__(self, message: str, request_id: str = None):
        self.request_id = request_id
        super().__init__(message)


class ScanTimeoutError(ExecutionError):
    """The scan executor did not finish before the request timeout"""


class ScanCancelledError(ExecutionError):
    """A queued request was dropped before it was admitted"""
