class RelayError(Exception):
    """Base class for errors raised by the relay subsystem."""


class TargetUnavailableError(RelayError):
    def __init__(self, server_id: str, reason: str = "offline"):
        super().__init__(f"Target server '{server_id}' is not available ({reason})")
        self.server_id = server_id
        self.reason = reason


class EnqueueError(RelayError):
    """The request row could not be written to the store."""
