"""Exception types shared by the daemon, the controller and the CLIs."""

ORIGIN_REMOTE = "remote"
ORIGIN_NETWORK = "network"
ORIGIN_TIMEOUT = "timeout"
ORIGIN_CALLER = "caller"


class ConfigError(Exception):
    """Mandatory configuration is missing or invalid. Fatal at startup."""


class RemoteCallError(Exception):
    def __init__(self, message: str, status_code: int | None = None, origin: str = ORIGIN_REMOTE):
        super().__init__(message)
        self.status_code = status_code
        self.origin = origin


class CallTimeout(RemoteCallError):
    def __init__(self, message: str = "call timed out"):
        super().__init__(message, origin=ORIGIN_TIMEOUT)


class CallCancelled(RemoteCallError):
    def __init__(self, message: str = "call cancelled"):
        super().__init__(message, origin=ORIGIN_CALLER)
