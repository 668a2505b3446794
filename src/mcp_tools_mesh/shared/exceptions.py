"""Exception classes for MCP Tools Mesh operations."""


class MeshError(Exception):
    """Base exception for mesh errors.

    ``code`` is the stable identifier surfaced to callers in structured
    results, so they can branch on the cause instead of parsing messages.
    """

    code = "MeshError"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message

    def to_error_string(self) -> str:
        return f"{self.code}: {self.message}"


class UnknownNodeError(MeshError):
    """Raised when a registration or heartbeat names a node the hub never saw."""

    code = "UnknownNode"


class UnknownCallerError(MeshError):
    """Raised when the calling node is not known to the hub."""

    code = "UnknownCaller"


class UnknownTargetError(MeshError):
    """Raised when no tool, resource or prompt matches the requested id."""

    code = "UnknownTarget"


class TargetUnavailableError(MeshError):
    """Raised when the owner of a target is stale or cannot execute."""

    code = "TargetUnavailable"


class ExecutionFailedError(MeshError):
    """Raised when an executor fails while serving a call."""

    code = "ExecutionFailed"


class ExecutionTimeoutError(ExecutionFailedError):
    """Raised when an executor does not answer within the configured timeout."""

    code = "Timeout"


class TransportError(MeshError):
    """Raised when the connection to the hub is lost or unavailable."""

    code = "TransportFailure"


class RegistrationError(MeshError):
    """Raised when the hub rejects a registration."""

    code = "RegistrationRejected"


class PersistenceError(MeshError):
    """Raised when a registry snapshot cannot be written or read."""

    code = "PersistenceFailure"


class ConfigurationError(Exception):
    """Base exception for configuration errors."""

    pass


class InvalidConfigurationError(ConfigurationError):
    """Raised when configuration values fail validation."""

    pass
