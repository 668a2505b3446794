"""
Shared components used by both the hub and node clients.
"""

from .configuration import MeshConfig, MeshConfigManager
from .exceptions import (
    ConfigurationError,
    ExecutionFailedError,
    ExecutionTimeoutError,
    InvalidConfigurationError,
    MeshError,
    PersistenceError,
    RegistrationError,
    TargetUnavailableError,
    TransportError,
    UnknownCallerError,
    UnknownNodeError,
    UnknownTargetError,
)

__all__ = [
    "MeshConfig",
    "MeshConfigManager",
    "MeshError",
    "UnknownNodeError",
    "UnknownCallerError",
    "UnknownTargetError",
    "TargetUnavailableError",
    "ExecutionFailedError",
    "ExecutionTimeoutError",
    "TransportError",
    "PersistenceError",
    "RegistrationError",
    "ConfigurationError",
    "InvalidConfigurationError",
]
