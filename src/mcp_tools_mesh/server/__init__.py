"""
Mesh hub: registry store, liveness tracking, call routing and persistence.
"""

from .executors import (
    ChannelTable,
    ExecutorChannel,
    HttpExecutorChannel,
    LocalExecutorChannel,
    SimulationRegistry,
    register_demo_simulations,
)
from .hub import MeshHub
from .hub_server import HubServer, create_app
from .liveness import LivenessTracker
from .models import (
    CallToolResult,
    GetPromptResult,
    Node,
    NodeCapabilities,
    NodeKind,
    PromptDescriptor,
    ReadResourceResult,
    ResourceDescriptor,
    ToolDescriptor,
)
from .persistence import RegistrySnapshotter
from .registry import RegistryStore
from .router import CallRouter

__all__ = [
    "MeshHub",
    "HubServer",
    "create_app",
    "RegistryStore",
    "LivenessTracker",
    "CallRouter",
    "RegistrySnapshotter",
    "ExecutorChannel",
    "LocalExecutorChannel",
    "HttpExecutorChannel",
    "ChannelTable",
    "SimulationRegistry",
    "register_demo_simulations",
    "Node",
    "NodeKind",
    "NodeCapabilities",
    "ToolDescriptor",
    "ResourceDescriptor",
    "PromptDescriptor",
    "CallToolResult",
    "ReadResourceResult",
    "GetPromptResult",
]
