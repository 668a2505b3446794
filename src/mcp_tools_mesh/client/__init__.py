"""
Node side of the mesh: transports, the node client state machine, the
executor callback app and the LLM tool adapter.
"""

from .adapter import MeshToolAdapter
from .executor_app import create_executor_app
from .node_client import LocalPrompt, LocalResource, LocalTool, NodeClient, NodeState
from .transport import HttpTransport, LocalTransport, Transport

__all__ = [
    "NodeClient",
    "NodeState",
    "LocalTool",
    "LocalResource",
    "LocalPrompt",
    "Transport",
    "HttpTransport",
    "LocalTransport",
    "MeshToolAdapter",
    "create_executor_app",
]
