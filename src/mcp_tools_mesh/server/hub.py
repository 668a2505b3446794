"""
Mesh Hub - rendezvous service for nodes

Composes the registry store, liveness tracker, call router and snapshotter
behind one method per wire call. Every method returns plain JSON-ready
data; errors are reported in the result, never raised to the transport.

The same calls are exposed as MCP tools through FastMCP, so the hub can be
served over stdio to any MCP client, and through ``handle()`` for the HTTP
server and in-process transport.
"""

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime
from typing import Any

from fastmcp import FastMCP
from pydantic import ValidationError

from ..shared.configuration import MeshConfig
from ..shared.exceptions import MeshError, UnknownNodeError
from .executors import ChannelTable, SimulationRegistry, register_demo_simulations
from .liveness import LivenessTracker
from .models import NodeCapabilities, OperationResult
from .persistence import RegistrySnapshotter
from .registry import RegistryStore
from .router import CallRouter

logger = logging.getLogger(__name__)

Handler = Callable[..., Awaitable[Any]]


def _failure(error: Exception) -> dict[str, Any]:
    if isinstance(error, MeshError):
        result = OperationResult(
            success=False, error=error.to_error_string(), error_code=error.code
        )
    else:
        result = OperationResult(
            success=False,
            error=f"InvalidRequest: {error}",
            error_code="InvalidRequest",
        )
    return result.to_wire()


def _success() -> dict[str, Any]:
    return OperationResult(success=True).to_wire()


class MeshHub:
    """Hub facade owning every piece of registry state for one process."""

    def __init__(
        self,
        config: MeshConfig | None = None,
        clock: Callable[[], datetime] | None = None,
        name: str = "mcp-tools-mesh-hub",
        persist: bool = True,
    ):
        self.config = config or MeshConfig()
        self.store = RegistryStore(clock=clock)
        self.liveness = LivenessTracker(
            self.store,
            heartbeat_timeout=self.config.heartbeat_timeout,
            sweep_interval=self.config.sweep_interval,
            clock=clock,
        )
        self.simulations = SimulationRegistry()
        self.router = CallRouter(
            self.store,
            self.liveness,
            simulations=self.simulations,
            executor_timeout=self.config.executor_timeout,
            simulation_enabled=self.config.simulation_enabled,
        )
        self.channels = ChannelTable()
        self.snapshotter: RegistrySnapshotter | None = None
        if persist and self.config.state_file:
            self.snapshotter = RegistrySnapshotter(
                self.store,
                self.config.state_file,
                interval=self.config.snapshot_interval,
            )

        self.liveness.add_stale_listener(self.router.unbind_executor)

        self.mcp = FastMCP(name)
        self._register_mcp_tools()

        self._handlers: dict[str, tuple[Handler, dict[str, str]]] = {
            "register-node": (
                self.register_node,
                {"id": "node_id", "type": "kind", "capabilities": "capabilities"},
            ),
            "unregister-node": (self.unregister_node, {"id": "node_id"}),
            "register-tool": (
                self.register_tool,
                {
                    "nodeId": "node_id",
                    "toolName": "tool_name",
                    "description": "description",
                    "inputSchema": "input_schema",
                },
            ),
            "register-resource": (
                self.register_resource,
                {
                    "nodeId": "node_id",
                    "uri": "uri",
                    "name": "name",
                    "description": "description",
                    "mimeType": "mime_type",
                },
            ),
            "register-prompt": (
                self.register_prompt,
                {
                    "nodeId": "node_id",
                    "promptId": "prompt_id",
                    "name": "name",
                    "description": "description",
                    "arguments": "arguments",
                },
            ),
            "register-executor": (
                self.register_executor,
                {"nodeId": "node_id", "callbackId": "callback_id"},
            ),
            "heartbeat": (self.heartbeat, {"id": "node_id"}),
            "list-tools": (self.list_tools, {}),
            "list-resources": (self.list_resources, {}),
            "list-prompts": (self.list_prompts, {}),
            "list-nodes": (self.list_nodes, {"includeStale": "include_stale"}),
            "node-health": (self.node_health, {"id": "node_id"}),
            "call-remote-tool": (
                self.call_remote_tool,
                {"fromNode": "from_node", "toolId": "tool_id", "args": "args"},
            ),
            "read-resource": (
                self.read_resource,
                {"fromNode": "from_node", "uri": "uri"},
            ),
            "get-prompt": (
                self.get_prompt,
                {
                    "fromNode": "from_node",
                    "promptId": "prompt_id",
                    "arguments": "arguments",
                },
            ),
        }

    @property
    def methods(self) -> list[str]:
        return list(self._handlers)

    def enable_demo_simulations(self) -> None:
        """Install the demo stand-ins for the sample nodes."""
        register_demo_simulations(self.simulations)

    async def start(self) -> None:
        """Load persisted state and start the background tasks."""
        if self.snapshotter:
            await self.snapshotter.load()
            await self.snapshotter.start()
        await self.liveness.start()
        logger.info("Mesh hub started - waiting for nodes")

    async def close(self) -> None:
        """Stop background tasks and flush pending registry changes."""
        await self.liveness.stop()
        if self.snapshotter:
            await self.snapshotter.stop()
            await self.snapshotter.flush()
        logger.info("Mesh hub stopped")

    async def handle(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Dispatch a wire call by its hyphenated method name."""
        entry = self._handlers.get(method)
        if entry is None:
            return {
                "success": False,
                "error": f"Unknown method: {method}",
                "errorCode": "UnknownMethod",
            }

        handler, mapping = entry
        params = params or {}
        unexpected = [key for key in params if key not in mapping]
        if unexpected:
            return _failure(
                ValueError(
                    f"Unexpected parameter(s) for {method}: {', '.join(unexpected)}"
                )
            )
        kwargs = {mapping[key]: value for key, value in params.items()}
        try:
            return await handler(**kwargs)
        except TypeError as e:
            return _failure(ValueError(f"Invalid parameters for {method}: {e}"))

    # Registration

    async def register_node(
        self,
        node_id: str,
        kind: str = "client",
        capabilities: dict[str, bool] | None = None,
    ) -> dict[str, Any]:
        try:
            self.store.register_node(
                node_id,
                kind,
                NodeCapabilities(**capabilities) if capabilities else None,
            )
        except (MeshError, ValidationError, ValueError) as e:
            return _failure(e)
        return _success()

    async def unregister_node(self, node_id: str) -> dict[str, Any]:
        """Graceful disconnect: hide the node and drop its executor binding."""
        if not self.store.has_node(node_id):
            return _failure(UnknownNodeError(f"Unknown node: {node_id}"))
        self.store.update_liveness(node_id, False)
        self.router.unbind_executor(node_id)
        logger.info(f"Node disconnected: {node_id}")
        return _success()

    async def register_tool(
        self,
        node_id: str,
        tool_name: str,
        description: str | None = None,
        input_schema: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        try:
            self.store.register_tool(node_id, tool_name, description, input_schema)
        except (MeshError, ValidationError) as e:
            return _failure(e)
        return _success()

    async def register_resource(
        self,
        node_id: str,
        uri: str,
        name: str,
        description: str | None = None,
        mime_type: str | None = None,
    ) -> dict[str, Any]:
        try:
            self.store.register_resource(node_id, uri, name, description, mime_type)
        except (MeshError, ValidationError) as e:
            return _failure(e)
        return _success()

    async def register_prompt(
        self,
        node_id: str,
        prompt_id: str,
        name: str,
        description: str | None = None,
        arguments: list[dict[str, Any]] | None = None,
    ) -> dict[str, Any]:
        try:
            self.store.register_prompt(node_id, prompt_id, name, description, arguments)
        except (MeshError, ValidationError, TypeError) as e:
            return _failure(e)
        return _success()

    async def register_executor(self, node_id: str, callback_id: str) -> dict[str, Any]:
        try:
            channel = self.channels.resolve(
                callback_id, timeout=self.config.executor_timeout
            )
            self.router.bind_executor(node_id, channel)
        except MeshError as e:
            return _failure(e)
        return _success()

    async def heartbeat(self, node_id: str) -> dict[str, Any]:
        try:
            self.liveness.heartbeat(node_id)
        except MeshError as e:
            return _failure(e)
        return OperationResult(
            success=True, executor_bound=self.router.has_executor(node_id)
        ).to_wire()

    # Discovery

    async def list_tools(self) -> list[dict[str, Any]]:
        tools = self.store.list_tools()
        logger.debug(f"Tool list requested - {len(tools)} tool(s) available")
        return [tool.to_wire() for tool in tools]

    async def list_resources(self) -> list[dict[str, Any]]:
        return [resource.to_wire() for resource in self.store.list_resources()]

    async def list_prompts(self) -> list[dict[str, Any]]:
        return [prompt.to_wire() for prompt in self.store.list_prompts()]

    async def list_nodes(self, include_stale: bool = False) -> list[dict[str, Any]]:
        return [node.to_wire() for node in self.store.list_nodes(include_stale)]

    async def node_health(self, node_id: str) -> dict[str, Any]:
        try:
            return self.liveness.health(node_id).to_wire()
        except MeshError as e:
            return _failure(e)

    # Routing

    async def call_remote_tool(
        self, from_node: str, tool_id: str, args: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        result = await self.router.call_tool(from_node, tool_id, args)
        return result.to_wire()

    async def read_resource(self, from_node: str, uri: str) -> dict[str, Any]:
        result = await self.router.read_resource(from_node, uri)
        return result.to_wire()

    async def get_prompt(
        self,
        from_node: str,
        prompt_id: str,
        arguments: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        result = await self.router.get_prompt(from_node, prompt_id, arguments)
        return result.to_wire()

    def _register_mcp_tools(self) -> None:
        """Expose every wire call as an MCP tool using the wire parameter names."""

        @self.mcp.tool(name="register-node", description="Register a node in the mesh")
        async def register_node(
            id: str, type: str = "client", capabilities: dict[str, bool] | None = None
        ) -> dict:
            return await self.register_node(id, type, capabilities)

        @self.mcp.tool(
            name="unregister-node", description="Disconnect a node from the mesh"
        )
        async def unregister_node(id: str) -> dict:
            return await self.unregister_node(id)

        @self.mcp.tool(
            name="register-tool", description="Register a tool offered by a node"
        )
        async def register_tool(
            nodeId: str,
            toolName: str,
            description: str | None = None,
            inputSchema: dict | None = None,
        ) -> dict:
            return await self.register_tool(nodeId, toolName, description, inputSchema)

        @self.mcp.tool(
            name="register-resource",
            description="Register a resource offered by a node",
        )
        async def register_resource(
            nodeId: str,
            uri: str,
            name: str,
            description: str | None = None,
            mimeType: str | None = None,
        ) -> dict:
            return await self.register_resource(
                nodeId, uri, name, description, mimeType
            )

        @self.mcp.tool(
            name="register-prompt", description="Register a prompt offered by a node"
        )
        async def register_prompt(
            nodeId: str,
            promptId: str,
            name: str,
            description: str | None = None,
            arguments: list[dict] | None = None,
        ) -> dict:
            return await self.register_prompt(
                nodeId, promptId, name, description, arguments
            )

        @self.mcp.tool(
            name="register-executor",
            description="Bind an execution channel to a node",
        )
        async def register_executor(nodeId: str, callbackId: str) -> dict:
            return await self.register_executor(nodeId, callbackId)

        @self.mcp.tool(name="heartbeat", description="Signal that a node is alive")
        async def heartbeat(id: str) -> dict:
            return await self.heartbeat(id)

        @self.mcp.tool(
            name="list-tools", description="List tools offered by live nodes"
        )
        async def list_tools() -> list[dict]:
            return await self.list_tools()

        @self.mcp.tool(
            name="list-resources", description="List resources offered by live nodes"
        )
        async def list_resources() -> list[dict]:
            return await self.list_resources()

        @self.mcp.tool(
            name="list-prompts", description="List prompts offered by live nodes"
        )
        async def list_prompts() -> list[dict]:
            return await self.list_prompts()

        @self.mcp.tool(
            name="call-remote-tool", description="Call a tool on another node"
        )
        async def call_remote_tool(
            fromNode: str, toolId: str, args: dict | None = None
        ) -> dict:
            return await self.call_remote_tool(fromNode, toolId, args)

        @self.mcp.tool(
            name="read-resource", description="Read a resource from another node"
        )
        async def read_resource(fromNode: str, uri: str) -> dict:
            return await self.read_resource(fromNode, uri)

        @self.mcp.tool(
            name="get-prompt", description="Render a prompt from another node"
        )
        async def get_prompt(
            fromNode: str, promptId: str, arguments: dict | None = None
        ) -> dict:
            return await self.get_prompt(fromNode, promptId, arguments)
