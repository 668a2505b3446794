"""
Node Client - keeps one node connected and registered with the hub

State machine:

    DISCONNECTED -> CONNECTING -> REGISTERING -> ACTIVE
    ACTIVE -> RECONNECTING -> CONNECTING        (heartbeat failure)
    any state -> DISCONNECTED                   (shutdown or fatal error)

While ACTIVE two background tasks run: a heartbeat emitter and a discovery
poller that reports when other nodes become available or unavailable. A
heartbeat that cannot reach the hub, or that the hub answers with
``UnknownNode``, restarts the full connect and register sequence. Connection
attempts are bounded by ``reconnect_max_attempts``; once exhausted the client
stops with ``fatal_error`` set.
"""

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from ..server.executors import LocalExecutorChannel, maybe_await
from ..server.models import (
    CallToolResult,
    GetPromptResult,
    PromptDescriptor,
    ReadResourceResult,
    ResourceDescriptor,
    ToolDescriptor,
)
from ..shared.configuration import MeshConfig
from ..shared.exceptions import (
    ExecutionFailedError,
    MeshError,
    RegistrationError,
    TransportError,
    UnknownNodeError,
)
from .transport import Transport

logger = logging.getLogger(__name__)

AvailabilityCallback = Callable[[str, bool], Any]


class NodeState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    REGISTERING = "registering"
    ACTIVE = "active"
    RECONNECTING = "reconnecting"


@dataclass
class LocalTool:
    """A tool this node offers; ``execute(args)`` may be sync or async."""

    name: str
    execute: Callable[[dict[str, Any]], Any]
    description: str = ""
    input_schema: dict[str, Any] | None = None


@dataclass
class LocalResource:
    uri: str
    name: str
    read: Callable[[], Any]
    description: str = ""
    mime_type: str = "text/plain"


@dataclass
class LocalPrompt:
    prompt_id: str
    name: str
    render: Callable[[dict[str, Any]], Any]
    description: str = ""
    arguments: list[dict[str, Any]] = field(default_factory=list)


class NodeClient:
    """Client side of one mesh node."""

    def __init__(
        self,
        node_id: str,
        transport: Transport,
        kind: str = "client",
        tools: list[LocalTool] | None = None,
        resources: list[LocalResource] | None = None,
        prompts: list[LocalPrompt] | None = None,
        config: MeshConfig | None = None,
        on_availability_change: AvailabilityCallback | None = None,
        expose_executor: bool = True,
    ):
        self.node_id = node_id
        self.transport = transport
        self.kind = kind
        self.tools = {tool.name: tool for tool in tools or []}
        self.resources = {resource.uri: resource for resource in resources or []}
        self.prompts = {prompt.prompt_id: prompt for prompt in prompts or []}
        self.config = config or MeshConfig()
        self.on_availability_change = on_availability_change
        self.expose_executor = expose_executor

        self.state = NodeState.DISCONNECTED
        self.fatal_error: MeshError | None = None
        self.available_nodes: set[str] = set()

        self._attempts = 0
        self._executor_callback_id: str | None = None
        self._heartbeat_task: asyncio.Task | None = None
        self._discovery_task: asyncio.Task | None = None
        self._reconnect_task: asyncio.Task | None = None
        self._shutdown_event = asyncio.Event()
        self._closed_event = asyncio.Event()

    @property
    def is_active(self) -> bool:
        return self.state == NodeState.ACTIVE

    # Lifecycle

    async def connect(self) -> bool:
        """Connect, register and start the background tasks.

        Returns True once ACTIVE. Returns False when every attempt failed
        (``fatal_error`` is then set) or when shutdown was requested.
        """
        self.fatal_error = None
        self._shutdown_event.clear()
        self._closed_event.clear()
        return await self._connect_with_retries()

    async def shutdown(self) -> None:
        """Stop everything and close the transport. Safe from any state."""
        if self._shutdown_event.is_set() and self.state == NodeState.DISCONNECTED:
            return
        self._shutdown_event.set()
        was_active = self.state == NodeState.ACTIVE

        current = asyncio.current_task()
        if self._reconnect_task and self._reconnect_task is not current:
            self._reconnect_task.cancel()
            try:
                await self._reconnect_task
            except asyncio.CancelledError:
                pass
        self._reconnect_task = None
        await self._stop_loops()

        if was_active:
            try:
                await self.transport.request("unregister-node", {"id": self.node_id})
            except TransportError as e:
                logger.debug(f"[{self.node_id}] Could not unregister on shutdown: {e}")

        await self._close_transport()
        self._set_state(NodeState.DISCONNECTED)
        self._closed_event.set()
        logger.info(f"[{self.node_id}] Connection closed")

    async def wait_closed(self) -> None:
        """Wait until the client is shut down or gave up reconnecting."""
        await self._closed_event.wait()

    def reconnect_delay(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based)."""
        delay = self.config.reconnect_delay * (
            self.config.reconnect_backoff ** (attempt - 1)
        )
        return min(delay, self.config.reconnect_max_delay)

    # Hub calls

    async def list_tools(self) -> list[ToolDescriptor]:
        result = await self.transport.request("list-tools", {})
        return [ToolDescriptor.model_validate(item) for item in result]

    async def list_resources(self) -> list[ResourceDescriptor]:
        result = await self.transport.request("list-resources", {})
        return [ResourceDescriptor.model_validate(item) for item in result]

    async def list_prompts(self) -> list[PromptDescriptor]:
        result = await self.transport.request("list-prompts", {})
        return [PromptDescriptor.model_validate(item) for item in result]

    async def call_tool(
        self, tool_id: str, args: dict[str, Any] | None = None
    ) -> CallToolResult:
        """Call a tool on another node through the hub."""
        logger.info(f"[{self.node_id}] Calling tool {tool_id}")
        result = await self.transport.request(
            "call-remote-tool",
            {"fromNode": self.node_id, "toolId": tool_id, "args": args or {}},
        )
        return CallToolResult.model_validate(result)

    async def read_resource(self, uri: str) -> ReadResourceResult:
        result = await self.transport.request(
            "read-resource", {"fromNode": self.node_id, "uri": uri}
        )
        return ReadResourceResult.model_validate(result)

    async def get_prompt(
        self, prompt_id: str, arguments: dict[str, Any] | None = None
    ) -> GetPromptResult:
        result = await self.transport.request(
            "get-prompt",
            {
                "fromNode": self.node_id,
                "promptId": prompt_id,
                "arguments": arguments or {},
            },
        )
        return GetPromptResult.model_validate(result)

    async def check_tool_availability(self, tool_id: str) -> bool:
        """Whether ``tool_id`` is currently listed by the hub."""
        try:
            tools = await self.list_tools()
        except TransportError as e:
            logger.warning(f"[{self.node_id}] Cannot check {tool_id}: {e}")
            return False
        return any(tool.id == tool_id for tool in tools)

    # Local execution, used by executor channels

    async def execute_local_tool(self, name: str, args: dict[str, Any]) -> Any:
        tool = self.tools.get(name)
        if tool is None:
            raise ExecutionFailedError(f"Tool {name} is not served by {self.node_id}")
        logger.info(f"[{self.node_id}] Executing local tool {name}")
        return await maybe_await(tool.execute(args))

    async def read_local_resource(self, uri: str) -> Any:
        resource = self.resources.get(uri)
        if resource is None:
            raise ExecutionFailedError(
                f"Resource {uri} is not served by {self.node_id}"
            )
        return await maybe_await(resource.read())

    async def render_local_prompt(self, prompt_id: str, args: dict[str, Any]) -> Any:
        prompt = self.prompts.get(prompt_id)
        if prompt is None:
            raise ExecutionFailedError(
                f"Prompt {prompt_id} is not served by {self.node_id}"
            )
        return await maybe_await(prompt.render(args))

    def executor_channel(self) -> LocalExecutorChannel:
        return LocalExecutorChannel(
            self.execute_local_tool,
            self.read_local_resource,
            self.render_local_prompt,
        )

    # Connection sequence

    async def _connect_with_retries(self) -> bool:
        self._attempts = 0
        while not self._shutdown_event.is_set():
            self._set_state(NodeState.CONNECTING)
            try:
                await self.transport.connect()
                logger.info(f"[{self.node_id}] Connected to hub")
                self._set_state(NodeState.REGISTERING)
                await self._register()
            except MeshError as e:
                logger.error(f"[{self.node_id}] Connection failed: {e.message}")
                await self._close_transport()
                if self._attempts >= self.config.reconnect_max_attempts:
                    return self._give_up(e)
                self._attempts += 1
                delay = self.reconnect_delay(self._attempts)
                logger.info(
                    f"[{self.node_id}] Reconnection attempt {self._attempts}/"
                    f"{self.config.reconnect_max_attempts} in {delay:.1f}s"
                )
                if await self._wait_for_shutdown(delay):
                    break
                continue

            self._attempts = 0
            self._set_state(NodeState.ACTIVE)
            self._start_loops()
            return True
        return False

    async def _register(self) -> None:
        """Register the node, then each capability, then the executor channel.

        Only a rejected ``register-node`` aborts; other failures are logged.
        """
        result = await self.transport.request(
            "register-node",
            {
                "id": self.node_id,
                "type": self.kind,
                "capabilities": {
                    "tools": bool(self.tools),
                    "resources": bool(self.resources),
                    "prompts": bool(self.prompts),
                },
            },
        )
        if not result.get("success"):
            raise RegistrationError(result.get("error") or "Unknown error")
        logger.info(f"[{self.node_id}] Node registered")

        logger.info(f"[{self.node_id}] Registering {len(self.tools)} tool(s)")
        for tool in self.tools.values():
            params = {"nodeId": self.node_id, "toolName": tool.name}
            params["description"] = tool.description
            if tool.input_schema is not None:
                params["inputSchema"] = tool.input_schema
            await self._register_capability("register-tool", tool.name, params)

        for resource in self.resources.values():
            await self._register_capability(
                "register-resource",
                resource.uri,
                {
                    "nodeId": self.node_id,
                    "uri": resource.uri,
                    "name": resource.name,
                    "description": resource.description,
                    "mimeType": resource.mime_type,
                },
            )

        for prompt in self.prompts.values():
            await self._register_capability(
                "register-prompt",
                prompt.prompt_id,
                {
                    "nodeId": self.node_id,
                    "promptId": prompt.prompt_id,
                    "name": prompt.name,
                    "description": prompt.description,
                    "arguments": prompt.arguments,
                },
            )

        if self.expose_executor:
            self._executor_callback_id = await self.transport.expose_executor(
                self.node_id, self.executor_channel()
            )
            await self._bind_executor()

    async def _bind_executor(self) -> None:
        callback_id = self._executor_callback_id
        if callback_id:
            await self._register_capability(
                "register-executor",
                callback_id,
                {"nodeId": self.node_id, "callbackId": callback_id},
            )

    async def _register_capability(
        self, method: str, label: str, params: dict[str, Any]
    ) -> None:
        result = await self.transport.request(method, params)
        if result.get("success"):
            logger.debug(f"[{self.node_id}] {method} {label}: ok")
        else:
            logger.error(
                f"[{self.node_id}] {method} {label} failed: "
                f"{result.get('error') or 'Unknown error'}"
            )

    def _give_up(self, error: MeshError) -> bool:
        logger.error(
            f"[{self.node_id}] Maximum reconnection attempts reached, giving up"
        )
        self.fatal_error = error
        self._set_state(NodeState.DISCONNECTED)
        self._closed_event.set()
        return False

    # Background tasks

    def _start_loops(self) -> None:
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())
        self._discovery_task = asyncio.create_task(self._discovery_loop())
        logger.info(
            f"[{self.node_id}] Heartbeat started "
            f"(interval: {self.config.heartbeat_interval}s)"
        )

    async def _stop_loops(self) -> None:
        current = asyncio.current_task()
        for task in (self._heartbeat_task, self._discovery_task):
            if task is None or task is current:
                continue
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._heartbeat_task = None
        self._discovery_task = None

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(self.config.heartbeat_interval)
            try:
                result = await self.transport.request(
                    "heartbeat", {"id": self.node_id}
                )
                # Staleness drops the hub's executor binding
                if result.get("success") and result.get("executorBound") is False:
                    if self._executor_callback_id:
                        logger.info(f"[{self.node_id}] Re-binding executor")
                        await self._bind_executor()
            except TransportError as e:
                logger.warning(f"[{self.node_id}] Heartbeat failed: {e.message}")
                self._begin_reconnect()
                return

            if result.get("success"):
                logger.trace(f"[{self.node_id}] Heartbeat sent")
            elif result.get("errorCode") == UnknownNodeError.code:
                logger.warning(
                    f"[{self.node_id}] Hub does not know this node, re-registering"
                )
                self._begin_reconnect()
                return
            else:
                logger.error(
                    f"[{self.node_id}] Heartbeat rejected: {result.get('error')}"
                )

    async def _discovery_loop(self) -> None:
        while True:
            try:
                await self.refresh_availability()
            except (TransportError, ValueError) as e:
                logger.warning(f"[{self.node_id}] Discovery failed: {e}")
            await asyncio.sleep(self.config.discovery_interval)

    async def refresh_availability(self) -> set[str]:
        """Poll the hub and report nodes that appeared or disappeared."""
        owners: set[str] = set()
        for items in (
            await self.list_tools(),
            await self.list_resources(),
            await self.list_prompts(),
        ):
            owners.update(item.node_id for item in items)
        owners.discard(self.node_id)

        for node_id in sorted(owners - self.available_nodes):
            logger.info(f"[{self.node_id}] Node {node_id} became available")
            await self._notify_availability(node_id, True)
        for node_id in sorted(self.available_nodes - owners):
            logger.info(f"[{self.node_id}] Node {node_id} became unavailable")
            await self._notify_availability(node_id, False)

        self.available_nodes = owners
        return owners

    async def _notify_availability(self, node_id: str, available: bool) -> None:
        if self.on_availability_change is None:
            return
        try:
            await maybe_await(self.on_availability_change(node_id, available))
        except Exception as e:
            logger.error(f"[{self.node_id}] Availability callback failed: {e}")

    def _begin_reconnect(self) -> None:
        if self._shutdown_event.is_set():
            return
        self._set_state(NodeState.RECONNECTING)
        self._reconnect_task = asyncio.create_task(self._reconnect())

    async def _reconnect(self) -> None:
        await self._stop_loops()
        await self._close_transport()
        if await self._connect_with_retries():
            logger.info(f"[{self.node_id}] Reconnected to hub")

    # Helpers

    async def _wait_for_shutdown(self, delay: float) -> bool:
        """Sleep ``delay`` seconds; return True early if shutdown is requested."""
        try:
            await asyncio.wait_for(self._shutdown_event.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    async def _close_transport(self) -> None:
        try:
            await self.transport.close()
        except TransportError as e:
            logger.debug(f"[{self.node_id}] Error closing transport: {e}")

    def _set_state(self, state: NodeState) -> None:
        if state != self.state:
            logger.debug(f"[{self.node_id}] {self.state.value} -> {state.value}")
            self.state = state
