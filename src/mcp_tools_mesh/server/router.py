"""
Call Router - resolves qualified ids to owning nodes and serves the call

Every call follows the same shape: check the caller, resolve the target
descriptor, check the owner's liveness, pick an execution target, run it with
a timeout. Failures come back as structured results carrying an error code;
nothing is raised to the transport.
"""

import asyncio
import logging
from collections.abc import Callable
from typing import Any

from ..shared.exceptions import (
    ExecutionFailedError,
    ExecutionTimeoutError,
    MeshError,
    TargetUnavailableError,
    UnknownCallerError,
    UnknownNodeError,
)
from .executors import (
    BoundTarget,
    ExecutionTarget,
    ExecutorChannel,
    NoTarget,
    SimulatedTarget,
    SimulationRegistry,
    compact_json,
    maybe_await,
)
from .liveness import LivenessTracker
from .models import (
    CallToolResult,
    GetPromptResult,
    PromptDescriptor,
    PromptMessage,
    ReadResourceResult,
    ResourceContent,
    ResourceDescriptor,
    TextContent,
    ToolDescriptor,
)
from .registry import RegistryStore

logger = logging.getLogger(__name__)


class CallRouter:
    """Routes tool, resource and prompt calls between nodes."""

    def __init__(
        self,
        store: RegistryStore,
        liveness: LivenessTracker,
        simulations: SimulationRegistry | None = None,
        executor_timeout: float = 30.0,
        simulation_enabled: bool = True,
    ):
        self.store = store
        self.liveness = liveness
        self.simulations = simulations or SimulationRegistry()
        self.executor_timeout = executor_timeout
        self.simulation_enabled = simulation_enabled
        self._bindings: dict[str, ExecutorChannel] = {}

    # Executor bindings

    def bind_executor(self, node_id: str, channel: ExecutorChannel) -> None:
        """Attach a real execution channel to a known node."""
        if not self.store.has_node(node_id):
            raise UnknownNodeError(f"Unknown node: {node_id}")
        self._bindings[node_id] = channel
        logger.info(f"Executor bound for node {node_id}")

    def unbind_executor(self, node_id: str) -> ExecutorChannel | None:
        channel = self._bindings.pop(node_id, None)
        if channel is not None:
            logger.info(f"Executor released for node {node_id}")
        return channel

    def has_executor(self, node_id: str) -> bool:
        return node_id in self._bindings

    def resolve_target(
        self, owner_node_id: str, simulated: Callable[..., Any] | None
    ) -> ExecutionTarget:
        """Pick how a call to ``owner_node_id`` will be served."""
        channel = self._bindings.get(owner_node_id)
        if channel is not None:
            return BoundTarget(channel)
        if self.simulation_enabled and simulated is not None:
            return SimulatedTarget(simulated)
        return NoTarget()

    # Calls

    async def call_tool(
        self, from_node: str, tool_id: str, args: dict[str, Any] | None = None
    ) -> CallToolResult:
        """Invoke ``tool_id`` on behalf of ``from_node``."""
        args = args or {}
        logger.info(f"Tool call: {from_node} -> {tool_id}")
        try:
            self._check_caller(from_node)
            tool = self.store.lookup_tool(tool_id)
            self._check_owner(tool)
            target = self.resolve_target(
                tool.node_id, self.simulations.tool(tool_id)
            )

            if isinstance(target, BoundTarget):
                result = await self._run(
                    lambda: target.channel.invoke_tool(tool.name, args)
                )
            elif isinstance(target, SimulatedTarget):
                result = await self._run(lambda: target.fn(args))
            else:
                self._require_simulation(tool)
                result = f"Simulated execution of {tool_id} with {compact_json(args)}"
        except MeshError as e:
            logger.warning(f"Tool call {from_node} -> {tool_id} failed: {e.message}")
            return CallToolResult(
                success=False,
                content=[TextContent(text=e.to_error_string())],
                error=e.to_error_string(),
                error_code=e.code,
            )

        text = result if isinstance(result, str) else compact_json(result)
        return CallToolResult(
            success=True, content=[TextContent(text=text)], result=result
        )

    async def read_resource(self, from_node: str, uri: str) -> ReadResourceResult:
        """Read ``uri`` on behalf of ``from_node``."""
        logger.info(f"Resource read: {from_node} -> {uri}")
        try:
            self._check_caller(from_node)
            resource = self.store.lookup_resource(uri)
            self._check_owner(resource)
            target = self.resolve_target(
                resource.node_id, self.simulations.resource(uri)
            )

            if isinstance(target, BoundTarget):
                raw = await self._run(lambda: target.channel.read_resource(uri))
            elif isinstance(target, SimulatedTarget):
                raw = await self._run(target.fn)
            else:
                self._require_simulation(resource)
                raw = f"Simulated contents of {uri}"
            contents = self._to_contents(resource, raw)
        except MeshError as e:
            logger.warning(f"Resource read {from_node} -> {uri} failed: {e.message}")
            return ReadResourceResult(
                success=False, error=e.to_error_string(), error_code=e.code
            )

        return ReadResourceResult(success=True, contents=contents)

    async def get_prompt(
        self, from_node: str, prompt_id: str, args: dict[str, Any] | None = None
    ) -> GetPromptResult:
        """Render ``prompt_id`` on behalf of ``from_node``."""
        args = args or {}
        logger.info(f"Prompt request: {from_node} -> {prompt_id}")
        try:
            self._check_caller(from_node)
            prompt = self.store.lookup_prompt(prompt_id)
            self._check_owner(prompt)
            missing = [
                arg.name
                for arg in prompt.arguments
                if arg.required and arg.name not in args
            ]
            if missing:
                raise ExecutionFailedError(
                    f"Missing required argument(s) for {prompt_id}: "
                    f"{', '.join(missing)}"
                )
            target = self.resolve_target(
                prompt.node_id, self.simulations.prompt(prompt_id)
            )

            if isinstance(target, BoundTarget):
                raw = await self._run(
                    lambda: target.channel.get_prompt(prompt.prompt_id, args)
                )
            elif isinstance(target, SimulatedTarget):
                raw = await self._run(lambda: target.fn(args))
            else:
                self._require_simulation(prompt)
                raw = f"Simulated prompt {prompt_id} with {compact_json(args)}"
            messages = self._to_messages(raw)
        except MeshError as e:
            logger.warning(
                f"Prompt request {from_node} -> {prompt_id} failed: {e.message}"
            )
            return GetPromptResult(
                success=False, error=e.to_error_string(), error_code=e.code
            )

        return GetPromptResult(success=True, messages=messages)

    # Internals

    def _check_caller(self, from_node: str) -> None:
        if not self.store.has_node(from_node):
            raise UnknownCallerError(f"Unknown caller node: {from_node}")

    def _check_owner(
        self, descriptor: ToolDescriptor | ResourceDescriptor | PromptDescriptor
    ) -> None:
        if not self.liveness.is_active(descriptor.node_id):
            raise TargetUnavailableError(
                f"Node {descriptor.node_id} is not available"
            )

    def _require_simulation(
        self, descriptor: ToolDescriptor | ResourceDescriptor | PromptDescriptor
    ) -> None:
        if not self.simulation_enabled:
            raise TargetUnavailableError(
                f"Node {descriptor.node_id} has no executor bound"
            )

    async def _run(self, invoke: Callable[[], Any]) -> Any:
        """Call an executor and await its result with the configured timeout."""
        try:
            return await asyncio.wait_for(
                maybe_await(invoke()), timeout=self.executor_timeout
            )
        except asyncio.TimeoutError:
            raise ExecutionTimeoutError(
                f"Executor did not answer within {self.executor_timeout}s"
            )
        except MeshError:
            raise
        except Exception as e:
            raise ExecutionFailedError(str(e) or type(e).__name__)

    def _to_contents(
        self, resource: ResourceDescriptor, raw: Any
    ) -> list[ResourceContent]:
        if isinstance(raw, str):
            return [
                ResourceContent(
                    uri=resource.uri, mime_type=resource.mime_type, text=raw
                )
            ]
        if isinstance(raw, dict):
            raw = [raw]
        if not isinstance(raw, list):
            return [
                ResourceContent(
                    uri=resource.uri,
                    mime_type="application/json",
                    text=compact_json(raw),
                )
            ]

        contents = []
        try:
            for item in raw:
                if isinstance(item, ResourceContent):
                    contents.append(item)
                    continue
                item = dict(item)
                item.setdefault("uri", resource.uri)
                if "mime_type" not in item:
                    item.setdefault("mimeType", resource.mime_type)
                contents.append(ResourceContent(**item))
        except (TypeError, ValueError) as e:
            raise ExecutionFailedError(f"Malformed resource contents: {e}")
        return contents

    def _to_messages(self, raw: Any) -> list[PromptMessage]:
        if isinstance(raw, str):
            return [PromptMessage(role="user", content=raw)]
        if isinstance(raw, dict):
            raw = [raw]
        if not isinstance(raw, list):
            return [PromptMessage(role="user", content=compact_json(raw))]

        try:
            return [
                m if isinstance(m, PromptMessage) else PromptMessage(**m) for m in raw
            ]
        except (TypeError, ValueError) as e:
            raise ExecutionFailedError(f"Malformed prompt messages: {e}")
