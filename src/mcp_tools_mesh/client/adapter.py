"""
Mesh Tool Adapter - exposes the mesh to an LLM host

Wraps an orchestrator ``NodeClient``: keeps a periodically refreshed view of
every tool, resource and prompt in the mesh, converts tools to the schema
LLM tool-use APIs expect, and runs tool calls behind an optional user
approval callback.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ..server.executors import maybe_await
from ..server.models import PromptDescriptor, ResourceDescriptor, ToolDescriptor
from ..shared.exceptions import TransportError
from .node_client import NodeClient

logger = logging.getLogger(__name__)

ApprovalCallback = Callable[[str, dict[str, Any]], bool | Awaitable[bool]]

DEFAULT_INPUT_SCHEMA = {
    "type": "object",
    "properties": {"param": {"type": "string"}},
}


class MeshToolAdapter:
    """Discovery cache and tool execution for an LLM-facing node."""

    def __init__(
        self,
        client: NodeClient,
        approval_callback: ApprovalCallback | None = None,
        refresh_interval: float = 15.0,
    ):
        self.client = client
        self.approval_callback = approval_callback
        self.refresh_interval = refresh_interval
        self.tools: list[ToolDescriptor] = []
        self.resources: list[ResourceDescriptor] = []
        self.prompts: list[PromptDescriptor] = []
        self._refresh_task: asyncio.Task | None = None

    async def start(self) -> bool:
        """Connect the client, refresh once and start periodic refreshes."""
        if not await self.client.connect():
            return False
        await self.refresh_all()
        self._refresh_task = asyncio.create_task(self._refresh_loop())
        return True

    async def stop(self) -> None:
        if self._refresh_task:
            self._refresh_task.cancel()
            try:
                await self._refresh_task
            except asyncio.CancelledError:
                pass
            self._refresh_task = None
        await self.client.shutdown()

    async def refresh_all(self) -> bool:
        """Refresh tools, resources and prompts. Keeps the old view on failure."""
        try:
            tools, resources, prompts = await asyncio.gather(
                self.client.list_tools(),
                self.client.list_resources(),
                self.client.list_prompts(),
            )
        except (TransportError, ValueError) as e:
            logger.error(f"Mesh refresh failed: {e}")
            return False

        self.tools, self.resources, self.prompts = tools, resources, prompts
        logger.debug(
            f"Mesh refreshed: {len(tools)} tool(s), {len(resources)} resource(s), "
            f"{len(prompts)} prompt(s)"
        )
        return True

    async def _refresh_loop(self) -> None:
        while True:
            await asyncio.sleep(self.refresh_interval)
            await self.refresh_all()

    def as_llm_tools(self) -> list[dict[str, Any]]:
        """Discovered tools as ``{name, description, input_schema}`` entries."""
        return [
            {
                "name": tool.id,
                "description": tool.description
                or f"Tool {tool.name} from {tool.node_id}",
                "input_schema": tool.input_schema or DEFAULT_INPUT_SCHEMA,
            }
            for tool in self.tools
        ]

    async def execute_tool(
        self, tool_id: str, args: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Run a mesh tool for the LLM.

        Returns ``{"result": text}`` or ``{"error": message}``. When the
        approval callback denies the call the hub is never contacted.
        """
        args = args or {}
        if self.approval_callback is not None:
            approved = await maybe_await(self.approval_callback(tool_id, args))
            if not approved:
                logger.info(f"User denied execution of {tool_id}")
                return {"error": "User denied tool execution"}

        try:
            result = await self.client.call_tool(tool_id, args)
        except TransportError as e:
            return {"error": e.to_error_string()}
        if not result.success:
            return {"error": result.error}
        return {"result": result.text}

    async def read_resource(self, uri: str) -> dict[str, Any]:
        try:
            result = await self.client.read_resource(uri)
        except TransportError as e:
            return {"error": e.to_error_string()}
        if not result.success:
            return {"error": result.error}
        return {"contents": [content.to_wire() for content in result.contents]}

    async def get_prompt(
        self, prompt_id: str, arguments: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        try:
            result = await self.client.get_prompt(prompt_id, arguments)
        except TransportError as e:
            return {"error": e.to_error_string()}
        if not result.success:
            return {"error": result.error}
        return {"messages": [message.to_wire() for message in result.messages]}
