"""
Execution targets for routed calls.

A call is served by exactly one of:

- ``BoundTarget``: a live executor channel registered by the owning node
- ``SimulatedTarget``: a hub-local stand-in registered for the qualified id
- ``NoTarget``: nothing registered; the router echoes the call (dev mode)
  or refuses it (simulation disabled)
"""

import inspect
import json
import logging
import uuid
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import aiohttp

from ..shared.exceptions import ExecutionFailedError, UnknownTargetError

logger = logging.getLogger(__name__)


def compact_json(value: Any) -> str:
    """JSON-encode without whitespace, e.g. ``{"param":"x"}``."""
    return json.dumps(value, separators=(",", ":"), default=str)


async def maybe_await(value: Any) -> Any:
    if inspect.isawaitable(value):
        return await value
    return value


class ExecutorChannel(ABC):
    """Hub-side handle used to invoke capabilities on a connected node."""

    @abstractmethod
    async def invoke_tool(self, name: str, args: dict[str, Any]) -> Any:
        """Run a tool on the node and return its result."""

    @abstractmethod
    async def read_resource(self, uri: str) -> Any:
        """Read a resource; returns text or a list of content dicts."""

    @abstractmethod
    async def get_prompt(self, prompt_id: str, args: dict[str, Any]) -> Any:
        """Render a prompt; returns text or a list of message dicts."""


class LocalExecutorChannel(ExecutorChannel):
    """Channel to a node living in the hub's own process."""

    def __init__(
        self,
        tool_handler: Callable[[str, dict[str, Any]], Any],
        resource_handler: Callable[[str], Any] | None = None,
        prompt_handler: Callable[[str, dict[str, Any]], Any] | None = None,
    ):
        self._tool_handler = tool_handler
        self._resource_handler = resource_handler
        self._prompt_handler = prompt_handler

    async def invoke_tool(self, name: str, args: dict[str, Any]) -> Any:
        return await maybe_await(self._tool_handler(name, args))

    async def read_resource(self, uri: str) -> Any:
        if self._resource_handler is None:
            raise ExecutionFailedError(f"Node does not serve resources: {uri}")
        return await maybe_await(self._resource_handler(uri))

    async def get_prompt(self, prompt_id: str, args: dict[str, Any]) -> Any:
        if self._prompt_handler is None:
            raise ExecutionFailedError(f"Node does not serve prompts: {prompt_id}")
        return await maybe_await(self._prompt_handler(prompt_id, args))


class HttpExecutorChannel(ExecutorChannel):
    """Channel to a node that serves the executor callback app over HTTP."""

    def __init__(self, callback_url: str, timeout: float = 30.0):
        self.callback_url = callback_url.rstrip("/")
        self.timeout = timeout

    async def invoke_tool(self, name: str, args: dict[str, Any]) -> Any:
        return await self._post("/execute/tool", {"name": name, "args": args})

    async def read_resource(self, uri: str) -> Any:
        return await self._post("/execute/resource", {"uri": uri})

    async def get_prompt(self, prompt_id: str, args: dict[str, Any]) -> Any:
        return await self._post(
            "/execute/prompt", {"promptId": prompt_id, "args": args}
        )

    async def _post(self, path: str, payload: dict[str, Any]) -> Any:
        url = f"{self.callback_url}{path}"
        logger.debug(f"Executor callback: POST {url}")
        try:
            async with aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            ) as session:
                async with session.post(url, json=payload) as response:
                    if response.status != 200:
                        raise ExecutionFailedError(
                            f"Executor at {url} returned {response.status}"
                        )
                    body = await response.json()
        except aiohttp.ClientError as e:
            raise ExecutionFailedError(f"Executor at {url} unreachable: {e}")

        if not body.get("success", False):
            raise ExecutionFailedError(body.get("error") or "Executor reported failure")
        return body.get("result")


class ChannelTable:
    """In-process executor channels addressable by callback id."""

    def __init__(self):
        self._channels: dict[str, ExecutorChannel] = {}

    def register(
        self, channel: ExecutorChannel, callback_id: str | None = None
    ) -> str:
        callback_id = callback_id or f"local-{uuid.uuid4().hex}"
        self._channels[callback_id] = channel
        return callback_id

    def remove(self, callback_id: str) -> None:
        self._channels.pop(callback_id, None)

    def resolve(self, callback_id: str, timeout: float = 30.0) -> ExecutorChannel:
        """Turn a callback id into a channel.

        HTTP(S) URLs become ``HttpExecutorChannel``; anything else must have
        been registered in this table.
        """
        if callback_id.startswith(("http://", "https://")):
            return HttpExecutorChannel(callback_id, timeout=timeout)
        channel = self._channels.get(callback_id)
        if channel is None:
            raise UnknownTargetError(f"Unknown executor callback: {callback_id}")
        return channel


SimulatedFn = Callable[..., Any]


@dataclass(frozen=True)
class BoundTarget:
    channel: ExecutorChannel


@dataclass(frozen=True)
class SimulatedTarget:
    fn: SimulatedFn


@dataclass(frozen=True)
class NoTarget:
    pass


ExecutionTarget = BoundTarget | SimulatedTarget | NoTarget


class SimulationRegistry:
    """Hub-local stand-ins keyed by qualified tool/prompt id or resource URI.

    Tool functions receive ``args``; resource functions receive nothing;
    prompt functions receive ``args``.
    """

    def __init__(self):
        self._tools: dict[str, SimulatedFn] = {}
        self._resources: dict[str, SimulatedFn] = {}
        self._prompts: dict[str, SimulatedFn] = {}

    def register_tool(self, qualified_id: str, fn: SimulatedFn) -> None:
        self._tools[qualified_id] = fn

    def register_resource(self, uri: str, fn: SimulatedFn) -> None:
        self._resources[uri] = fn

    def register_prompt(self, qualified_id: str, fn: SimulatedFn) -> None:
        self._prompts[qualified_id] = fn

    def tool(self, qualified_id: str) -> SimulatedFn | None:
        return self._tools.get(qualified_id)

    def resource(self, uri: str) -> SimulatedFn | None:
        return self._resources.get(uri)

    def prompt(self, qualified_id: str) -> SimulatedFn | None:
        return self._prompts.get(qualified_id)


DEMO_TOOLS = {
    "client-a.tool1": "tool1",
    "client-a.tool2": "tool2",
    "client-b.tool3": "tool3",
    "client-b.tool4": "tool4",
    "server.base-tool": "base-tool",
}


def register_demo_simulations(simulations: SimulationRegistry) -> None:
    """Install the stand-ins used by the demo nodes."""
    for qualified_id, name in DEMO_TOOLS.items():
        simulations.register_tool(
            qualified_id,
            lambda args, name=name: f"Result of {name} with {compact_json(args)}",
        )
