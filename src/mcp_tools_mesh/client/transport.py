"""
Transports between a node client and the hub.

A transport carries one wire call at a time (``request(method, params)``)
and returns the hub's JSON result. Any failure to reach the hub is raised
as ``TransportError``; hub-reported failures come back as normal results.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

import aiohttp

from ..server.executors import ExecutorChannel
from ..shared.exceptions import TransportError

if TYPE_CHECKING:
    from ..server.hub import MeshHub

logger = logging.getLogger(__name__)


class Transport(ABC):
    """Connection from a node to the hub."""

    @abstractmethod
    async def connect(self) -> None:
        """Open the connection; raise ``TransportError`` if the hub is unreachable."""

    @abstractmethod
    async def request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        """Send one wire call and return the hub's result."""

    @abstractmethod
    async def close(self) -> None:
        """Release the connection. Safe to call when not connected."""

    async def expose_executor(
        self, node_id: str, channel: ExecutorChannel
    ) -> str | None:
        """Make ``channel`` reachable by the hub.

        Returns the callback id to pass to ``register-executor``, or None when
        this transport cannot carry calls back to the node.
        """
        return None


class HttpTransport(Transport):
    """Talks to a ``HubServer`` with ``POST {hub_url}/rpc/<method>``.

    ``executor_url`` is the base URL where the node serves its executor
    callback app; when set it is registered as the node's callback id.
    """

    def __init__(
        self,
        hub_url: str,
        timeout: float = 30.0,
        executor_url: str | None = None,
    ):
        self.hub_url = hub_url.rstrip("/")
        self.timeout = timeout
        self.executor_url = executor_url
        self._session: aiohttp.ClientSession | None = None

    async def connect(self) -> None:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self.timeout)
            )
        url = f"{self.hub_url}/health"
        try:
            async with self._session.get(url) as response:
                if response.status != 200:
                    raise TransportError(f"Hub health check returned {response.status}")
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"Hub unreachable at {self.hub_url}: {e}")
        logger.debug(f"Connected to hub at {self.hub_url}")

    async def request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        if self._session is None or self._session.closed:
            raise TransportError("Transport is not connected")

        url = f"{self.hub_url}/rpc/{method}"
        try:
            async with self._session.post(url, json=params or {}) as response:
                if response.status != 200:
                    raise TransportError(f"Hub returned {response.status} for {method}")
                return await response.json()
        except asyncio.TimeoutError:
            raise TransportError(
                f"Hub request {method} timed out after {self.timeout}s"
            )
        except aiohttp.ClientError as e:
            raise TransportError(f"Hub request {method} failed: {e}")

    async def close(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def expose_executor(
        self, node_id: str, channel: ExecutorChannel
    ) -> str | None:
        return self.executor_url


class LocalTransport(Transport):
    """In-process transport calling a ``MeshHub`` directly.

    Used by nodes embedded in the hub process and by tests. Executor
    channels are handed to the hub's channel table, so routed calls reach
    the node without any network hop.
    """

    def __init__(self, hub: "MeshHub"):
        self.hub = hub
        self.connected = False
        self._callback_ids: list[str] = []

    async def connect(self) -> None:
        self.connected = True

    async def request(self, method: str, params: dict[str, Any] | None = None) -> Any:
        if not self.connected:
            raise TransportError("Transport is not connected")
        return await self.hub.handle(method, params)

    async def close(self) -> None:
        for callback_id in self._callback_ids:
            self.hub.channels.remove(callback_id)
        self._callback_ids.clear()
        self.connected = False

    async def expose_executor(
        self, node_id: str, channel: ExecutorChannel
    ) -> str | None:
        callback_id = self.hub.channels.register(channel, f"local-{node_id}")
        self._callback_ids.append(callback_id)
        return callback_id
