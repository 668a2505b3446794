"""
HTTP front end for the mesh hub.

Nodes talk to the hub with ``POST /rpc/<method>`` carrying the wire params
as a JSON object; the response body is the hub's result unchanged. A few
read-only GET routes make the registry easy to inspect with curl, and
``GET /events`` streams registry changes as server-sent events.
"""

import asyncio
import json
import logging
from typing import Any, AsyncIterator

import uvicorn
from fastapi import Body, FastAPI, HTTPException
from fastapi.responses import StreamingResponse

from .. import __version__
from .hub import MeshHub
from .registry import RegistryStore

logger = logging.getLogger(__name__)


async def registry_events(
    store: RegistryStore, keepalive: float = 15.0, maxsize: int = 100
) -> AsyncIterator[str]:
    """Yield registry events as SSE frames until the watcher is dropped."""
    queue = store.create_watcher(maxsize)
    try:
        while store.is_watching(queue) or not queue.empty():
            try:
                event = await asyncio.wait_for(queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield ": keep-alive\n\n"
                continue
            yield f"event: {event['type']}\ndata: {json.dumps(event)}\n\n"
    finally:
        store.remove_watcher(queue)


def create_app(hub: MeshHub) -> FastAPI:
    """Build the FastAPI application serving ``hub``."""
    app = FastAPI(
        title="MCP Tools Mesh Hub",
        description="Rendezvous service routing tool calls between mesh nodes",
        version=__version__,
    )

    @app.post("/rpc/{method}")
    async def rpc(method: str, params: dict[str, Any] | None = Body(default=None)):
        """Dispatch a wire call to the hub."""
        return await hub.handle(method, params)

    @app.get("/tools")
    async def list_tools():
        return await hub.list_tools()

    @app.get("/resources")
    async def list_resources():
        return await hub.list_resources()

    @app.get("/prompts")
    async def list_prompts():
        return await hub.list_prompts()

    @app.get("/nodes")
    async def list_nodes(include_stale: bool = False):
        return await hub.list_nodes(include_stale)

    @app.get("/events")
    async def events():
        """Stream registry changes to the caller."""
        return StreamingResponse(
            registry_events(hub.store),
            media_type="text/event-stream",
            headers={"Cache-Control": "no-cache"},
        )

    @app.get("/health")
    async def health():
        """Hub health and registry counts."""
        return {
            "status": "healthy",
            "service": "mcp-tools-mesh-hub",
            "version": __version__,
            "nodes": len(hub.store.list_nodes()),
            "tools": len(hub.store.list_tools()),
            "registry_version": hub.store.version,
        }

    @app.get("/health/{node_id}")
    async def node_health(node_id: str):
        result = await hub.node_health(node_id)
        if result.get("success") is False:
            raise HTTPException(status_code=404, detail=result["error"])
        return result

    return app


class HubServer:
    """Runs a ``MeshHub`` behind uvicorn."""

    def __init__(self, hub: MeshHub, host: str | None = None, port: int | None = None):
        self.hub = hub
        self.host = host or hub.config.hub_host
        self.port = port if port is not None else hub.config.hub_port
        self.app = create_app(hub)
        self.server: uvicorn.Server | None = None
        self._serve_task: asyncio.Task | None = None

    async def start(self) -> None:
        """Start the hub's background tasks and the HTTP server."""
        await self.hub.start()

        config = uvicorn.Config(
            app=self.app,
            host=self.host,
            port=self.port,
            log_level=self.hub.config.log_level.lower().replace("trace", "debug"),
            access_log=False,
        )
        self.server = uvicorn.Server(config)
        self._serve_task = asyncio.create_task(self._run_server())
        logger.info(f"Mesh hub listening on http://{self.host}:{self.port}")

    async def _run_server(self) -> None:
        try:
            await self.server.serve()
        except Exception as e:
            logger.error(f"Hub HTTP server error: {e}")

    async def stop(self) -> None:
        """Stop the HTTP server, then flush and stop the hub."""
        if self.server:
            logger.info("Stopping mesh hub HTTP server")
            self.server.should_exit = True
            if self._serve_task and not self._serve_task.done():
                try:
                    await asyncio.wait_for(self._serve_task, timeout=5.0)
                except asyncio.TimeoutError:
                    logger.warning("Hub HTTP server did not stop in time")
                    self._serve_task.cancel()
        await self.hub.close()

    async def serve_forever(self) -> None:
        """Run until the server exits or the task is cancelled."""
        await self.start()
        try:
            if self._serve_task:
                await self._serve_task
        finally:
            await self.stop()
