"""
Executor callback app served by a node.

When a node talks to an HTTP hub, the hub reaches the node's local tools
through this app. Every endpoint answers ``{success, result, error}`` with
status 200; execution failures are reported in the body.
"""

import logging
from typing import TYPE_CHECKING, Any

from fastapi import FastAPI
from pydantic import BaseModel, Field

from ..shared.exceptions import MeshError

if TYPE_CHECKING:
    from .node_client import NodeClient

logger = logging.getLogger(__name__)


class ToolExecution(BaseModel):
    name: str
    args: dict[str, Any] = Field(default_factory=dict)


class ResourceExecution(BaseModel):
    uri: str


class PromptExecution(BaseModel):
    prompt_id: str = Field(alias="promptId")
    args: dict[str, Any] = Field(default_factory=dict)


async def _execute(label: str, invoke) -> dict[str, Any]:
    try:
        result = await invoke()
    except MeshError as e:
        return {"success": False, "error": e.message}
    except Exception as e:
        logger.error(f"Local execution of {label} failed: {e}")
        return {"success": False, "error": str(e) or type(e).__name__}
    return {"success": True, "result": result}


def create_executor_app(client: "NodeClient") -> FastAPI:
    """Build the callback app for ``client``'s local capabilities."""
    app = FastAPI(
        title=f"MCP Tools Mesh Node: {client.node_id}",
        description="Executor callbacks invoked by the mesh hub",
    )

    @app.post("/execute/tool")
    async def execute_tool(request: ToolExecution):
        return await _execute(
            request.name,
            lambda: client.execute_local_tool(request.name, request.args),
        )

    @app.post("/execute/resource")
    async def execute_resource(request: ResourceExecution):
        return await _execute(
            request.uri, lambda: client.read_local_resource(request.uri)
        )

    @app.post("/execute/prompt")
    async def execute_prompt(request: PromptExecution):
        return await _execute(
            request.prompt_id,
            lambda: client.render_local_prompt(request.prompt_id, request.args),
        )

    @app.get("/health")
    async def health():
        return {
            "status": "healthy",
            "node": client.node_id,
            "state": client.state.value,
            "tools": sorted(client.tools),
        }

    return app
