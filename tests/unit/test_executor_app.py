"""Unit tests for the node executor callback app and HTTP executor channel."""

from unittest.mock import AsyncMock, MagicMock, patch

import aiohttp
import pytest
from fastapi.testclient import TestClient

from mcp_tools_mesh.client.executor_app import create_executor_app
from mcp_tools_mesh.client.node_client import (
    LocalPrompt,
    LocalResource,
    LocalTool,
    NodeClient,
)
from mcp_tools_mesh.server.executors import ChannelTable, HttpExecutorChannel
from mcp_tools_mesh.shared.exceptions import ExecutionFailedError, UnknownTargetError


@pytest.fixture
def node():
    def fail(args):
        raise RuntimeError("tool crashed")

    return NodeClient(
        "client-b",
        transport=MagicMock(),
        tools=[
            LocalTool("tool3", lambda args: f"tool3 got {args['param']}"),
            LocalTool("broken", fail),
        ],
        resources=[LocalResource("mem://b/status", "Status", lambda: "ok")],
        prompts=[
            LocalPrompt("greet", "Greet", lambda args: f"Hello {args.get('who')}")
        ],
    )


@pytest.fixture
def http(node):
    return TestClient(create_executor_app(node))


class TestExecutorApp:
    """Test the /execute endpoints."""

    def test_execute_tool(self, http):
        response = http.post(
            "/execute/tool", json={"name": "tool3", "args": {"param": "x"}}
        )

        assert response.json() == {"success": True, "result": "tool3 got x"}

    def test_execute_unknown_tool(self, http):
        body = http.post("/execute/tool", json={"name": "nope"}).json()

        assert body["success"] is False
        assert "not served by client-b" in body["error"]

    def test_execute_failing_tool(self, http):
        body = http.post("/execute/tool", json={"name": "broken"}).json()

        assert body == {"success": False, "error": "tool crashed"}

    def test_execute_resource(self, http):
        body = http.post("/execute/resource", json={"uri": "mem://b/status"}).json()

        assert body == {"success": True, "result": "ok"}

    def test_execute_prompt(self, http):
        body = http.post(
            "/execute/prompt", json={"promptId": "greet", "args": {"who": "a"}}
        ).json()

        assert body == {"success": True, "result": "Hello a"}

    def test_health(self, http):
        body = http.get("/health").json()

        assert body["node"] == "client-b"
        assert body["tools"] == ["broken", "tool3"]


def mock_session(status=200, payload=None, error=None):
    """Build a patched aiohttp.ClientSession returning one response."""
    response = MagicMock()
    response.status = status
    response.json = AsyncMock(return_value=payload)

    post_ctx = MagicMock()
    post_ctx.__aenter__ = AsyncMock(return_value=response, side_effect=error)
    post_ctx.__aexit__ = AsyncMock(return_value=False)

    session = MagicMock()
    session.post = MagicMock(return_value=post_ctx)
    session.__aenter__ = AsyncMock(return_value=session)
    session.__aexit__ = AsyncMock(return_value=False)
    return session


class TestHttpExecutorChannel:
    """Test the hub side of HTTP executor callbacks."""

    @pytest.mark.asyncio
    async def test_invoke_tool(self):
        session = mock_session(payload={"success": True, "result": {"v": 1}})
        channel = HttpExecutorChannel("http://node:9000/")

        with patch(
            "mcp_tools_mesh.server.executors.aiohttp.ClientSession",
            return_value=session,
        ):
            result = await channel.invoke_tool("tool3", {"param": "x"})

        assert result == {"v": 1}
        session.post.assert_called_once_with(
            "http://node:9000/execute/tool",
            json={"name": "tool3", "args": {"param": "x"}},
        )

    @pytest.mark.asyncio
    async def test_reported_failure(self):
        session = mock_session(payload={"success": False, "error": "tool crashed"})
        channel = HttpExecutorChannel("http://node:9000")

        with patch(
            "mcp_tools_mesh.server.executors.aiohttp.ClientSession",
            return_value=session,
        ):
            with pytest.raises(ExecutionFailedError, match="tool crashed"):
                await channel.get_prompt("greet", {})

    @pytest.mark.asyncio
    async def test_http_error_status(self):
        session = mock_session(status=500)
        channel = HttpExecutorChannel("http://node:9000")

        with patch(
            "mcp_tools_mesh.server.executors.aiohttp.ClientSession",
            return_value=session,
        ):
            with pytest.raises(ExecutionFailedError, match="returned 500"):
                await channel.read_resource("mem://b/status")

    @pytest.mark.asyncio
    async def test_unreachable(self):
        session = mock_session(error=aiohttp.ClientConnectionError("refused"))
        channel = HttpExecutorChannel("http://node:9000")

        with patch(
            "mcp_tools_mesh.server.executors.aiohttp.ClientSession",
            return_value=session,
        ):
            with pytest.raises(ExecutionFailedError, match="unreachable"):
                await channel.invoke_tool("tool3", {})


class TestChannelTable:
    """Test callback id resolution."""

    def test_http_callback_becomes_http_channel(self):
        channel = ChannelTable().resolve("https://node.example/cb", timeout=5)

        assert isinstance(channel, HttpExecutorChannel)
        assert channel.callback_url == "https://node.example/cb"
        assert channel.timeout == 5

    def test_registered_and_removed(self):
        table = ChannelTable()
        channel = MagicMock()
        callback_id = table.register(channel)

        assert callback_id.startswith("local-")
        assert table.resolve(callback_id) is channel

        table.remove(callback_id)
        with pytest.raises(UnknownTargetError):
            table.resolve(callback_id)
