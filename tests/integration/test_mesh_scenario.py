"""
End-to-end mesh scenarios.

Two tool nodes and an orchestrator share one in-process hub: discovery,
routed calls, staleness and recovery.
"""

import pytest

from mcp_tools_mesh.cli.main import echo_tool
from mcp_tools_mesh.client.adapter import MeshToolAdapter
from mcp_tools_mesh.client.node_client import NodeClient
from mcp_tools_mesh.client.transport import LocalTransport


class TestHubScenario:
    """Drive the hub through its wire interface only."""

    @pytest.mark.asyncio
    async def test_call_stale_and_recover(self, hub, clock):
        for node_id in ("client-a", "client-b"):
            assert await hub.handle(
                "register-node", {"id": node_id, "type": "client"}
            ) == {"success": True}
        await hub.handle("register-tool", {"nodeId": "client-a", "toolName": "tool1"})
        await hub.handle("register-tool", {"nodeId": "client-b", "toolName": "tool3"})

        tool_ids = [t["id"] for t in await hub.handle("list-tools")]
        assert tool_ids == ["client-a.tool1", "client-b.tool3"]

        call = {
            "fromNode": "client-a",
            "toolId": "client-b.tool3",
            "args": {"param": "x"},
        }
        result = await hub.handle("call-remote-tool", call)
        assert result["success"] is True
        assert "client-b.tool3" in result["content"][0]["text"]
        assert '{"param":"x"}' in result["content"][0]["text"]

        clock.advance(hub.config.heartbeat_timeout + 1)
        assert hub.liveness.sweep() == ["client-a", "client-b"]
        await hub.handle("heartbeat", {"id": "client-a"})

        stale = await hub.handle("call-remote-tool", call)
        assert stale["success"] is False
        assert stale["errorCode"] == "TargetUnavailable"
        assert [t["id"] for t in await hub.handle("list-tools")] == ["client-a.tool1"]

        revived = await hub.handle("heartbeat", {"id": "client-b"})
        assert revived["success"] is True

        recovered = await hub.handle("call-remote-tool", call)
        assert recovered["success"] is True
        assert recovered["content"] == result["content"]

    @pytest.mark.asyncio
    async def test_unknown_tool_and_caller(self, hub):
        await hub.handle("register-node", {"id": "client-a"})

        missing = await hub.handle(
            "call-remote-tool", {"fromNode": "client-a", "toolId": "client-a.nope"}
        )
        stranger = await hub.handle(
            "call-remote-tool", {"fromNode": "ghost", "toolId": "client-a.nope"}
        )

        assert missing["errorCode"] == "UnknownTarget"
        assert stranger["errorCode"] == "UnknownCaller"


class TestClientScenario:
    """Real node clients with executors bound through the local transport."""

    @pytest.mark.asyncio
    async def test_orchestrator_calls_node_tool(self, hub, config):
        client_a = NodeClient(
            "client-a", LocalTransport(hub), tools=[echo_tool("tool1")], config=config
        )
        client_b = NodeClient(
            "client-b", LocalTransport(hub), tools=[echo_tool("tool3")], config=config
        )
        orchestrator = NodeClient(
            "claude", LocalTransport(hub), kind="llm", config=config
        )
        adapter = MeshToolAdapter(orchestrator, approval_callback=lambda t, a: True)

        assert await client_a.connect()
        assert await client_b.connect()
        try:
            assert await adapter.start()
            assert [tool["name"] for tool in adapter.as_llm_tools()] == [
                "client-a.tool1",
                "client-b.tool3",
            ]
            assert hub.store.get_node("claude").kind.value == "orchestrator"

            result = await adapter.execute_tool("client-b.tool3", {"param": "x"})
            assert result == {"result": 'Result of tool3 with {"param":"x"}'}

            direct = await client_a.call_tool("client-b.tool3", {"param": "y"})
            assert direct.result == 'Result of tool3 with {"param":"y"}'

            await client_b.shutdown()

            gone = await adapter.execute_tool("client-b.tool3", {"param": "x"})
            assert gone["error"].startswith("TargetUnavailable")
            assert not await orchestrator.check_tool_availability("client-b.tool3")
            assert await orchestrator.check_tool_availability("client-a.tool1")
        finally:
            await adapter.stop()
            await client_b.shutdown()
            await client_a.shutdown()
