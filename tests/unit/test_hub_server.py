"""Unit tests for the hub HTTP server."""

import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from mcp_tools_mesh.server.hub_server import HubServer, create_app, registry_events


@pytest.fixture
def http(hub):
    return TestClient(create_app(hub))


class TestRpcEndpoint:
    """Test POST /rpc/{method}."""

    def test_register_and_call(self, http):
        assert http.post("/rpc/register-node", json={"id": "client-a"}).json() == {
            "success": True
        }
        http.post("/rpc/register-node", json={"id": "client-b"})
        http.post(
            "/rpc/register-tool", json={"nodeId": "client-b", "toolName": "tool3"}
        )

        response = http.post(
            "/rpc/call-remote-tool",
            json={"fromNode": "client-a", "toolId": "client-b.tool3", "args": {"n": 1}},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["content"][0]["text"] == (
            'Simulated execution of client-b.tool3 with {"n":1}'
        )

    def test_empty_body(self, http):
        response = http.post("/rpc/list-tools")

        assert response.status_code == 200
        assert response.json() == []

    def test_unknown_method_is_not_an_http_error(self, http):
        response = http.post("/rpc/nope", json={})

        assert response.status_code == 200
        assert response.json()["error"] == "Unknown method: nope"


class TestInspectionRoutes:
    """Test the read-only GET routes."""

    def test_health(self, http, hub):
        hub.store.register_node("client-a")

        body = http.get("/health").json()

        assert body["status"] == "healthy"
        assert body["nodes"] == 1

    def test_nodes_and_tools(self, http, hub):
        hub.store.register_node("client-a")
        hub.store.register_node("client-b")
        hub.store.register_tool("client-a", "tool1")
        hub.store.update_liveness("client-b", False)

        assert [n["id"] for n in http.get("/nodes").json()] == ["client-a"]
        assert [
            n["id"] for n in http.get("/nodes", params={"include_stale": True}).json()
        ] == ["client-a", "client-b"]
        assert http.get("/tools").json()[0]["id"] == "client-a.tool1"
        assert http.get("/resources").json() == []
        assert http.get("/prompts").json() == []

    def test_node_health(self, http, hub):
        hub.store.register_node("client-a")

        body = http.get("/health/client-a").json()

        assert body["nodeId"] == "client-a"
        assert body["alive"] is True

    def test_node_health_unknown(self, http):
        response = http.get("/health/ghost")

        assert response.status_code == 404


class TestHubServer:
    """Test server wiring."""

    def test_defaults_from_config(self, hub):
        server = HubServer(hub)

        assert server.host == hub.config.hub_host
        assert server.port == hub.config.hub_port

    def test_explicit_port(self, hub):
        assert HubServer(hub, port=0).port == 0

    def test_events_route_registered(self, hub):
        paths = {route.path for route in create_app(hub).routes}

        assert "/events" in paths


class TestRegistryEvents:
    """Test the registry event stream."""

    @pytest.mark.asyncio
    async def test_streams_registration_events(self, hub):
        events = registry_events(hub.store)
        first = asyncio.create_task(events.__anext__())
        await asyncio.sleep(0)

        hub.store.register_node("client-a")
        frame = await asyncio.wait_for(first, timeout=1)

        event_line, data_line, _, _ = frame.split("\n")
        assert event_line == "event: ADDED"
        data = json.loads(data_line.removeprefix("data: "))
        assert (data["kind"], data["object"]["id"]) == ("node", "client-a")

        await events.aclose()
        assert hub.store._watchers == []

    @pytest.mark.asyncio
    async def test_keepalive_when_idle(self, hub):
        events = registry_events(hub.store, keepalive=0.01)

        assert await events.__anext__() == ": keep-alive\n\n"
        await events.aclose()

    @pytest.mark.asyncio
    async def test_ends_when_watcher_dropped(self, hub):
        events = registry_events(hub.store, keepalive=0.01, maxsize=1)
        first = asyncio.create_task(events.__anext__())
        await asyncio.sleep(0)

        hub.store.register_node("client-a")
        hub.store.register_node("client-b")

        assert "client-a" in await asyncio.wait_for(first, timeout=1)
        with pytest.raises(StopAsyncIteration):
            await events.__anext__()
