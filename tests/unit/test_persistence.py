"""Unit tests for registry snapshots."""

import asyncio
import json
from pathlib import Path
from unittest.mock import patch

import pytest

from mcp_tools_mesh.server.hub import MeshHub
from mcp_tools_mesh.server.persistence import RegistrySnapshotter
from mcp_tools_mesh.server.registry import RegistryStore
from mcp_tools_mesh.shared.exceptions import PersistenceError


@pytest.fixture
def state_file(tmp_path):
    return tmp_path / "hub-state.json"


@pytest.fixture
def populated(store):
    store.register_node("client-a", "client")
    store.register_node("server", "server")
    store.register_tool("client-a", "tool1", "First tool")
    store.register_resource("server", "file:///notes.txt", "Notes")
    store.register_prompt("server", "greet", "Greet", arguments=[{"name": "who"}])
    return store


class TestSave:
    """Test writing snapshots."""

    @pytest.mark.asyncio
    async def test_save_writes_layout(self, populated, state_file):
        snapshotter = RegistrySnapshotter(populated, state_file)

        await snapshotter.save()

        data = json.loads(state_file.read_text())
        assert set(data) == {"nodes", "tools", "resources", "prompts"}
        assert data["nodes"]["client-a"]["kind"] == "client"
        assert data["tools"]["client-a.tool1"]["nodeId"] == "client-a"
        assert data["resources"]["file:///notes.txt"]["mimeType"] == "text/plain"
        assert data["prompts"]["server.greet"]["promptId"] == "greet"
        assert not state_file.with_name("hub-state.json.tmp").exists()

    @pytest.mark.asyncio
    async def test_save_if_dirty_skips_unchanged(self, populated, state_file):
        snapshotter = RegistrySnapshotter(populated, state_file)

        assert await snapshotter.save_if_dirty() is True
        assert await snapshotter.save_if_dirty() is False

        populated.register_tool("client-a", "tool2")
        assert snapshotter.dirty
        assert await snapshotter.save_if_dirty() is True

    @pytest.mark.asyncio
    async def test_liveness_changes_do_not_dirty(self, populated, state_file):
        snapshotter = RegistrySnapshotter(populated, state_file)
        await snapshotter.save()

        populated.update_liveness("client-a", False)

        assert not snapshotter.dirty

    @pytest.mark.asyncio
    async def test_write_failure_raises_persistence_error(self, populated, state_file):
        snapshotter = RegistrySnapshotter(populated, state_file)

        with patch(
            "mcp_tools_mesh.server.persistence.os.replace",
            side_effect=OSError("read-only"),
        ):
            with pytest.raises(PersistenceError, match="read-only"):
                await snapshotter.save()
            assert await snapshotter.save_if_dirty() is False

        assert snapshotter.dirty


class TestLoad:
    """Test restoring snapshots."""

    @pytest.mark.asyncio
    async def test_missing_file(self, store, state_file):
        snapshotter = RegistrySnapshotter(store, state_file)

        assert await snapshotter.load() is False
        assert store.list_nodes(include_stale=True) == []

    @pytest.mark.asyncio
    async def test_corrupt_file_ignored(self, store, state_file):
        state_file.write_text("{not json")
        snapshotter = RegistrySnapshotter(store, state_file)

        assert await snapshotter.load() is False
        assert store.version == 0

    @pytest.mark.asyncio
    async def test_undecodable_file_ignored(self, store, state_file):
        state_file.write_bytes(b"\xff\xfe\x00garbage")
        snapshotter = RegistrySnapshotter(store, state_file)

        assert await snapshotter.load() is False
        assert store.version == 0

    @pytest.mark.asyncio
    async def test_hub_starts_over_undecodable_file(self, config, clock):
        Path(config.state_file).write_bytes(b"\xff\xfe\x00garbage")
        hub = MeshHub(config, clock=clock)

        await hub.start()
        try:
            assert hub.store.list_nodes(include_stale=True) == []
        finally:
            await hub.close()

    @pytest.mark.asyncio
    async def test_round_trip_assumes_reconnect(self, populated, state_file, clock):
        populated.update_liveness("client-a", False)
        await RegistrySnapshotter(populated, state_file).save()

        clock.advance(7200)
        restored = RegistryStore(clock=clock)
        snapshotter = RegistrySnapshotter(restored, state_file)

        assert await snapshotter.load() is True
        assert not snapshotter.dirty
        assert [n.id for n in restored.list_nodes()] == ["client-a", "server"]
        assert all(n.last_seen == clock() for n in restored.list_nodes())
        assert [t.id for t in restored.list_tools()] == ["client-a.tool1"]
        assert restored.lookup_prompt("server.greet").arguments[0].name == "who"


class TestSnapshotTask:
    """Test the periodic snapshot task."""

    @pytest.mark.asyncio
    async def test_periodic_save(self, populated, state_file):
        snapshotter = RegistrySnapshotter(populated, state_file, interval=0.01)

        await snapshotter.start()
        try:
            for _ in range(50):
                if state_file.exists():
                    break
                await asyncio.sleep(0.01)
        finally:
            await snapshotter.stop()

        assert state_file.exists()
        assert not snapshotter.dirty
