"""Shared fixtures for MCP Tools Mesh tests."""

from datetime import datetime, timedelta, timezone

import pytest

from mcp_tools_mesh.server.hub import MeshHub
from mcp_tools_mesh.server.liveness import LivenessTracker
from mcp_tools_mesh.server.registry import RegistryStore
from mcp_tools_mesh.shared.configuration import MeshConfig


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def config(tmp_path):
    """Fast intervals and a state file inside the test directory."""
    return MeshConfig(
        state_file=str(tmp_path / "hub-state.json"),
        heartbeat_interval=0.01,
        heartbeat_timeout=60.0,
        sweep_interval=0.01,
        discovery_interval=0.01,
        snapshot_interval=0.01,
        reconnect_max_attempts=3,
        reconnect_delay=0.0,
        reconnect_max_delay=0.0,
        executor_timeout=1.0,
    )


@pytest.fixture
def store(clock):
    return RegistryStore(clock=clock)


@pytest.fixture
def liveness(store, clock):
    return LivenessTracker(store, heartbeat_timeout=60.0, clock=clock)


@pytest.fixture
def hub(config, clock):
    return MeshHub(config, clock=clock)
