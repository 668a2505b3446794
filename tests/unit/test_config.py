"""
Unit tests for configuration loading, logging setup and the CLI parser.
"""

import json
import logging

import pytest

from mcp_tools_mesh.cli.main import create_parser, echo_tool, main
from mcp_tools_mesh.shared.configuration import (
    MeshConfig,
    MeshConfigManager,
    convert_config_value,
)
from mcp_tools_mesh.shared.exceptions import InvalidConfigurationError
from mcp_tools_mesh.shared.logging_config import (
    TRACE,
    configure_logging,
    resolve_log_level,
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    monkeypatch.delenv("MCP_TOOLS_MESH_HUB_PORT", raising=False)
    monkeypatch.delenv("MCP_TOOLS_MESH_LOG_LEVEL", raising=False)
    monkeypatch.delenv("MCP_TOOLS_MESH_DEBUG_MODE", raising=False)


class TestMeshConfig:
    """Test the configuration dataclass."""

    def test_defaults(self):
        config = MeshConfig()

        assert config.hub_port == 3000
        assert config.heartbeat_timeout == 3600.0
        assert config.reconnect_max_attempts == 10
        assert config.resolved_hub_url == "http://localhost:3000"

    def test_explicit_hub_url_wins(self):
        config = MeshConfig(hub_url="http://hub.internal:8080/")

        assert config.resolved_hub_url == "http://hub.internal:8080"

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"hub_port": 0},
            {"hub_url": "ftp://hub"},
            {"log_level": "LOUD"},
            {"heartbeat_timeout": 0},
            {"reconnect_backoff": 0.5},
            {"reconnect_delay": 10, "reconnect_max_delay": 5},
        ],
    )
    def test_invalid_values(self, kwargs):
        with pytest.raises(InvalidConfigurationError):
            MeshConfig(**kwargs)

    def test_warn_alias_accepted(self):
        config = MeshConfig(log_level="WARN")

        assert resolve_log_level(config.log_level) == logging.WARNING
        args = create_parser().parse_args(["hub", "--log-level", "WARN"])
        assert args.log_level == "WARN"

    def test_merge_ignores_none(self):
        config = MeshConfig().merge({"hub_port": 4000, "hub_host": None})

        assert config.hub_port == 4000
        assert config.hub_host == "localhost"

    def test_from_dict_ignores_unknown_keys(self):
        config = MeshConfig.from_dict({"hub_port": 4000, "colour": "blue"})

        assert config.hub_port == 4000


class TestConvertConfigValue:
    """Test string conversion of environment values."""

    def test_types(self):
        assert convert_config_value("hub_port", "8080") == 8080
        assert convert_config_value("heartbeat_timeout", "1.5") == 1.5
        assert convert_config_value("simulation_enabled", "off") is False
        assert convert_config_value("debug_mode", "yes") is True
        assert convert_config_value("state_file", "/tmp/s.json") == "/tmp/s.json"

    def test_bad_number(self):
        with pytest.raises(InvalidConfigurationError, match="hub_port"):
            convert_config_value("hub_port", "lots")


class TestMeshConfigManager:
    """Test source precedence."""

    def test_environment_then_file_then_overrides(self, tmp_path, monkeypatch):
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"hub_port": 5000, "log_level": "DEBUG"}))
        monkeypatch.setenv("MCP_TOOLS_MESH_HUB_PORT", "4000")
        monkeypatch.setenv("MCP_TOOLS_MESH_HEARTBEAT_TIMEOUT", "90")
        manager = MeshConfigManager(config_file)

        config = manager.load_config({"log_level": "ERROR", "unrelated": 1})

        assert config.heartbeat_timeout == 90.0
        assert config.hub_port == 5000
        assert config.log_level == "ERROR"

    def test_missing_file_uses_defaults(self, tmp_path):
        manager = MeshConfigManager(tmp_path / "absent.json")

        assert manager.load_config() == MeshConfig()

    def test_invalid_json(self, tmp_path):
        config_file = tmp_path / "config.json"
        config_file.write_text("{oops")

        with pytest.raises(InvalidConfigurationError, match="Invalid JSON"):
            MeshConfigManager(config_file).load_config()

    def test_save_and_show(self, tmp_path):
        config_file = tmp_path / "nested" / "config.json"
        manager = MeshConfigManager(config_file)
        manager.save_config(MeshConfig(hub_port=4100))

        shown = json.loads(manager.show_config(format="json"))

        assert shown["hub_port"] == 4100
        assert "hub_port: 4100" in manager.show_config().splitlines()
        with pytest.raises(ValueError):
            manager.show_config(format="yaml")


class TestLogging:
    """Test logging setup."""

    def test_resolve_log_level(self, monkeypatch):
        assert resolve_log_level("trace") == TRACE
        assert resolve_log_level("WARN") == logging.WARNING
        assert resolve_log_level("nonsense") == logging.INFO

        monkeypatch.setenv("MCP_TOOLS_MESH_LOG_LEVEL", "ERROR")
        assert resolve_log_level() == logging.ERROR

    def test_configure_logging_scopes_level_to_mesh(self):
        level = configure_logging("TRACE")

        assert level == TRACE
        assert logging.getLogger("mcp_tools_mesh").level == TRACE
        assert logging.getLogger().level == logging.INFO

    def test_debug_mode_lowers_level(self):
        assert configure_logging("WARNING", debug_mode=True) == logging.DEBUG

    def test_trace_method_installed(self):
        assert callable(getattr(logging.getLogger("mcp_tools_mesh.x"), "trace"))


class TestCli:
    """Test the argument parser and simple commands."""

    def test_hub_arguments(self):
        args = create_parser().parse_args(
            ["hub", "--port", "4000", "--state-file", "", "--demo-simulations"]
        )

        assert args.command == "hub"
        assert args.port == 4000
        assert args.state_file == ""
        assert args.demo_simulations is True
        assert args.stdio is False

    def test_node_arguments(self):
        args = create_parser().parse_args(
            ["node", "--id", "client-a", "--tool", "tool1", "--tool", "tool2"]
        )

        assert args.id == "client-a"
        assert args.kind == "client"
        assert args.tool == ["tool1", "tool2"]

    def test_no_command_prints_help(self, capsys):
        assert main([]) == 1
        assert "usage" in capsys.readouterr().out

    def test_config_show_json(self, tmp_path, capsys):
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"hub_port": 4200}))

        argv = ["config", "--config", str(config_file), "show", "--format", "json"]
        assert main(argv) == 0

        assert json.loads(capsys.readouterr().out)["hub_port"] == 4200

    def test_config_error_exit_code(self, tmp_path, capsys):
        config_file = tmp_path / "config.json"
        config_file.write_text("[]")

        assert main(["config", "--config", str(config_file), "show"]) == 1
        assert "Configuration error" in capsys.readouterr().err

    def test_echo_tool(self):
        tool = echo_tool("tool3")

        assert tool.execute({"param": "x"}) == 'Result of tool3 with {"param":"x"}'
