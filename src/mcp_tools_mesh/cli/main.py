"""Main CLI entry point for MCP Tools Mesh."""

import argparse
import asyncio
import logging
import sys

import uvicorn

from .. import __version__
from ..client.executor_app import create_executor_app
from ..client.node_client import LocalTool, NodeClient
from ..client.transport import HttpTransport
from ..server.executors import compact_json
from ..server.hub import MeshHub
from ..server.hub_server import HubServer
from ..shared.configuration import MeshConfig, MeshConfigManager
from ..shared.exceptions import ConfigurationError
from ..shared.logging_config import configure_logging

logger = logging.getLogger(__name__)


def _load_config(args: argparse.Namespace, **overrides) -> MeshConfig:
    manager = MeshConfigManager(getattr(args, "config", None))
    overrides["log_level"] = getattr(args, "log_level", None)
    config = manager.load_config(overrides)
    configure_logging(config.log_level, config.debug_mode)
    return config


def echo_tool(name: str) -> LocalTool:
    """A tool that answers with its own name and the arguments it received."""
    return LocalTool(
        name=name,
        description=f"Echo tool {name}",
        execute=lambda args: f"Result of {name} with {compact_json(args)}",
    )


async def run_hub(hub: MeshHub, stdio: bool = False) -> None:
    if stdio:
        await hub.start()
        try:
            await hub.mcp.run_async(transport="stdio")
        finally:
            await hub.close()
    else:
        await HubServer(hub).serve_forever()


async def run_node(
    client: NodeClient, executor_host: str | None, executor_port: int | None
) -> int:
    executor_server = None
    executor_task = None
    if executor_port:
        executor_server = uvicorn.Server(
            uvicorn.Config(
                create_executor_app(client),
                host=executor_host or "127.0.0.1",
                port=executor_port,
                access_log=False,
                log_level="warning",
            )
        )
        executor_task = asyncio.create_task(executor_server.serve())

    try:
        if await client.connect():
            await client.wait_closed()
    finally:
        await client.shutdown()
        if executor_server:
            executor_server.should_exit = True
            await executor_task

    if client.fatal_error:
        print(f"Node {client.node_id} gave up: {client.fatal_error}", file=sys.stderr)
        return 1
    return 0


def cmd_hub(args: argparse.Namespace) -> int:
    """Run the mesh hub."""
    config = _load_config(
        args,
        hub_host=args.host,
        hub_port=args.port,
        state_file=args.state_file,
        heartbeat_timeout=args.heartbeat_timeout,
    )
    hub = MeshHub(config)
    if args.demo_simulations:
        hub.enable_demo_simulations()

    logger.info(f"Starting mesh hub v{__version__}")
    asyncio.run(run_hub(hub, stdio=args.stdio))
    return 0


def cmd_node(args: argparse.Namespace) -> int:
    """Run a node offering echo tools."""
    config = _load_config(args, hub_url=args.hub_url)
    executor_url = None
    if args.executor_port:
        executor_url = f"http://{args.executor_host}:{args.executor_port}"

    transport = HttpTransport(
        config.resolved_hub_url,
        timeout=config.request_timeout,
        executor_url=executor_url,
    )
    client = NodeClient(
        args.id,
        transport,
        kind=args.kind,
        tools=[echo_tool(name) for name in args.tool or []],
        config=config,
    )
    return asyncio.run(run_node(client, args.executor_host, args.executor_port))


def cmd_config(args: argparse.Namespace) -> int:
    """Show the effective configuration."""
    manager = MeshConfigManager(args.config)
    if args.config_action == "show":
        print(manager.show_config(format=args.format))
    elif args.config_action == "path":
        print(f"Configuration file: {manager.config_path}")
    else:
        print("Error: choose a config action (show, path)", file=sys.stderr)
        return 1
    return 0


def create_parser() -> argparse.ArgumentParser:
    """Create the main argument parser."""
    description = """MCP Tools Mesh - share MCP tools between nodes through a hub

Examples:
  mcp-tools-mesh hub                                Run the hub on localhost:3000
  mcp-tools-mesh hub --stdio --demo-simulations     Run the hub over MCP stdio
  mcp-tools-mesh node --id client-a --tool tool1    Run an echo node
  mcp-tools-mesh config show --format json          Show effective configuration"""

    parser = argparse.ArgumentParser(
        prog="mcp-tools-mesh",
        description=description,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"mcp-tools-mesh {__version__}",
    )

    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        help="Path to a JSON configuration file",
    )
    common.add_argument(
        "--log-level",
        choices=["TRACE", "DEBUG", "INFO", "WARNING", "WARN", "ERROR", "CRITICAL"],
        help="Log level for mesh loggers",
    )

    subparsers = parser.add_subparsers(
        dest="command",
        help="Available commands",
        metavar="COMMAND",
    )

    # Hub command
    hub_parser = subparsers.add_parser(
        "hub",
        parents=[common],
        help="Run the mesh hub",
    )
    hub_parser.add_argument("--host", help="Host to bind the HTTP server to")
    hub_parser.add_argument("--port", type=int, help="Port for the HTTP server")
    hub_parser.add_argument(
        "--state-file",
        help="Registry snapshot file (empty string disables persistence)",
    )
    hub_parser.add_argument(
        "--heartbeat-timeout",
        type=float,
        help="Seconds without heartbeat before a node is stale",
    )
    hub_parser.add_argument(
        "--stdio",
        action="store_true",
        help="Serve the hub as an MCP server over stdio instead of HTTP",
    )
    hub_parser.add_argument(
        "--demo-simulations",
        action="store_true",
        help="Install stand-in results for the demo nodes' tools",
    )
    hub_parser.set_defaults(func=cmd_hub)

    # Node command
    node_parser = subparsers.add_parser(
        "node",
        parents=[common],
        help="Run a node offering echo tools",
    )
    node_parser.add_argument("--id", required=True, help="Node id")
    node_parser.add_argument(
        "--kind",
        default="client",
        choices=["client", "server", "orchestrator"],
        help="Node kind (default: client)",
    )
    node_parser.add_argument("--hub-url", help="Hub base URL")
    node_parser.add_argument(
        "--tool",
        action="append",
        metavar="NAME",
        help="Offer an echo tool with this name (repeatable)",
    )
    node_parser.add_argument(
        "--executor-host",
        default="127.0.0.1",
        help="Host for the executor callback app (default: 127.0.0.1)",
    )
    node_parser.add_argument(
        "--executor-port",
        type=int,
        help="Serve local tools to the hub on this port",
    )
    node_parser.set_defaults(func=cmd_node)

    # Config command
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Inspect configuration",
    )
    config_subparsers = config_parser.add_subparsers(
        dest="config_action",
        help="Configuration actions",
        metavar="ACTION",
    )
    show_parser = config_subparsers.add_parser(
        "show",
        help="Show effective configuration",
    )
    show_parser.add_argument(
        "--format",
        choices=["text", "json"],
        default="text",
        help="Output format (default: text)",
    )
    config_subparsers.add_parser(
        "path",
        help="Show configuration file path",
    )
    config_parser.set_defaults(func=cmd_config)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the MCP Tools Mesh CLI."""
    parser = create_parser()
    args = parser.parse_args(argv)

    if not hasattr(args, "func"):
        parser.print_help()
        return 1

    try:
        return args.func(args)
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
        return 130
    except ConfigurationError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
