"""
MCP Tools Mesh Hub - Main Entry Point

Usage:
    python -m mcp_tools_mesh.server
    python -m mcp_tools_mesh.server --host 0.0.0.0 --port 3000
    python -m mcp_tools_mesh.server --stdio
"""

import sys

from ..cli.main import main

if __name__ == "__main__":
    sys.exit(main(["hub", *sys.argv[1:]]))
