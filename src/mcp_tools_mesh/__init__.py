"""
MCP Tools Mesh - cross-node tool sharing for Model Context Protocol nodes

A hub keeps a registry of connected nodes and the tools, resources and
prompts they offer, tracks their liveness through heartbeats and routes
calls from one node to the node that owns the target. Node clients keep a
resilient connection to the hub and re-register after every reconnect.
"""

__version__ = "0.1.0"
__author__ = "MCP Tools Mesh Contributors"
__description__ = "Hub-and-spoke tool sharing mesh for MCP nodes"

# Installs the TRACE level on logging.Logger before any mesh module logs.
from .shared import logging_config  # noqa: E402,F401
