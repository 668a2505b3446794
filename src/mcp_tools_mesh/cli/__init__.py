"""Command-line interface for MCP Tools Mesh."""

from .main import create_parser, main

__all__ = ["create_parser", "main"]
