"""MCP server package."""

from .server import mcp

__all__ = ["mcp"]
