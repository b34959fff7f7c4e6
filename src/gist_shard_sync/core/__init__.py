"""Core GitHub client functionality shared between CLI and MCP server."""

from .async_utils import run_sync
from .gist_client import GistClient

__all__ = ["GistClient", "run_sync"]
