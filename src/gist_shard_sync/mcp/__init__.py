"""MCP stdio server exposing sync maintenance tools."""
