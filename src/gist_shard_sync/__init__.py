"""Sharded sync engine for snippet collections stored in GitHub Gists."""

__version__ = "0.4.0"
