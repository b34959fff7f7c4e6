"""Local persistence adapters: JSON snapshot store and SQLite documents."""

from .file_repository import SqliteFileRepository
from .local_store import JsonLocalStore

__all__ = ["JsonLocalStore", "SqliteFileRepository"]
