"""Local Store persisted as JSON files.

The data directory holds two files:

* ``sync_config.json`` -- root/legacy container ids and the schema version.
* ``index_snapshot.json`` -- the last index seen or written, in the same
  wire format as the remote root container.

Both are written atomically (temp file then ``os.replace()``) so a crash
never leaves a half-written snapshot behind.
"""

from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from gist_shard_sync.core.async_utils import run_sync
from gist_shard_sync.exceptions import ParseError
from gist_shard_sync.sync.models import Index, SyncConfig

logger = logging.getLogger(__name__)

CONFIG_FILE = "sync_config.json"
INDEX_FILE = "index_snapshot.json"


def _atomic_write(target: Path, text: str) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=str(target.parent), suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
        os.replace(tmp_path, target)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class JsonLocalStore:
    """Config and index snapshot under *data_dir*.

    Args:
        data_dir: Directory for the JSON files; created on first write.
    """

    def __init__(self, data_dir: Path) -> None:
        self._data_dir = data_dir

    @property
    def config_path(self) -> Path:
        return self._data_dir / CONFIG_FILE

    @property
    def index_path(self) -> Path:
        return self._data_dir / INDEX_FILE

    # ------------------------------------------------------------------
    # Synchronous implementation
    # ------------------------------------------------------------------

    def load_config(self) -> SyncConfig:
        """Return the stored config, or defaults when none was saved.

        Raises:
            ParseError: If the stored config is not valid JSON or fails
                validation.
        """
        if not self.config_path.exists():
            return SyncConfig()
        try:
            return SyncConfig.model_validate_json(
                self.config_path.read_text(encoding="utf-8")
            )
        except ValidationError as exc:
            raise ParseError(f"Malformed sync config: {exc}") from exc

    def store_config(self, config: SyncConfig) -> None:
        _atomic_write(self.config_path, config.model_dump_json(indent=2))

    def load_index(self) -> Index | None:
        if not self.index_path.exists():
            return None
        return Index.from_json(self.index_path.read_text(encoding="utf-8"))

    def store_index(self, index: Index) -> None:
        _atomic_write(self.index_path, index.to_json())
        logger.debug("Saved index snapshot to %s", self.index_path)

    # ------------------------------------------------------------------
    # LocalStore port
    # ------------------------------------------------------------------

    async def get_config(self) -> SyncConfig:
        return await run_sync(self.load_config)

    async def save_config(self, config: SyncConfig) -> None:
        await run_sync(self.store_config, config)

    async def get_index(self) -> Index | None:
        return await run_sync(self.load_index)

    async def save_index(self, index: Index) -> None:
        await run_sync(self.store_index, index)
