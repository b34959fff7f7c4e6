"""Lifespan management for MCP server startup and shutdown."""

import logging
import sys
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

from dotenv import load_dotenv

from ..config_loader import discover_config_files, load_hierarchical_config
from ..config_schema import build_config, to_runtime_config
from ..core.async_utils import init_semaphore, run_sync
from ..core.gist_client import GistClient
from ..core.remote_store import GistRemoteStore
from ..security.crypto import AesGcmCryptoProvider
from ..storage.file_repository import SqliteFileRepository
from ..storage.local_store import JsonLocalStore
from ..sync.engine import SyncEngine
from .context import SyncContext

logger = logging.getLogger(__name__)

DOCUMENTS_DB = "documents.sqlite3"


def _stderr_print(msg: str) -> None:
    """Print message to stderr for user feedback (safe in MCP mode)."""
    print(msg, file=sys.stderr, flush=True)


@asynccontextmanager
async def server_lifespan(
    config_overrides: dict[str, Any] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Manage server startup and shutdown lifecycle.

    On startup:
    - Load .env file (so values are available for env var lookups and YAML interpolation)
    - Load YAML config files if present (as fallback values)
    - Merge all sources: CLI > env vars > .env > YAML > defaults
    - Verify the GitHub token, fail fast if it is rejected
    - Wire the sync engine to the Gist store and the local cache

    Args:
        config_overrides: Optional dict with config values from CLI (token, api_url, data_dir, debug)

    Yields:
        Dict with 'context' key containing the initialized SyncContext

    Raises:
        RuntimeError: If configuration is invalid or GitHub rejects the token.
    """
    logger.info("MCP server starting...")
    _stderr_print("Gist Shard Sync server starting...")

    try:
        # .env first so ${VAR} interpolation in YAML can use its values
        load_dotenv()

        sources = []
        config_files = discover_config_files()
        unified = build_config(load_hierarchical_config())
        if config_files:
            sources.append(f"config file: {config_files[0]}")

        overrides = config_overrides or {}
        config = to_runtime_config(unified, cli_overrides=overrides)

        if overrides:
            sources.append("CLI arguments")
        sources.append("environment variables")
        source_desc = ", ".join(sources)
        logger.info("Configuration loaded from: %s", source_desc)
        _stderr_print(f"  Configuration loaded from: {source_desc}")
        _stderr_print(f"  GitHub API: {config.api_url}")
        _stderr_print(f"  Data directory: {config.data_path}")
    except ValueError as e:
        logger.error("Configuration error: %s", e)
        _stderr_print(f"ERROR: Configuration error: {e}")
        _stderr_print("  Ensure GITHUB_TOKEN is set.")
        raise RuntimeError(
            f"Configuration error: {e}. Ensure GITHUB_TOKEN is set."
        ) from e

    logger.info("Verifying GitHub token...")
    _stderr_print("  Verifying GitHub token...")
    try:
        client = GistClient(config)
        user = await run_sync(client.get_authenticated_user)
        login = user.get("login", "unknown")
        logger.info("Authenticated to GitHub as %s", login)
        _stderr_print(f"  Authenticated as {login}")
    except Exception as e:
        logger.error("Failed to reach GitHub: %s", e)
        _stderr_print("ERROR: GitHub authentication failed.")
        _stderr_print(f"  {e}")
        _stderr_print("  Check GITHUB_TOKEN and GIST_SYNC_API_URL.")
        raise RuntimeError(
            f"GitHub authentication failed: {e}. Check GITHUB_TOKEN and GIST_SYNC_API_URL."
        ) from e

    init_semaphore(config.max_parallel_requests)
    _stderr_print(f"  Parallel requests: {config.max_parallel_requests}")

    local = JsonLocalStore(config.data_path)
    engine = SyncEngine(
        remote=GistRemoteStore(client),
        local=local,
        files=SqliteFileRepository(config.data_path / DOCUMENTS_DB),
        crypto=AesGcmCryptoProvider(config.vault_password),
        limits=unified.sharding.to_limits(),
    )
    context = SyncContext(config=config, client=client, engine=engine, local=local)
    _stderr_print("Server ready. Waiting for MCP client connection...")

    yield {"context": context}

    logger.info("MCP server shutting down")
    _stderr_print("Gist Shard Sync server shutting down.")
