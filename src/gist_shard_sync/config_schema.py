"""Unified configuration schema for gist_shard_sync.

Pydantic models for the YAML config, one section per concern, plus the
adapters that turn it into the runtime ``Config`` dataclass and the
``ShardLimits`` used by the sync engine.

Usage:
    from gist_shard_sync.config_schema import (
        UnifiedConfig, build_config, to_runtime_config,
    )

    raw = load_hierarchical_config()
    unified = build_config(raw)
    config = to_runtime_config(unified, cli_overrides={"token": "..."})
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from pydantic import BaseModel, Field, model_validator

from .sync.allocator import KIB, MIB, ShardLimits

if TYPE_CHECKING:
    from .config import Config

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Section models
# ---------------------------------------------------------------------------


class GitHubConfig(BaseModel):
    """GitHub API settings.

    All fields are optional to support zero-config: env vars and CLI args
    can supply them at runtime instead.
    """

    token: str | None = Field(default=None, description="GitHub token")
    api_url: str | None = Field(default=None, description="GitHub API base URL")
    timeout: float = Field(
        default=30.0, gt=0, description="Per-request timeout in seconds"
    )
    debug: bool = Field(default=False, description="Enable debug mode")
    max_parallel_requests: int = Field(
        default=4,
        ge=1,
        le=100,
        description="Maximum concurrent requests to the GitHub API (1-100)",
    )

    model_config = {"frozen": True}


class StorageConfig(BaseModel):
    """Local cache location."""

    data_dir: str | None = Field(
        default=None, description="Directory for the local index and documents"
    )

    model_config = {"frozen": True}


class ShardingConfig(BaseModel):
    """Shard capacity limits.

    Attributes:
        target_bytes: Soft byte target per shard.
        hard_bytes: Hard byte ceiling per shard.
        file_limit: Maximum documents per shard.
        large_file_bytes: Documents above this size go to large shards.
    """

    target_bytes: int = Field(default=3 * MIB, ge=1)
    hard_bytes: int = Field(default=8 * MIB, ge=1)
    file_limit: int = Field(default=120, ge=1)
    large_file_bytes: int = Field(default=512 * KIB, ge=1)

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _target_within_hard(self) -> ShardingConfig:
        if self.target_bytes > self.hard_bytes:
            raise ValueError(
                f"sharding.target_bytes ({self.target_bytes}) must not exceed "
                f"sharding.hard_bytes ({self.hard_bytes})"
            )
        return self

    def to_limits(self) -> ShardLimits:
        return ShardLimits(**self.model_dump())


class LoggingConfig(BaseModel):
    """Logging configuration.

    Attributes:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        file: Optional log file path.
    """

    level: str = Field(default="INFO", description="Log level")
    file: str | None = Field(default=None, description="Log file path")

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Top-level unified config
# ---------------------------------------------------------------------------


class UnifiedConfig(BaseModel):
    """Top-level unified configuration.

    Every section has defaults, so ``UnifiedConfig()`` (zero-config) is
    always valid.
    """

    github: GitHubConfig = Field(default_factory=GitHubConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    sharding: ShardingConfig = Field(default_factory=ShardingConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"frozen": True}


def build_config(raw_data: dict) -> UnifiedConfig:
    """Construct a ``UnifiedConfig`` from the merged YAML dict.

    Missing sections get their defaults.
    """
    if not raw_data:
        return UnifiedConfig()

    return UnifiedConfig(**raw_data)


# ---------------------------------------------------------------------------
# Adapter: UnifiedConfig -> runtime Config
# ---------------------------------------------------------------------------


def yaml_fallbacks(unified: UnifiedConfig) -> dict:
    """Flatten the sections ``load_config()`` reads its fallbacks from."""
    fallbacks = unified.github.model_dump(exclude_none=True)
    fallbacks.update(unified.storage.model_dump(exclude_none=True))
    return fallbacks


def to_runtime_config(
    unified: UnifiedConfig,
    cli_overrides: dict | None = None,
) -> Config:
    """Resolve the runtime ``Config`` from YAML values and CLI overrides.

    Environment variables sit between the two, see ``load_config()``.

    CLI overrides dict keys: token, api_url, data_dir, debug.

    Raises:
        ValueError: If no token can be found or a value is invalid.
    """
    from .config import load_config

    overrides = cli_overrides or {}
    return load_config(
        token=overrides.get("token"),
        api_url=overrides.get("api_url"),
        data_dir=overrides.get("data_dir"),
        debug=bool(overrides.get("debug", False)),
        yaml_fallbacks=yaml_fallbacks(unified),
    )
