"""Runtime configuration for the sync tooling.

Reads GitHub and local storage settings from CLI args, environment
variables, .env files, and YAML config file fallbacks.

Precedence (highest to lowest):
    CLI args > Environment variables > .env file > YAML config > Built-in defaults

Environment variables:
    GITHUB_TOKEN: GitHub token with the ``gist`` scope (required)
    GIST_SYNC_API_URL: GitHub API base URL (optional, default: https://api.github.com)
    GIST_SYNC_DATA_DIR: Local cache directory (optional, default: ~/.local/share/gist_sync)
    GIST_SYNC_VAULT_PASSWORD: Password for secure documents (optional)
    GIST_SYNC_MAX_PARALLEL_REQUESTS: Max parallel GitHub requests (optional, default: 4)
    GIST_SYNC_DEBUG: Enable debug logging (optional, default: false)
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
DEFAULT_DATA_DIR = "~/.local/share/gist_sync"


@dataclass
class Config:
    github_token: str
    api_url: str = DEFAULT_API_URL
    data_dir: str = DEFAULT_DATA_DIR
    vault_password: str | None = None
    timeout: float = 30.0
    debug: bool = False
    max_parallel_requests: int = 4

    @property
    def data_path(self) -> Path:
        return Path(self.data_dir).expanduser()


def validate_config(config: Config) -> None:
    """Validate configuration values and raise ValueError if invalid.

    Raises:
        ValueError: If the API URL is malformed or the token is empty.
    """
    config.api_url = config.api_url.strip()

    if not config.api_url.startswith(("http://", "https://")):
        raise ValueError(
            f"Invalid API URL '{config.api_url}': must start with http:// or https://"
        )

    parsed = urlparse(config.api_url)
    if not parsed.hostname:
        raise ValueError(
            f"Invalid API URL '{config.api_url}': URL must include a hostname"
        )

    config.api_url = config.api_url.removesuffix("/")

    if not config.github_token.strip():
        raise ValueError(
            "GitHub token cannot be empty. Set GITHUB_TOKEN environment variable."
        )

    if config.api_url.startswith("http://"):
        logger.warning(
            "WARNING: GitHub API URL uses plain http. Use only for development."
        )


def _get_bool_env(key: str) -> bool | None:
    """Return True/False from env var, or None if unset."""
    val = os.getenv(key)
    if val is None:
        return None
    return val.lower() in ("true", "1", "yes", "on")


def load_config(
    token: str | None = None,
    api_url: str | None = None,
    data_dir: str | None = None,
    debug: bool = False,
    yaml_fallbacks: dict | None = None,
) -> Config:
    """Load configuration with unified precedence.

    Resolution order for each field (highest to lowest):
        CLI arg > env var / .env > yaml_fallbacks > built-in default

    The caller is responsible for calling ``load_dotenv()`` before this
    function so that .env values are available via ``os.getenv()``.

    Args:
        token: Override GitHub token.
        api_url: Override GitHub API base URL.
        data_dir: Override local cache directory.
        debug: Enable debug logging (CLI flag).
        yaml_fallbacks: Flat dict of YAML values (``github`` and ``storage``
            sections merged), used when CLI arg and env var are both unset.

    Returns:
        Validated Config instance.

    Raises:
        ValueError: If the token is missing after checking all sources, or
            a numeric setting is out of range.
    """
    fb = yaml_fallbacks or {}

    github_token = token or os.getenv("GITHUB_TOKEN") or fb.get("token")
    if not github_token:
        raise ValueError(
            "GitHub token not found. Set GITHUB_TOKEN environment variable, "
            "pass --token CLI argument, or add 'github.token' to config.yml."
        )

    final_api_url = (
        api_url
        or os.getenv("GIST_SYNC_API_URL")
        or fb.get("api_url")
        or DEFAULT_API_URL
    )
    final_data_dir = (
        data_dir
        or os.getenv("GIST_SYNC_DATA_DIR")
        or fb.get("data_dir")
        or DEFAULT_DATA_DIR
    )
    vault_password = os.getenv("GIST_SYNC_VAULT_PASSWORD") or None

    if debug:
        final_debug = True
    else:
        env_debug = _get_bool_env("GIST_SYNC_DEBUG")
        if env_debug is not None:
            final_debug = env_debug
        else:
            final_debug = bool(fb.get("debug", False))

    # No CLI args for numeric fields
    max_parallel_raw = os.getenv("GIST_SYNC_MAX_PARALLEL_REQUESTS")
    if max_parallel_raw is not None:
        try:
            final_max_parallel = int(max_parallel_raw)
        except ValueError:
            raise ValueError(
                f"Invalid GIST_SYNC_MAX_PARALLEL_REQUESTS '{max_parallel_raw}': must be a number between 1 and 100"
            ) from None
        if not (1 <= final_max_parallel <= 100):
            raise ValueError(
                f"Invalid GIST_SYNC_MAX_PARALLEL_REQUESTS '{max_parallel_raw}': must be a number between 1 and 100"
            )
    elif "max_parallel_requests" in fb:
        final_max_parallel = int(fb["max_parallel_requests"])
    else:
        final_max_parallel = 4

    config = Config(
        github_token=github_token.strip(),
        api_url=final_api_url,
        data_dir=final_data_dir,
        vault_password=vault_password,
        timeout=float(fb.get("timeout", 30.0)),
        debug=final_debug,
        max_parallel_requests=final_max_parallel,
    )

    validate_config(config)

    return config
