"""Objects shared by every tool handler for the lifetime of the server."""

from dataclasses import dataclass

from ..config import Config
from ..core.gist_client import GistClient
from ..storage.local_store import JsonLocalStore
from ..sync.engine import SyncEngine


@dataclass
class SyncContext:
    """Wiring built once at startup by ``server_lifespan``.

    Attributes:
        config: Resolved runtime configuration.
        client: GitHub client, used directly by ``ping``.
        engine: Sync engine over the Gist remote store and local cache.
        local: Local config and index snapshot store.
    """

    config: Config
    client: GistClient
    engine: SyncEngine
    local: JsonLocalStore
