"""Tests for MCP error response builders."""

import pytest

from gist_shard_sync.exceptions import (
    AuthRequiredError,
    ConflictError,
    NotFoundError,
    ParseError,
    SyncError,
    TransportError,
)
from gist_shard_sync.mcp.tools.errors import build_error_response, translate_sync_error


def test_build_error_response():
    result = build_error_response("not_found", "gone", "Look elsewhere.")
    assert result.isError
    assert result.content[0].text == "Error (not_found): gone\n\nAction: Look elsewhere."


@pytest.mark.parametrize(
    "error, error_type, hint",
    [
        (ConflictError("stale"), "version_conflict", "sync_pull"),
        (AuthRequiredError("no key"), "auth_required", "GIST_SYNC_VAULT_PASSWORD"),
        (NotFoundError("no root"), "not_found", "root_container_id"),
        (ParseError("bad json"), "parse_error", "shard_repair"),
        (TransportError("denied", status=401), "permission_denied", "GITHUB_TOKEN"),
        (TransportError("denied", status=403), "permission_denied", "gist scope"),
        (TransportError("down", status=502), "server_error", "Retry later"),
        (TransportError("refused"), "server_error", "Retry later"),
        (SyncError("other"), "server_error", "Retry later"),
    ],
)
def test_translate_sync_error(error, error_type, hint):
    result = translate_sync_error(error)
    text = result.content[0].text
    assert result.isError
    assert text.startswith(f"Error ({error_type}): {error}")
    assert hint in text
