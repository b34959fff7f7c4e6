"""Synchronous GitHub Gists REST client.

Every failure surfaces as a ``SyncError`` subclass: HTTP 404 raises
``NotFoundError``, any other non-2xx status or connection problem raises
``TransportError`` carrying the status code when there is one.  Retries
and rate limiting are left to the caller's environment.
"""

import logging
import threading
from typing import Any

import requests

from ..config import Config
from ..exceptions import NotFoundError, TransportError

logger = logging.getLogger(__name__)

API_VERSION = "2022-11-28"
PAGE_SIZE = 100


class GistClient:
    def __init__(self, config: Config):
        self.config = config
        self._thread_local = threading.local()
        self.base_url = config.api_url.rstrip("/")

    @property
    def session(self) -> requests.Session:
        """The current thread's session."""
        return self._get_session()

    def _get_session(self) -> requests.Session:
        """Get or create a thread-local requests.Session."""
        if not hasattr(self._thread_local, "session"):
            self._thread_local.session = self._create_session()
        return self._thread_local.session

    def _create_session(self) -> requests.Session:
        session = requests.Session()
        session.headers.update(
            {
                "Authorization": f"Bearer {self.config.github_token}",
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": API_VERSION,
            }
        )
        return session

    def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        """
        Send one API request and decode the JSON response body.
        """
        url = f"{self.base_url}{path}"
        try:
            response = self._get_session().request(
                method, url, timeout=self.config.timeout, **kwargs
            )
        except requests.RequestException as exc:
            raise TransportError(f"{method} {path} failed: {exc}") from exc

        if response.status_code == 404:
            raise NotFoundError(f"{method} {path}: not found")
        if not response.ok:
            raise TransportError(
                f"{method} {path} failed: {response.status_code} "
                f"{response.text[:200]}",
                status=response.status_code,
            )

        logger.debug("%s %s -> %d", method, path, response.status_code)
        if not response.content:
            return None
        return response.json()

    def get_authenticated_user(self) -> dict:
        """
        Return the user the token belongs to.
        """
        return self._request("GET", "/user")

    def get_gist(self, gist_id: str) -> dict:
        """
        Get one gist, including file contents (truncated above ~1 MB).
        """
        return self._request("GET", f"/gists/{gist_id}")

    def list_gists(self) -> list[dict]:
        """
        List every gist of the authenticated user, following pagination.
        """
        gists: list[dict] = []
        page = 1
        while True:
            batch = self._request(
                "GET", "/gists", params={"per_page": PAGE_SIZE, "page": page}
            )
            if not batch:
                break
            gists.extend(batch)
            if len(batch) < PAGE_SIZE:
                break
            page += 1
        return gists

    def create_gist(
        self, description: str, files: dict[str, str], public: bool = False
    ) -> dict:
        """
        Create a gist.  GitHub rejects files with empty content.
        """
        payload = {
            "description": description,
            "public": public,
            "files": {name: {"content": content} for name, content in files.items()},
        }
        return self._request("POST", "/gists", json=payload)

    def update_gist(
        self,
        gist_id: str,
        files: dict[str, str | None],
        description: str | None = None,
    ) -> dict:
        """
        Write, replace or delete (``None`` content) files in one commit.
        """
        payload: dict[str, Any] = {
            "files": {
                name: None if content is None else {"content": content}
                for name, content in files.items()
            }
        }
        if description is not None:
            payload["description"] = description
        return self._request("PATCH", f"/gists/{gist_id}", json=payload)

    def delete_gist(self, gist_id: str) -> None:
        self._request("DELETE", f"/gists/{gist_id}")

    def file_content(self, file_entry: dict) -> str:
        """
        Return a gist file's full content, downloading it when truncated.
        """
        if not file_entry.get("truncated"):
            return file_entry.get("content") or ""
        raw_url = file_entry["raw_url"]
        try:
            response = self._get_session().get(
                raw_url, timeout=self.config.timeout
            )
        except requests.RequestException as exc:
            raise TransportError(f"GET {raw_url} failed: {exc}") from exc
        if not response.ok:
            raise TransportError(
                f"GET {raw_url} failed: {response.status_code}",
                status=response.status_code,
            )
        return response.text
