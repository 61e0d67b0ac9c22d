"""GitHub Git object API client (trees, blobs, commits, refs)."""

import asyncio
from typing import Any

import httpx

from remixhub.core.config import get_settings
from remixhub.core.exceptions import UpstreamAPIError
from remixhub.core.logging import get_logger

log = get_logger(__name__)


class GitHubClient:
    """Thin client bound to one personal access token.

    Returns parsed JSON on 2xx and raises ``UpstreamAPIError`` with the raw body
    otherwise. 4xx responses are final; 5xx and transport errors get one retry.
    """

    def __init__(
        self,
        token: str,
        base_url: str | None = None,
        timeout: float | None = None,
        retry_backoff: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        settings = get_settings()
        self.retry_backoff = settings.http_retry_backoff_seconds if retry_backoff is None else retry_backoff
        self._client = httpx.AsyncClient(
            base_url=base_url or settings.github_api_url,
            timeout=timeout or settings.http_timeout_seconds,
            transport=transport,
            headers={
                "Authorization": f"token {token}",
                "Accept": "application/vnd.github.v3+json",
                "User-Agent": settings.github_user_agent,
            },
        )

    async def __aenter__(self) -> "GitHubClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        attempts = 2
        for attempt in range(1, attempts + 1):
            try:
                response = await self._client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                if attempt < attempts:
                    log.warning("github_request_retry", method=method, url=url, error=str(e))
                    await asyncio.sleep(self.retry_backoff)
                    continue
                raise UpstreamAPIError(0, f"network error: {e}", service="GitHub") from e
            if response.is_success:
                return response.json() if response.content else {}
            if response.status_code >= 500 and attempt < attempts:
                log.warning("github_request_retry", method=method, url=url, status_code=response.status_code)
                await asyncio.sleep(self.retry_backoff)
                continue
            raise UpstreamAPIError(response.status_code, response.text, service="GitHub")

    async def get_repository(self, owner: str, repo: str) -> dict[str, Any]:
        return await self._request("GET", f"/repos/{owner}/{repo}")

    async def create_repository(self, name: str, private: bool = False, auto_init: bool = True) -> dict[str, Any]:
        """Create a repository for the authenticated user."""
        return await self._request(
            "POST",
            "/user/repos",
            json={"name": name, "private": private, "auto_init": auto_init},
        )

    async def get_tree_recursive(self, owner: str, repo: str, tree_ish: str) -> dict[str, Any]:
        return await self._request(
            "GET",
            f"/repos/{owner}/{repo}/git/trees/{tree_ish}",
            params={"recursive": "1"},
        )

    async def get_blob(self, owner: str, repo: str, sha: str, url: str | None = None) -> dict[str, Any]:
        """Fetch a blob by the URL listed in its tree entry, or by sha."""
        return await self._request("GET", url or f"/repos/{owner}/{repo}/git/blobs/{sha}")

    async def create_blob(self, owner: str, repo: str, content: str, encoding: str = "base64") -> dict[str, Any]:
        return await self._request(
            "POST",
            f"/repos/{owner}/{repo}/git/blobs",
            json={"content": content, "encoding": encoding},
        )

    async def create_tree(self, owner: str, repo: str, tree: list[dict[str, str]]) -> dict[str, Any]:
        # No base_tree: the new tree replaces everything.
        return await self._request("POST", f"/repos/{owner}/{repo}/git/trees", json={"tree": tree})

    async def create_commit(
        self,
        owner: str,
        repo: str,
        message: str,
        tree_sha: str,
        parents: list[str] | None = None,
    ) -> dict[str, Any]:
        payload: dict[str, Any] = {"message": message, "tree": tree_sha}
        if parents:
            payload["parents"] = parents
        return await self._request("POST", f"/repos/{owner}/{repo}/git/commits", json=payload)

    async def update_ref(self, owner: str, repo: str, branch: str, sha: str, force: bool = True) -> dict[str, Any]:
        return await self._request(
            "PATCH",
            f"/repos/{owner}/{repo}/git/refs/heads/{branch}",
            json={"sha": sha, "force": force},
        )
