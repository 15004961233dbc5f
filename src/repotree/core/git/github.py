"""Minimal GitHub REST client, used to create the remote a repository pushes to."""

from typing import Any

import requests
from loguru import logger

from repotree.config import GITHUB_API_URL
from repotree.errors import ExternalToolError

# GitHub answers 422 when the repository name is already taken.
_ALREADY_EXISTS = 422


class GitHubClient:
    """Token-authenticated access to the GitHub REST API."""

    def __init__(
        self,
        token: str,
        *,
        api_url: str = GITHUB_API_URL,
        session: requests.Session | None = None,
    ) -> None:
        self.api_url = api_url.rstrip("/")
        self.sess = session or requests.Session()
        self.sess.headers.update({
            "Authorization": f"Bearer {token}",
            "Accept": "application/vnd.github+json",
        })

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        logger.debug("GitHub API: {} {}", method, path)
        try:
            return self.sess.request(method, f"{self.api_url}{path}", timeout=30, **kwargs)
        except requests.RequestException as e:
            raise ExternalToolError(f"{method} {path}", -1, str(e)) from e

    def _check(self, r: requests.Response, method: str, path: str) -> dict[str, Any]:
        if not r.ok:
            raise ExternalToolError(f"{method} {path}", r.status_code, r.text[:200])
        rv: dict[str, Any] = r.json()
        return rv

    def get_login(self) -> str:
        """Return the login of the token's user."""
        r = self._request("GET", "/user")
        return str(self._check(r, "GET", "/user")["login"])

    def get_repository(self, full_name: str) -> dict[str, Any]:
        path = f"/repos/{full_name}"
        return self._check(self._request("GET", path), "GET", path)

    def create_repository(
        self,
        name: str,
        *,
        org: str | None = None,
        private: bool = True,
        description: str = "",
    ) -> str:
        """Create a repository for the user (or org) and return its clone URL.

        An existing repository of that name is reused.
        """
        path = f"/orgs/{org}/repos" if org else "/user/repos"
        payload = {"name": name, "private": private, "description": description}
        r = self._request("POST", path, json=payload)
        if r.status_code == _ALREADY_EXISTS:
            owner = org or self.get_login()
            logger.info("GitHub repository {}/{} already exists, reusing it", owner, name)
            return str(self.get_repository(f"{owner}/{name}")["clone_url"])
        clone_url = str(self._check(r, "POST", path)["clone_url"])
        logger.info("Created GitHub repository {}", clone_url)
        return clone_url
