import logging
from typing import Optional, Tuple

import requests

from prism.errors import GitHostError, InputValidationError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30


def parse_repo_url(repo_url: str) -> Tuple[str, str]:
    """
    https://github.com/drshooby/test-terraform-repo.git -> ("drshooby", "test-terraform-repo")
    """
    path = (repo_url or "").strip()
    for prefix in ("https://github.com/", "http://github.com/", "git@github.com:"):
        if path.startswith(prefix):
            path = path[len(prefix):]
            break
    else:
        raise InputValidationError("invalid repo URL format")

    path = path.rstrip("/")
    if path.endswith(".git"):
        path = path[:-4]
    parts = path.split("/")
    if len(parts) != 2 or not all(parts):
        raise InputValidationError("invalid repo URL format")
    return parts[0], parts[1]


class GitHost:
    def __init__(self, api_url: str = "https://api.github.com", session: Optional[requests.Session] = None):
        self.api_url = api_url.rstrip("/")
        self.session = session or requests.Session()

    def _headers(self, token: str) -> dict:
        return {
            "Authorization": f"token {token}",
            "Accept": "application/vnd.github.v3+json",
        }

    def branch_exists(self, owner: str, repo: str, branch: str, token: str) -> bool:
        try:
            resp = self.session.get(
                f"{self.api_url}/repos/{owner}/{repo}/branches/{branch}",
                headers=self._headers(token),
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as e:
            raise GitHostError(f"failed to check branch: {e}")

        if resp.status_code == 200:
            return True
        if resp.status_code == 404:
            return False
        raise GitHostError(f"unexpected status {resp.status_code}: {resp.text}", resp.status_code)

    def create_pull_request(self, owner: str, repo: str, head: str, base: str, title: str, body: str, token: str) -> Tuple[int, str]:
        """Opens a PR and returns (number, html_url)."""
        try:
            resp = self.session.post(
                f"{self.api_url}/repos/{owner}/{repo}/pulls",
                json={"title": title, "head": head, "base": base, "body": body},
                headers=self._headers(token),
                timeout=REQUEST_TIMEOUT,
            )
        except requests.RequestException as e:
            raise GitHostError(f"failed to send request: {e}")

        if resp.status_code != 201:
            raise GitHostError(f"failed to create PR: {resp.text}", resp.status_code)

        try:
            data = resp.json()
            return int(data["number"]), data["html_url"]
        except (ValueError, KeyError, TypeError) as e:
            raise GitHostError(f"failed to decode response: {e}", resp.status_code)
