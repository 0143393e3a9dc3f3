import logging
from typing import Dict, Optional

import requests

from prism.config import Settings
from prism.errors import VaultError
from prism.schemas import CreateProjectRequest, CreateProjectResponse, VaultListResponse

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30


class VaultClient:
    """
    Infisical client (machine identity, universal auth) over the REST API.

    list_secrets never raises: transport failures come back as status 500
    with the error text, upstream failures with the upstream status and body.
    """

    def __init__(self, site_url: str, client_id: str, client_secret: str, session: Optional[requests.Session] = None):
        self.site_url = site_url.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.session = session or requests.Session()
        self._access_token: Optional[str] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "VaultClient":
        return cls(settings.infisical_site_url, settings.infisical_client_id, settings.infisical_client_secret)

    def login(self) -> str:
        resp = self.session.post(
            f"{self.site_url}/api/v1/auth/universal-auth/login",
            data={"clientId": self.client_id, "clientSecret": self.client_secret},
            timeout=REQUEST_TIMEOUT,
        )
        if resp.status_code != 200:
            raise VaultError(f"login failed: {resp.text}", resp.status_code)
        self._access_token = resp.json()["accessToken"]
        return self._access_token

    def _headers(self) -> Dict[str, str]:
        token = self._access_token or self.login()
        return {"Authorization": f"Bearer {token}"}

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        resp = self.session.request(method, f"{self.site_url}{path}", headers=self._headers(), timeout=REQUEST_TIMEOUT, **kwargs)
        if resp.status_code == 401:
            # Access token expired; log in again once
            self._access_token = None
            resp = self.session.request(method, f"{self.site_url}{path}", headers=self._headers(), timeout=REQUEST_TIMEOUT, **kwargs)
        return resp

    def list_secrets(self, environment: str, project_id: str, secret_path: str) -> VaultListResponse:
        try:
            resp = self._request(
                "GET",
                "/api/v3/secrets/raw",
                params={"workspaceId": project_id, "environment": environment, "secretPath": secret_path},
            )
        except VaultError as e:
            return VaultListResponse(status_code=e.upstream_status or 500, error=f"Error getting secrets: {e.upstream_message}")
        except (requests.RequestException, ValueError, KeyError) as e:
            return VaultListResponse(status_code=500, error=f"Error getting secrets: {e}")

        if resp.status_code != 200:
            return VaultListResponse(status_code=resp.status_code, error=resp.text or resp.reason or "request failed")

        try:
            secrets = resp.json().get("secrets", [])
            values = {s["secretKey"]: s.get("secretValue", "") for s in secrets}
        except (ValueError, KeyError, TypeError, AttributeError) as e:
            return VaultListResponse(status_code=500, error=f"Error decoding secrets: {e}")
        return VaultListResponse(values=values, status_code=200)

    def create_project(self, request: CreateProjectRequest) -> CreateProjectResponse:
        payload = {
            "projectName": request.project_name,
            "projectDescription": request.project_description,
            "slug": request.slug,
            "type": request.type,
        }
        try:
            resp = self._request("POST", "/api/v2/workspace", json=payload)
        except requests.RequestException as e:
            raise VaultError(f"failed to send request: {e}")

        if resp.status_code not in (200, 201):
            raise VaultError(f"api returned {resp.status_code}: {resp.text}", resp.status_code)

        try:
            project = resp.json()["project"]
            return CreateProjectResponse(id=project.get("_id") or project["id"], name=project["name"], slug=project.get("slug", ""))
        except (ValueError, KeyError, TypeError) as e:
            raise VaultError(f"failed to decode response: {e}", resp.status_code)
