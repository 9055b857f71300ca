"""HTTP client for the Travis CI API."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any
from urllib.parse import quote

import httpx

from courseflow.ci.builds import build_from_api
from courseflow.errors import IntegrationError
from courseflow.model import CiBuild, CiEventType

logger = logging.getLogger(__name__)

SERVICE = "travis"


@dataclass
class TravisUser:
    id: int
    login: str
    is_syncing: bool


class TravisClient:
    """Travis API v3 client bound to one access token.

    ``exchange_token`` uses the legacy v2 endpoint, the only one that issues
    tokens for GitHub credentials.
    """

    def __init__(
        self,
        base_url: str,
        token: str | None = None,
        *,
        client: httpx.Client | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._token = token
        if client is None:
            self._client = httpx.Client(base_url=base_url, timeout=timeout)
            self._owns_client = True
        else:
            self._client = client
            self._owns_client = False

    def with_token(self, token: str) -> TravisClient:
        """Return a client sharing the same connection pool but using ``token``."""
        clone = TravisClient.__new__(TravisClient)
        clone._token = token
        clone._client = self._client
        clone._owns_client = False
        return clone

    def exchange_token(self, github_token: str) -> str:
        try:
            response = self._client.post(
                "/auth/github",
                json={"github_token": github_token},
                headers={"Accept": "application/vnd.travis-ci.2.1+json"},
            )
        except httpx.HTTPError as e:
            raise IntegrationError(SERVICE, "Travis token exchange failed", str(e)) from e
        data = self._json(response, "Travis token exchange failed")
        token = data.get("access_token") if isinstance(data, dict) else None
        if not token:
            raise IntegrationError(SERVICE, "Travis token exchange returned no token", response.text)
        return token

    def get_user(self) -> TravisUser:
        data = self._json(self._get("/user"), "Travis user retrieving failed")
        return TravisUser(
            id=data["id"],
            login=data.get("login", ""),
            is_syncing=bool(data.get("is_syncing")),
        )

    def sync(self, user_id: int) -> None:
        self._json(self._post(f"/user/{user_id}/sync"), f"Travis user {user_id} sync hasn't started")

    def get_repository(self, owner: str, name: str) -> dict[str, Any]:
        return self._json(
            self._get(f"/repo/{self._slug(owner, name)}"),
            f"Travis repository {owner}/{name} retrieving failed",
        )

    def has_repository(self, owner: str, name: str) -> bool:
        response = self._get(f"/repo/{self._slug(owner, name)}")
        if response.status_code == 404:
            return False
        self._json(response, f"Travis repository {owner}/{name} retrieving failed")
        return True

    def activate(self, owner: str, name: str) -> None:
        self._json(
            self._post(f"/repo/{self._slug(owner, name)}/activate"),
            f"Travis activation of {owner}/{name} repository went bad",
        )

    def deactivate(self, owner: str, name: str) -> None:
        self._json(
            self._post(f"/repo/{self._slug(owner, name)}/deactivate"),
            f"Travis deactivation of {owner}/{name} repository went bad",
        )

    def get_builds(
        self, owner: str, name: str, event_type: CiEventType | None = None
    ) -> list[CiBuild]:
        params = {"event_type": event_type.value} if event_type else None
        data = self._json(
            self._get(f"/repo/{self._slug(owner, name)}/builds", params=params),
            f"Travis builds retrieving for {owner}/{name} failed",
        )
        builds = [build_from_api(record) for record in data.get("builds", [])]
        return [
            b for b in builds
            if b is not None and (event_type is None or b.event_type == event_type)
        ]

    def close(self) -> None:
        if getattr(self, "_owns_client", False):
            self._client.close()

    def _get(self, path: str, params: dict | None = None) -> httpx.Response:
        return self._request("GET", path, params=params)

    def _post(self, path: str) -> httpx.Response:
        return self._request("POST", path)

    def _request(self, method: str, path: str, params: dict | None = None) -> httpx.Response:
        try:
            return self._client.request(method, path, params=params, headers=self._headers())
        except httpx.HTTPError as e:
            raise IntegrationError(SERVICE, f"{method} {path} failed", str(e)) from e

    def _headers(self) -> dict[str, str]:
        headers = {"Travis-API-Version": "3"}
        if self._token:
            headers["Authorization"] = f"token {self._token}"
        return headers

    def _json(self, response: httpx.Response, message: str) -> Any:
        if not response.is_success:
            raise IntegrationError(SERVICE, message, response.text)
        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as e:
            raise IntegrationError(SERVICE, f"{message}: non-JSON payload", response.text) from e

    @staticmethod
    def _slug(owner: str, name: str) -> str:
        return quote(f"{owner}/{name}", safe="")

    def __enter__(self) -> TravisClient:
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
