"""HTTP client for the Codacy API."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from courseflow.ci.builds import parse_timestamp
from courseflow.errors import IntegrationError

SERVICE = "codacy"


@dataclass
class CommitDetails:
    sha: str
    grade: str | None  # None until Codacy has analysed the commit
    analysed_at: datetime | None


class CodacyClient:
    def __init__(
        self,
        base_url: str,
        username: str,
        token: str,
        *,
        client: httpx.Client | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._username = username
        self._token = token
        if client is None:
            self._client = httpx.Client(base_url=base_url, timeout=timeout)
            self._owns_client = True
        else:
            self._client = client
            self._owns_client = False

    def create_project(self, project: str, repository_url: str) -> None:
        self._check(
            self._request(
                "POST",
                "/project/create",
                json={"name": project, "repoUrl": repository_url, "isPublic": True},
            ),
            f"Codacy project {project} wasn't created",
        )

    def delete_project(self, project: str) -> None:
        self._check(
            self._request("DELETE", f"/{self._username}/{project}/delete"),
            f"Codacy project {project} wasn't deleted",
        )

    def commit_details(self, project: str, sha: str) -> CommitDetails:
        response = self._request("GET", f"/{self._username}/{project}/commit/{sha}")
        self._check(response, f"Codacy commit {sha} details retrieving failed")
        try:
            data: dict[str, Any] = response.json()
        except ValueError as e:
            raise IntegrationError(SERVICE, "Codacy returned non-JSON payload", response.text) from e

        commit = data.get("commit") or {}
        meta = commit.get("commit") or {}
        return CommitDetails(
            sha=meta.get("sha", sha),
            grade=commit.get("grade"),
            analysed_at=parse_timestamp(meta.get("analyzed") or meta.get("commitTimestamp")),
        )

    def close(self) -> None:
        if getattr(self, "_owns_client", False):
            self._client.close()

    def _request(self, method: str, path: str, json: dict | None = None) -> httpx.Response:
        try:
            return self._client.request(
                method, path, json=json, headers={"api_token": self._token}
            )
        except httpx.HTTPError as e:
            raise IntegrationError(SERVICE, f"{method} {path} failed", str(e)) from e

    @staticmethod
    def _check(response: httpx.Response, message: str) -> None:
        if not response.is_success:
            raise IntegrationError(SERVICE, message, response.text)
