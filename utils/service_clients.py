"""
HTTP client for the fetch and AI services, as seen from the pipeline.
"""

from __future__ import annotations

import logging
from typing import Sequence

import httpx

from models.schemas import RepoFile

log = logging.getLogger(__name__)


class ServiceCallError(Exception):
    """A service answered with an error; the message is the service's own."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class CodeOpsServiceClient:
    """Calls POST /fetch-github-repo and POST /analyze-code."""

    def __init__(self, http: httpx.AsyncClient):
        self.http = http

    async def fetch_repo(self, repo_url: str) -> dict:
        data = await self._post("/fetch-github-repo", {"repoUrl": repo_url})
        if not data.get("success"):
            raise ServiceCallError(data.get("error") or "Failed to fetch repository")
        return data

    async def run_action(
        self,
        action: str,
        files: Sequence[RepoFile],
        model: str | None = None,
        issue_context: str | None = None,
    ) -> dict:
        """Run an AI action and return its ``result`` object."""
        payload: dict = {
            "files": [f.to_dict() for f in files],
            "action": action,
        }
        if model:
            payload["model"] = model
        if issue_context:
            payload["issueContext"] = issue_context

        data = await self._post("/analyze-code", payload)
        if not data.get("success"):
            raise ServiceCallError(data.get("error") or f"{action} failed")
        result = data.get("result")
        return result if isinstance(result, dict) else {}

    async def _post(self, path: str, payload: dict) -> dict:
        resp = await self.http.post(path, json=payload)
        try:
            data = resp.json()
        except ValueError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        if resp.is_error:
            message = data.get("error") or f"{path} returned HTTP {resp.status_code}"
            log.warning("Service call %s failed: %s", path, message)
            raise ServiceCallError(message, resp.status_code)
        return data

    async def aclose(self) -> None:
        await self.http.aclose()
