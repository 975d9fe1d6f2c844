"""
Activity: Fetch Repository — turns a GitHub URL into repository metadata
plus a capped set of code files.
"""

from __future__ import annotations

import logging

import httpx

import config
from utils.repo_scanner import parse_github_url, scan_github_repo

log = logging.getLogger(__name__)


class RepoFetchError(Exception):
    """A fetch failure carrying the HTTP status the service answers with."""

    def __init__(self, message: str, status_code: int = 500):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


def github_headers() -> dict:
    headers = {
        "Accept": "application/vnd.github.v3+json",
        "User-Agent": config.GITHUB_USER_AGENT,
    }
    if config.GITHUB_TOKEN:
        headers["Authorization"] = f"Bearer {config.GITHUB_TOKEN}"
    return headers


async def fetch_repository(repo_url: str | None, client: httpx.AsyncClient | None = None) -> dict:
    """
    Fetch repository metadata and its code files.

    Returns:
        {
            "success": True,
            "repository": {"name", "fullName", "description", "language", "stars", "defaultBranch"},
            "files": [{"path", "name", "content"}],
            "totalFiles": int
        }

    Raises:
        RepoFetchError: 400 for a missing/malformed URL, 404 when the
        repository is not accessible, 500 for any other failure.
    """
    if not repo_url or not repo_url.strip():
        raise RepoFetchError("Repository URL is required", 400)
    parsed = parse_github_url(repo_url)
    if not parsed:
        raise RepoFetchError("Invalid GitHub URL format", 400)
    owner, repo = parsed

    log.info("Fetching repository: %s/%s", owner, repo)
    own_client = client is None
    if own_client:
        client = httpx.AsyncClient(headers=github_headers(), timeout=None, follow_redirects=True)

    try:
        resp = await client.get(f"{config.GITHUB_API_URL}/repos/{owner}/{repo}")
        if resp.is_error:
            raise RepoFetchError(f"Repository not found or not accessible: {owner}/{repo}", 404)
        info = resp.json()
        if not isinstance(info, dict):
            raise ValueError(f"Unexpected repository metadata for {owner}/{repo}")

        files = await scan_github_repo(client, owner, repo)
    except RepoFetchError:
        raise
    except httpx.HTTPError as e:
        log.error("Error fetching repository %s/%s: %s", owner, repo, e)
        raise RepoFetchError(str(e) or "Failed to fetch repository", 500) from e
    except Exception as e:
        log.exception("Unexpected error fetching repository %s/%s", owner, repo)
        raise RepoFetchError(str(e) or "Failed to fetch repository", 500) from e
    finally:
        if own_client:
            await client.aclose()

    log.info("Fetched %d files from %s", len(files), info.get("full_name"))
    return {
        "success": True,
        "repository": {
            "name": info.get("name"),
            "fullName": info.get("full_name"),
            "description": info.get("description"),
            "language": info.get("language"),
            "stars": info.get("stargazers_count"),
            "defaultBranch": info.get("default_branch"),
        },
        "files": files,
        "totalFiles": len(files),
    }
