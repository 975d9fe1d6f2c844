"""
Repo scanner — walks a GitHub repository's contents tree and collects its
code files.
"""

from __future__ import annotations

import logging
import re

import httpx

import config

log = logging.getLogger(__name__)

GITHUB_URL_RE = re.compile(r"github\.com/([^/\s?#]+)/([^/\s?#]+)")


def parse_github_url(repo_url: str) -> tuple[str, str] | None:
    """Return (owner, repo) for a github.com/<owner>/<repo> URL, else None."""
    match = GITHUB_URL_RE.search(repo_url or "")
    if not match:
        return None
    owner, repo = match.group(1), match.group(2)
    if repo.endswith(".git"):
        repo = repo[: -len(".git")]
    if not repo:
        return None
    return owner, repo


def is_code_file(name: str) -> bool:
    if "." not in name:
        return False
    return name.rsplit(".", 1)[-1].lower() in config.CODE_EXTENSIONS


def should_descend(dir_name: str) -> bool:
    return not dir_name.startswith(".") and dir_name not in config.DEPENDENCY_DIRS


async def list_contents(client: httpx.AsyncClient, owner: str, repo: str, path: str = "") -> list[dict]:
    """List one directory through the GitHub contents API."""
    url = f"{config.GITHUB_API_URL}/repos/{owner}/{repo}/contents/{path}"
    resp = await client.get(url)
    if resp.is_error:
        raise httpx.HTTPStatusError(
            f"GitHub API error: {resp.status_code} {resp.reason_phrase}",
            request=resp.request,
            response=resp,
        )
    items = resp.json()
    # a file path returns a single object instead of a listing
    return items if isinstance(items, list) else [items]


async def scan_github_repo(
    client: httpx.AsyncClient,
    owner: str,
    repo: str,
    path: str = "",
    files: list[dict] | None = None,
    max_files: int | None = None,
) -> list[dict]:
    """
    Depth-first walk of the repository tree in listing order.

    Returns:
        [{"path": "src/app.ts", "name": "app.ts", "content": "..."}, ...]
        at most ``max_files`` entries, each content capped at
        MAX_FETCHED_FILE_CHARS. A file whose download fails is skipped.
    """
    files = [] if files is None else files
    max_files = max_files or config.MAX_REPO_FILES
    if len(files) >= max_files:
        return files

    for item in await list_contents(client, owner, repo, path):
        if len(files) >= max_files:
            break

        kind = item.get("type")
        name = item.get("name", "")
        if kind == "file" and item.get("download_url"):
            if not is_code_file(name):
                continue
            try:
                resp = await client.get(item["download_url"])
                resp.raise_for_status()
            except httpx.HTTPError as e:
                log.warning("Failed to fetch %s: %s", item.get("path"), e)
                continue
            files.append({
                "path": item["path"],
                "name": name,
                "content": resp.text[: config.MAX_FETCHED_FILE_CHARS],
            })
        elif kind == "dir" and should_descend(name):
            await scan_github_repo(client, owner, repo, item["path"], files, max_files)

    return files
