"""Tests for the repository fetch activity, against a mocked GitHub API."""

import httpx
import pytest

import config
from activities.fetch_repo import RepoFetchError, fetch_repository, github_headers
from utils.repo_scanner import is_code_file, parse_github_url, should_descend

API = "https://api.github.test"
RAW = "https://raw.github.test"
REPO_URL = "https://github.com/acme/widgets"


def file_item(path, download=True):
    return {
        "type": "file",
        "name": path.rsplit("/", 1)[-1],
        "path": path,
        "download_url": f"{RAW}/{path}" if download else None,
    }


def dir_item(path):
    return {"type": "dir", "name": path.rsplit("/", 1)[-1], "path": path}


LISTINGS = {
    "": [
        dir_item("src"),
        dir_item("node_modules"),
        dir_item(".github"),
        file_item("README.md"),
        file_item("logo.png"),
        file_item("yarn.lock"),
        file_item(".eslintrc.json"),
    ],
    "src": [file_item("src/app.ts"), file_item("src/util.ts")],
}


class FakeGitHub:
    """Routes GitHub API and raw-content requests; records what was asked."""

    def __init__(self, metadata_status=200, failing=(), listing_status=200, metadata_html=False, listing=None):
        self.metadata_status = metadata_status
        self.metadata_html = metadata_html
        self.listing = listing
        self.failing = set(failing)
        self.listing_status = listing_status
        self.requested: list[str] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.requested.append(url)
        if url == f"{API}/repos/acme/widgets":
            if self.metadata_html:
                return httpx.Response(200, text="<html><body>Rate limited</body></html>", headers={"Content-Type": "text/html"})
            return httpx.Response(self.metadata_status, json={
                "name": "widgets",
                "full_name": "acme/widgets",
                "description": "Widget factory",
                "language": "TypeScript",
                "stargazers_count": 42,
                "default_branch": "main",
            })
        prefix = f"{API}/repos/acme/widgets/contents/"
        if url.startswith(prefix):
            if self.listing_status != 200:
                return httpx.Response(self.listing_status)
            if self.listing is not None:
                return httpx.Response(200, json=self.listing)
            return httpx.Response(200, json=LISTINGS.get(url[len(prefix):], []))
        if url.startswith(RAW):
            path = url[len(RAW) + 1:]
            if path in self.failing:
                return httpx.Response(500)
            return httpx.Response(200, text=f"// {path}\n" + "x" * 100)
        return httpx.Response(404)


@pytest.fixture(autouse=True)
def github_api(monkeypatch):
    monkeypatch.setattr(config, "GITHUB_API_URL", API)


def client_for(handler):
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestFetchRepository:
    @pytest.mark.asyncio
    async def test_collects_code_files(self):
        github = FakeGitHub()
        async with client_for(github) as client:
            data = await fetch_repository(REPO_URL, client)

        assert data["success"] is True
        assert data["repository"] == {
            "name": "widgets",
            "fullName": "acme/widgets",
            "description": "Widget factory",
            "language": "TypeScript",
            "stars": 42,
            "defaultBranch": "main",
        }
        paths = [f["path"] for f in data["files"]]
        assert paths == ["src/app.ts", "src/util.ts", "README.md", ".eslintrc.json"]
        assert data["totalFiles"] == 4
        assert data["files"][0]["name"] == "app.ts"

    @pytest.mark.asyncio
    async def test_skips_dependency_and_hidden_directories(self):
        github = FakeGitHub()
        async with client_for(github) as client:
            await fetch_repository(REPO_URL, client)

        assert not any("node_modules" in u for u in github.requested)
        assert not any("contents/.github" in u for u in github.requested)
        assert not any(u.endswith(("logo.png", "yarn.lock")) for u in github.requested)

    @pytest.mark.asyncio
    async def test_failed_download_is_skipped(self):
        async with client_for(FakeGitHub(failing={"src/util.ts"})) as client:
            data = await fetch_repository(REPO_URL, client)

        assert "src/util.ts" not in [f["path"] for f in data["files"]]
        assert data["totalFiles"] == 3

    @pytest.mark.asyncio
    async def test_file_count_cap(self, monkeypatch):
        monkeypatch.setattr(config, "MAX_REPO_FILES", 2)
        github = FakeGitHub()
        async with client_for(github) as client:
            data = await fetch_repository(REPO_URL, client)

        assert [f["path"] for f in data["files"]] == ["src/app.ts", "src/util.ts"]
        assert not any(u.endswith("README.md") for u in github.requested)

    @pytest.mark.asyncio
    async def test_content_is_capped(self, monkeypatch):
        monkeypatch.setattr(config, "MAX_FETCHED_FILE_CHARS", 10)
        async with client_for(FakeGitHub()) as client:
            data = await fetch_repository(REPO_URL, client)

        assert all(len(f["content"]) <= 10 for f in data["files"])

    @pytest.mark.asyncio
    async def test_missing_repository(self):
        async with client_for(FakeGitHub(metadata_status=404)) as client:
            with pytest.raises(RepoFetchError) as exc:
                await fetch_repository(REPO_URL, client)

        assert exc.value.status_code == 404
        assert exc.value.message == "Repository not found or not accessible: acme/widgets"

    @pytest.mark.asyncio
    async def test_listing_failure(self):
        async with client_for(FakeGitHub(listing_status=403)) as client:
            with pytest.raises(RepoFetchError) as exc:
                await fetch_repository(REPO_URL, client)

        assert exc.value.status_code == 500
        assert "GitHub API error: 403" in exc.value.message

    @pytest.mark.asyncio
    async def test_non_json_metadata_is_a_fetch_error(self):
        async with client_for(FakeGitHub(metadata_html=True)) as client:
            with pytest.raises(RepoFetchError) as exc:
                await fetch_repository(REPO_URL, client)

        assert exc.value.status_code == 500
        assert exc.value.message

    @pytest.mark.asyncio
    async def test_unexpected_listing_shape_is_a_fetch_error(self):
        async with client_for(FakeGitHub(listing=["src", "README.md"])) as client:
            with pytest.raises(RepoFetchError) as exc:
                await fetch_repository(REPO_URL, client)

        assert exc.value.status_code == 500

    @pytest.mark.asyncio
    @pytest.mark.parametrize("url, message", [
        ("", "Repository URL is required"),
        (None, "Repository URL is required"),
        ("https://example.com/acme/widgets", "Invalid GitHub URL format"),
    ])
    async def test_bad_input(self, url, message):
        with pytest.raises(RepoFetchError) as exc:
            await fetch_repository(url)
        assert exc.value.status_code == 400
        assert exc.value.message == message


class TestScannerHelpers:
    @pytest.mark.parametrize("url, expected", [
        ("https://github.com/acme/widgets", ("acme", "widgets")),
        ("https://github.com/acme/widgets.git", ("acme", "widgets")),
        ("git@github.com/acme/widgets/tree/main", ("acme", "widgets")),
        ("https://github.com/acme/widgets?tab=readme", ("acme", "widgets")),
        ("https://github.com/acme", None),
        ("not a url", None),
    ])
    def test_parse_github_url(self, url, expected):
        assert parse_github_url(url) == expected

    def test_is_code_file(self):
        assert is_code_file("app.TS")
        assert is_code_file(".eslintrc.json")
        assert not is_code_file("Makefile")
        assert not is_code_file("logo.png")

    def test_should_descend(self):
        assert should_descend("src")
        assert not should_descend("node_modules")
        assert not should_descend(".git")


def test_github_headers(monkeypatch):
    monkeypatch.setattr(config, "GITHUB_TOKEN", "")
    assert "Authorization" not in github_headers()
    monkeypatch.setattr(config, "GITHUB_TOKEN", "t0ken")
    headers = github_headers()
    assert headers["Authorization"] == "Bearer t0ken"
    assert headers["User-Agent"] == "CodeOps-AI"
