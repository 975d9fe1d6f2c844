"""Shared test fixtures for the CodeOps Pilot test suite."""

from unittest.mock import AsyncMock, MagicMock

import pytest

import config
from workflows.pipeline import CodeOpsPipeline

REPO_URL = "https://github.com/acme/widgets"


@pytest.fixture(autouse=True)
def no_deploy_delay(monkeypatch):
    monkeypatch.setattr(config, "DEPLOY_DELAY_SEC", 0)


@pytest.fixture
def repo_payload():
    """A successful /fetch-github-repo response body."""
    files = [
        {"path": "src/app.ts", "name": "app.ts", "content": "const a = null; a.b();"},
        {"path": "src/util.ts", "name": "util.ts", "content": "export const x = 1;"},
    ]
    return {
        "success": True,
        "repository": {
            "name": "widgets",
            "fullName": "acme/widgets",
            "description": "Widget factory",
            "language": "TypeScript",
            "stars": 42,
            "defaultBranch": "main",
        },
        "files": files,
        "totalFiles": len(files),
    }


@pytest.fixture
def analysis_payload():
    """An analyze result with three issues, one of them critical."""
    return {
        "summary": "Two real problems and a nit.",
        "issues": [
            {
                "severity": "critical", "type": "bug", "file": "src/app.ts", "line": "1",
                "description": "Null dereference in handler", "suggestion": "Guard against null",
            },
            {
                "severity": "high", "type": "security", "file": "src/db.ts", "line": "12",
                "description": "SQL injection in query builder for user input",
                "suggestion": "Use parameters",
            },
            {
                "severity": "low", "type": "style", "file": "src/other.ts", "line": "",
                "description": "Inconsistent naming", "suggestion": "Rename",
            },
        ],
        "metrics": {"totalIssues": 3, "critical": 1, "high": 1, "medium": 0, "low": 1},
        "nextSteps": ["Fix the critical bug"],
    }


@pytest.fixture
def fix_payload():
    """A fix result touching one known file and adding a new one."""
    return {
        "summary": "Fixed null handling and query building",
        "fixedFiles": [
            {
                "path": "src/app.ts",
                "content": "const a = {b() {}}; a.b();",
                "originalIssues": ["Null dereference"],
                "changes": ["Initialize a"],
            },
            {
                "path": "src/new.ts",
                "content": "export const q = (v: string) => [v];",
                "originalIssues": ["SQL injection in query builder for user input, escaped"],
                "changes": ["Parameterized query helper"],
            },
        ],
        "improvements": ["Safer queries"],
    }


@pytest.fixture
def client(repo_payload):
    """Stand-in for CodeOpsServiceClient."""
    c = MagicMock()
    c.fetch_repo = AsyncMock(return_value=repo_payload)
    c.run_action = AsyncMock(return_value={})
    return c


@pytest.fixture
def pipeline(client):
    return CodeOpsPipeline(client)
