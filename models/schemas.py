"""
Data models for the pipeline.

Python attributes are snake_case; ``to_dict`` / ``from_dict`` speak the
camelCase wire format the dashboard and the AI service exchange.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable

from features.logstream import LogStream


class Stage(str, Enum):
    IDLE = "idle"
    CLONING = "cloning"
    ANALYZING = "analyzing"
    FIXING = "fixing"
    TESTING = "testing"
    MEASURING = "measuring"
    RECORDING = "recording"
    APPROVAL = "approval"
    DEPLOYING = "deploying"
    COMPLETE = "complete"
    ERROR = "error"


class Severity(str, Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


def file_name(path: str) -> str:
    return path.rsplit("/", 1)[-1] or path


def as_int(value: Any, default: int = 0) -> int:
    """Lenient int for numbers reported by the AI."""
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def as_dict(value: Any) -> dict:
    return value if isinstance(value, dict) else {}


def as_list(value: Any) -> list:
    """A list field from an AI response; any other shape reads as empty."""
    return value if isinstance(value, list) else []


def as_str_list(value: Any) -> list[str]:
    """A list of strings; a lone string is one entry, not its characters."""
    if isinstance(value, str):
        return [value] if value else []
    return [str(s) for s in as_list(value)]


@dataclass
class RepoFile:
    """A path-addressed text blob of the cloned repository."""
    path: str
    name: str
    content: str

    @classmethod
    def from_path(cls, path: str, content: str) -> RepoFile:
        return cls(path=path, name=file_name(path), content=content)

    @classmethod
    def from_dict(cls, data: dict) -> RepoFile:
        path = str(data.get("path") or "")
        return cls(
            path=path,
            name=str(data.get("name") or file_name(path)),
            content=str(data.get("content") or ""),
        )

    def to_dict(self) -> dict:
        return {"path": self.path, "name": self.name, "content": self.content}


def dedupe_files(files: Iterable[RepoFile]) -> list[RepoFile]:
    """Collapse duplicate paths: the first occurrence keeps its position,
    the last occurrence's content wins."""
    by_path: dict[str, RepoFile] = {}
    for f in files:
        by_path[f.path] = f
    return list(by_path.values())


def merge_files(existing: Iterable[RepoFile], updates: Iterable[RepoFile]) -> list[RepoFile]:
    """Replace content by path; paths not yet present are appended."""
    return dedupe_files([*existing, *updates])


@dataclass
class Repository:
    name: str = ""
    full_name: str = ""
    description: str = ""
    language: str = ""
    stars: int = 0
    default_branch: str = ""

    @classmethod
    def from_dict(cls, data: dict) -> Repository:
        return cls(
            name=data.get("name") or "",
            full_name=data.get("fullName") or "",
            description=data.get("description") or "",
            language=data.get("language") or "",
            stars=as_int(data.get("stars")),
            default_branch=data.get("defaultBranch") or "",
        )

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "fullName": self.full_name,
            "description": self.description,
            "language": self.language,
            "stars": self.stars,
            "defaultBranch": self.default_branch,
        }


@dataclass
class CodeIssue:
    """A single finding reported by the analyze action."""
    severity: str
    type: str
    file: str
    line: str = ""
    description: str = ""
    suggestion: str = ""
    solved: bool = False
    solved_at: str | None = None

    @classmethod
    def from_dict(cls, data: dict) -> CodeIssue:
        return cls(
            severity=str(data.get("severity") or Severity.LOW.value).lower(),
            type=str(data.get("type") or "quality").lower(),
            file=str(data.get("file") or ""),
            line=str(data.get("line") or ""),
            description=str(data.get("description") or ""),
            suggestion=str(data.get("suggestion") or ""),
            solved=bool(data.get("solved", False)),
            solved_at=data.get("solvedAt"),
        )

    def to_dict(self) -> dict:
        d = {
            "severity": self.severity,
            "type": self.type,
            "file": self.file,
            "line": self.line,
            "description": self.description,
            "suggestion": self.suggestion,
            "solved": self.solved,
        }
        if self.solved_at:
            d["solvedAt"] = self.solved_at
        return d


def count_by_severity(issues: Iterable[CodeIssue]) -> dict[str, int]:
    issues = list(issues)
    counts = {s.value: 0 for s in Severity}
    for issue in issues:
        if issue.severity in counts:
            counts[issue.severity] += 1
    return {"totalIssues": len(issues), **counts}


@dataclass
class AnalysisResult:
    summary: str = ""
    issues: list[CodeIssue] = field(default_factory=list)
    solved_issues: list[CodeIssue] = field(default_factory=list)
    metrics: dict = field(default_factory=dict)  # {totalIssues, critical, high, medium, low, solved?}
    next_steps: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> AnalysisResult:
        """Build from an AI response; absent fields mean "no data"."""
        issues = [CodeIssue.from_dict(i) for i in as_list(data.get("issues")) if isinstance(i, dict)]
        metrics = data.get("metrics")
        if not isinstance(metrics, dict):
            metrics = count_by_severity(issues)
        return cls(
            summary=str(data.get("summary") or data.get("rawResponse") or ""),
            issues=issues,
            metrics=dict(metrics),
            next_steps=as_str_list(data.get("nextSteps")),
        )

    @property
    def total_issues(self) -> int:
        return as_int(self.metrics.get("totalIssues"))

    @property
    def critical(self) -> int:
        return as_int(self.metrics.get("critical"))

    def to_dict(self) -> dict:
        return {
            "summary": self.summary,
            "issues": [i.to_dict() for i in self.issues],
            "solvedIssues": [i.to_dict() for i in self.solved_issues],
            "metrics": dict(self.metrics),
            "nextSteps": list(self.next_steps),
        }


@dataclass
class FixedFile:
    """A file rewritten by the fix action."""
    path: str
    content: str
    original_issues: list[str] = field(default_factory=list)
    changes: list[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> FixedFile:
        return cls(
            path=str(data.get("path") or ""),
            content=str(data.get("content") or ""),
            original_issues=as_str_list(data.get("originalIssues")),
            changes=as_str_list(data.get("changes")),
        )

    def to_repo_file(self) -> RepoFile:
        return RepoFile.from_path(self.path, self.content)


@dataclass
class CodeBlock:
    file: str  # "" when the block carries no FILE: marker
    language: str
    code: str

    def to_dict(self) -> dict:
        return {"file": self.file, "language": self.language, "code": self.code}


@dataclass
class ChatMessage:
    role: str  # user | assistant
    content: str
    code_blocks: list[CodeBlock] = field(default_factory=list)

    def to_dict(self) -> dict:
        d: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.code_blocks:
            d["codeBlocks"] = [b.to_dict() for b in self.code_blocks]
        return d


@dataclass
class PipelineState:
    """Session state of one dashboard. Invariant: error is set iff stage is ERROR."""
    stage: Stage = Stage.IDLE
    repository: Repository | None = None
    files: list[RepoFile] = field(default_factory=list)
    analysis: AnalysisResult | None = None
    fixes: dict | None = None
    test_results: dict | None = None
    metrics: dict | None = None
    logs: LogStream = field(default_factory=LogStream)
    error: str | None = None
    chat_history: list[ChatMessage] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "stage": self.stage.value,
            "repository": self.repository.to_dict() if self.repository else None,
            "files": [f.to_dict() for f in self.files],
            "analysis": self.analysis.to_dict() if self.analysis else None,
            "fixes": self.fixes,
            "testResults": self.test_results,
            "metrics": self.metrics,
            "logs": self.logs.to_list(),
            "error": self.error,
            "chatHistory": [m.to_dict() for m in self.chat_history],
        }
