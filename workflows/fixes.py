"""
Fix application — merges AI-fixed files into the File Set and marks the
analysis issues those fixes solved.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Sequence

import config
from models.schemas import AnalysisResult, CodeIssue, FixedFile, RepoFile, as_int, as_list, merge_files

log = logging.getLogger(__name__)


def apply_fixed_files(files: Sequence[RepoFile], fixed: Sequence[FixedFile]) -> list[RepoFile]:
    """Replace content by path; a fixed path not in the File Set is appended."""
    return merge_files(files, [f.to_repo_file() for f in fixed if f.path])


def _prefix_overlap(a: str, b: str) -> bool:
    """Case-insensitive: either string contains the other's first N characters."""
    a, b = a.lower(), b.lower()
    if not a or not b:
        return False
    n = config.SOLVED_MATCH_PREFIX
    return b[:n] in a or a[:n] in b


def is_issue_solved(issue: CodeIssue, fixed: Sequence[FixedFile]) -> bool:
    """An issue is solved when a fixed file's reported original issue
    overlaps its description, or a fixed file has the issue's path."""
    for f in fixed:
        if issue.file and f.path == issue.file:
            return True
        if any(_prefix_overlap(desc, issue.description) for desc in f.original_issues):
            return True
    return False


def mark_solved_issues(
    analysis: AnalysisResult,
    fixed: Sequence[FixedFile],
    solved_at: str | None = None,
) -> tuple[AnalysisResult, int]:
    """
    Return a new AnalysisResult with solved flags recomputed, and the number
    of issues newly solved by this fix.

    metrics.solved accumulates the count; metrics.totalIssues drops by it,
    never below zero.
    """
    solved_at = solved_at or datetime.now(timezone.utc).isoformat()
    issues: list[CodeIssue] = []
    newly_solved = 0
    for issue in analysis.issues:
        if not issue.solved and is_issue_solved(issue, fixed):
            issue = replace(issue, solved=True, solved_at=solved_at)
            newly_solved += 1
        issues.append(issue)

    metrics = dict(analysis.metrics)
    metrics["solved"] = as_int(metrics.get("solved")) + newly_solved
    metrics["totalIssues"] = max(0, as_int(metrics.get("totalIssues")) - newly_solved)

    log.info("Fix solved %d of %d issues", newly_solved, len(issues))
    return replace(
        analysis,
        issues=issues,
        solved_issues=[i for i in issues if i.solved],
        metrics=metrics,
    ), newly_solved


def issue_context(analysis: AnalysisResult | None, limit: int = 20) -> str | None:
    """Open issues rendered as a bullet list for the fix prompt."""
    if analysis is None:
        return None
    lines = [
        f"- [{i.severity}] {i.file}{':' + i.line if i.line else ''}: {i.description}"
        for i in analysis.issues
        if not i.solved
    ][:limit]
    return "\n".join(lines) or None


def fixed_files_of(fixes: dict | None) -> list[FixedFile]:
    if not fixes:
        return []
    return [
        FixedFile.from_dict(f)
        for f in as_list(fixes.get("fixedFiles"))
        if isinstance(f, dict) and f.get("path")
    ]
