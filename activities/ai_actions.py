"""
Activity: AI Actions — builds the prompt pair for one pipeline action,
runs it through the provider chain and parses the reply.

Actions: analyze, fix, test, measure, record, approve, chat.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Callable, Sequence

import config
from utils.llm import CompletionProvider, complete_with_fallback, parse_json_response, resolve_model, select_providers

log = logging.getLogger(__name__)


class ActionError(Exception):
    """A malformed AI action request."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


@dataclass(frozen=True)
class ActionPrompt:
    system: Callable[[str | None], str]  # issue_context → system prompt
    user: Callable[[str, str | None], str]  # (files_context, issue_context) → user prompt
    use_primary: bool = False
    json_reply: bool = True  # False: the reply is prose, returned as rawResponse


def _analyze_system(_: str | None) -> str:
    return (
        "You are an expert code analyst. Analyze the codebase and provide:\n"
        "1. Critical bugs and errors\n"
        "2. Security vulnerabilities\n"
        "3. Performance issues\n"
        "4. Best practices violations\n"
        "5. Suggested improvements\n\n"
        "Be concise. Return JSON ONLY:\n"
        "{\n"
        '  "summary": "2-3 sentence assessment",\n'
        '  "issues": [{"severity": "critical|high|medium|low", '
        '"type": "bug|security|performance|quality|architecture|style", '
        '"file": "path", "line": "line", "description": "issue", "suggestion": "fix"}],\n'
        '  "metrics": {"totalIssues": n, "critical": n, "high": n, "medium": n, "low": n},\n'
        '  "nextSteps": ["recommended actions"]\n'
        "}"
    )


def _fix_system(issue_context: str | None) -> str:
    issues = f"\nIssues to fix:\n{issue_context}\n" if issue_context else ""
    return (
        "You are an expert code fixer. Generate complete, production-ready fixed code.\n"
        f"{issues}\n"
        "Return JSON:\n"
        "{\n"
        '  "summary": "What was fixed",\n'
        '  "fixedFiles": [{"path": "path", "content": "COMPLETE fixed code", '
        '"originalIssues": ["issue descriptions this file fixes"], "changes": ["changes"]}],\n'
        '  "improvements": ["improvements"]\n'
        "}"
    )


def _test_system(_: str | None) -> str:
    return (
        "You are a test engineer. Simulate running the codebase.\n\n"
        "Return JSON:\n"
        "{\n"
        '  "summary": "Test results",\n'
        '  "passed": boolean,\n'
        '  "testResults": [{"scenario": "test", "status": "pass|fail|warning", "details": "result"}],\n'
        '  "errors": [{"type": "runtime|logic", "file": "path", "description": "error", "fix": "solution"}],\n'
        '  "coverage": {"estimated": "percentage"},\n'
        '  "preview": {"html": "<!DOCTYPE html><html><head><style>body{font-family:system-ui;'
        "padding:20px;background:#0f172a;color:#e2e8f0;}</style></head><body><h1>Preview</h1>"
        '<p>Generated preview</p></body></html>", "description": "preview info"}\n'
        "}"
    )


def _measure_system(_: str | None) -> str:
    return (
        "You are a code metrics expert. Provide metrics:\n\n"
        "Return JSON:\n"
        "{\n"
        '  "overallScore": number,\n'
        '  "grade": "A|B|C|D|F",\n'
        '  "metrics": {\n'
        '    "complexity": {"score": n, "details": "info"},\n'
        '    "maintainability": {"score": n, "details": "info"},\n'
        '    "performance": {"score": n, "details": "info"},\n'
        '    "security": {"score": n, "details": "info"},\n'
        '    "testability": {"score": n, "details": "info"}\n'
        "  },\n"
        '  "technicalDebt": {"hours": n, "items": ["items"]},\n'
        '  "recommendations": [{"title": "rec", "impact": "high|medium|low"}]\n'
        "}"
    )


def _record_system(_: str | None) -> str:
    now = datetime.now(timezone.utc).isoformat()
    return (
        "You are a documentation expert. Record the analysis:\n\n"
        "Return JSON:\n"
        "{\n"
        '  "projectName": "name",\n'
        f'  "timestamp": "{now}",\n'
        '  "summary": "Executive summary",\n'
        '  "filesSummary": {"total": n, "byType": {"ts": n, "tsx": n, "js": n}},\n'
        '  "architectureOverview": "architecture",\n'
        '  "keyComponents": [{"name": "comp", "purpose": "purpose"}],\n'
        '  "readyForProduction": boolean,\n'
        '  "recommendations": ["recs"]\n'
        "}"
    )


def _approve_system(_: str | None) -> str:
    return (
        "You are a senior reviewer. Evaluate deployment readiness.\n\n"
        "Return JSON:\n"
        "{\n"
        '  "approved": boolean,\n'
        '  "confidence": number,\n'
        '  "reviewSummary": "summary",\n'
        '  "securityCheck": {"passed": boolean, "findings": ["findings"]},\n'
        '  "qualityCheck": {"passed": boolean, "score": n},\n'
        '  "performanceCheck": {"passed": boolean, "findings": ["findings"]},\n'
        '  "deploymentRisks": [{"risk": "risk", "severity": "critical|high|medium|low"}],\n'
        '  "deploymentRecommendation": "deploy|hold|reject"\n'
        "}"
    )


def _chat_system(_: str | None) -> str:
    return (
        "You are an AI coding assistant. Fix code issues.\n\n"
        "Format code fixes as:\n"
        "FILE: path/to/file.ts\n"
        "```typescript\n"
        "// complete fixed code\n"
        "```"
    )


def _chat_user(files_context: str, issue_context: str | None) -> str:
    if issue_context:
        return f"{issue_context}\n\nCode:\n{files_context}"
    return f"Help with this code:\n\n{files_context}"


ACTIONS: dict[str, ActionPrompt] = {
    "analyze": ActionPrompt(_analyze_system, lambda ctx, _: f"Analyze this codebase:\n\n{ctx}"),
    "fix": ActionPrompt(_fix_system, lambda ctx, _: f"Fix issues in this code:\n\n{ctx}", use_primary=True),
    "test": ActionPrompt(_test_system, lambda ctx, _: f"Test this codebase:\n\n{ctx}"),
    "measure": ActionPrompt(_measure_system, lambda ctx, _: f"Measure this codebase:\n\n{ctx}"),
    "record": ActionPrompt(_record_system, lambda ctx, _: f"Document this codebase:\n\n{ctx}"),
    "approve": ActionPrompt(_approve_system, lambda ctx, _: f"Review for deployment:\n\n{ctx}", use_primary=True),
    "chat": ActionPrompt(_chat_system, _chat_user, use_primary=True, json_reply=False),
}


def truncate_content(content: str, limit: int | None = None) -> str:
    limit = limit or config.MAX_AI_FILE_CHARS
    if len(content) <= limit:
        return content
    return content[:limit] + config.TRUNCATION_MARKER


def build_files_context(files: Sequence[dict]) -> str:
    """Render at most MAX_AI_FILES files, each truncated, as prompt text."""
    parts = []
    for f in list(files)[: config.MAX_AI_FILES]:
        content = truncate_content(str(f.get("content") or ""))
        parts.append(f"--- {f.get('path', '')} ---\n{content}")
    return "\n\n".join(parts)


def build_prompts(action: str, files: Sequence[dict], issue_context: str | None = None) -> tuple[str, str]:
    """Return (system, user) prompts for an action."""
    prompt = ACTIONS.get(action)
    if prompt is None:
        raise ActionError("Invalid action")
    files_context = build_files_context(files)
    return prompt.system(issue_context), prompt.user(files_context, issue_context)


async def run_action(
    action: str | None,
    files: Sequence[dict] | None,
    model: str | None = None,
    issue_context: str | None = None,
    providers: Sequence[CompletionProvider] | None = None,
) -> dict:
    """
    Run one AI action.

    Returns:
        {"success": True, "action": "...", "result": {...}, "model": "provider used"}

    Raises:
        ActionError: missing files or unknown action (HTTP 400).
        ProviderError: every provider failed (HTTP 500).
    """
    if not files:
        raise ActionError("Files array is required")
    system, user = build_prompts(action or "", files, issue_context)

    prompt = ACTIONS[action]
    if providers is None:
        providers = select_providers(prompt.use_primary)
    text, model_used = await complete_with_fallback(providers, system, user, resolve_model(model))
    log.info("Completed %s with %s", action, model_used)

    return {
        "success": True,
        "action": action,
        "result": parse_json_response(text) if prompt.json_reply else {"rawResponse": text},
        "model": model_used,
    }
