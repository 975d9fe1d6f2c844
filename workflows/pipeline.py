"""
Code Operations Pipeline — the state machine behind one dashboard session.

Stages, in order:
  1. Clone     → repository metadata + File Set
  2. Analyze   → issues and severity metrics
  3. Fix       → fixed files merged into the File Set, issues marked solved
  4. Test      → simulated test run
  5. Measure   → code-health scores
  6. Record    → documentation (returned, not stored)
  7. Approve   → deployment verdict
  8. Deploy    → simulated, fixed delay, cannot fail

Each stage sets its in-progress Stage on entry and leaves it there on
success; what may run next is decided by workflows.transitions. Any failure
moves to the error stage, which only reset() leaves.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import fields
from typing import Any, Awaitable, Callable, Protocol, Sequence, TypeVar

import config
from models.schemas import (
    AnalysisResult,
    ChatMessage,
    PipelineState,
    RepoFile,
    Repository,
    Stage,
    as_dict,
    as_list,
    dedupe_files,
    merge_files,
)
from utils.code_blocks import build_issue_fix_prompt, parse_code_blocks
from utils.repo_scanner import parse_github_url
from workflows.fixes import apply_fixed_files, fixed_files_of, issue_context, mark_solved_issues
from workflows.transitions import legal_actions

log = logging.getLogger(__name__)

T = TypeVar("T")

MODEL_LABELS = {"gemini": "Gemini", "claude": "Claude"}


def model_label(model: str) -> str:
    return MODEL_LABELS.get(model, model)


class PipelineClient(Protocol):
    async def fetch_repo(self, repo_url: str) -> dict: ...

    async def run_action(
        self,
        action: str,
        files: Sequence[RepoFile],
        model: str | None = None,
        issue_context: str | None = None,
    ) -> dict: ...


class CodeOpsPipeline:
    """
    Owns the PipelineState of a single dashboard session.

    Calls are not rejected when out of order; callers consult
    ``legal_actions()`` first. Every top-level action and every reset bumps
    a generation counter, and a response that arrives after the counter
    moved is dropped without touching state.
    """

    def __init__(self, client: PipelineClient, state: PipelineState | None = None):
        self.client = client
        self.state = state if state is not None else PipelineState()
        self._generation = 0
        self._epoch = 0  # bumped by reset() only
        self._inflight: tuple[int, str] | None = None

    # ── Introspection ─────────────────────────────────────────────────

    @property
    def busy(self) -> bool:
        return self._inflight is not None

    @property
    def pending_action(self) -> str | None:
        return self._inflight[1] if self._inflight else None

    def legal_actions(self) -> frozenset[str]:
        return legal_actions(self.state.stage, self.state.repository is not None, self.busy)

    # ── State helpers ─────────────────────────────────────────────────

    def _set_stage(self, stage: Stage) -> None:
        self.state.stage = stage
        self.state.error = None

    def _fail(self, message: str) -> None:
        self.state.stage = Stage.ERROR
        self.state.error = message
        self.state.logs.error(message)

    def _begin(self, action: str, stage: Stage, message: str) -> int:
        self._generation += 1
        self._inflight = (self._generation, action)
        self._set_stage(stage)
        self.state.logs.info(message)
        return self._generation

    def _is_current(self, generation: int, action: str) -> bool:
        if generation == self._generation:
            return True
        log.warning(
            "Discarding stale %s response (generation %d, current %d)",
            action, generation, self._generation,
        )
        return False

    async def _call(
        self,
        generation: int,
        action: str,
        call: Awaitable[dict],
        merge: Callable[[dict], T],
        failure: str,
    ) -> T | None:
        """
        Await a client call and merge its result into state.

        A failure in either step moves to the error stage. Returns None when
        the action failed or went stale.
        """
        try:
            result = await call
            if not self._is_current(generation, action):
                return None
            if not isinstance(result, dict):
                raise ValueError(f"Unexpected {action} response")
            return merge(result)
        except Exception as e:
            if self._is_current(generation, action):
                log.error("%s failed: %s", action, e)
                self._fail(str(e) or failure)
            return None
        finally:
            if self._inflight and self._inflight[0] == generation:
                self._inflight = None

    def _files_for_review(self) -> list[RepoFile]:
        """Most recently fixed files, else the head of the File Set."""
        fixed = fixed_files_of(self.state.fixes)
        files = [f.to_repo_file() for f in fixed] if fixed else self.state.files
        return list(files[: config.PIPELINE_FILE_CAP])

    # ━━ Stage 1: Clone ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def clone_repository(self, repo_url: str) -> bool:
        repo_url = (repo_url or "").strip()
        if not repo_url:
            self._fail("Repository URL is required")
            return False
        if parse_github_url(repo_url) is None:
            self._fail(f"Invalid GitHub URL format: {repo_url}")
            return False

        def merge(data: dict) -> bool:
            repository = Repository.from_dict(as_dict(data.get("repository")))
            files = dedupe_files(
                RepoFile.from_dict(f)
                for f in as_list(data.get("files"))
                if isinstance(f, dict) and f.get("path")
            )
            self.state.repository = repository
            self.state.files = files
            self._set_stage(Stage.IDLE)
            self.state.logs.success(
                f"Cloned {data.get('totalFiles', len(files))} files from {repository.full_name}"
            )
            return True

        gen = self._begin("clone", Stage.CLONING, f"Cloning repository: {repo_url}")
        ok = await self._call(gen, "clone", self.client.fetch_repo(repo_url), merge, "Failed to clone repository")
        return bool(ok)

    # ━━ Stage 2: Analyze ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def analyze_code(self, files: Sequence[RepoFile] | None = None, model: str | None = None) -> bool:
        model = model or config.DEFAULT_MODEL
        files = list(self.state.files if files is None else files)
        if not files:
            self._fail("No files to analyze. Please clone a repository first.")
            return False

        def merge(result: dict) -> bool:
            analysis = AnalysisResult.from_dict(result)
            self.state.analysis = analysis
            self.state.logs.success(f"Found {analysis.total_issues} issues ({analysis.critical} critical)")
            return True

        gen = self._begin("analyze", Stage.ANALYZING, f"Analyzing codebase with {model_label(model)}...")
        ok = await self._call(
            gen, "analyze",
            self.client.run_action("analyze", files[: config.PIPELINE_FILE_CAP], model=model),
            merge,
            "Analysis failed",
        )
        return bool(ok)

    # ━━ Stage 3: Fix ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def apply_fixes(self, model: str | None = None) -> bool:
        model = model or config.DEFAULT_MODEL
        def merge(result: dict) -> bool:
            fixed = fixed_files_of(result)
            if not fixed:
                self.state.fixes = result
                self.state.logs.success("Fixed 0 files")
                return True

            files = apply_fixed_files(self.state.files, fixed)
            analysis, solved = self.state.analysis, 0
            if analysis is not None:
                analysis, solved = mark_solved_issues(analysis, fixed)
            self.state.files = files
            self.state.analysis = analysis
            self.state.fixes = {**result, "issuesSolved": solved, "appliedToCodebase": True}

            self.state.logs.success(f"Fixed {len(fixed)} files, solved {solved} issues (-{solved})")
            self.state.logs.success("Changes auto-applied to codebase")
            return True

        gen = self._begin("fix", Stage.FIXING, f"Applying fixes with {model_label(model)}...")
        ok = await self._call(
            gen, "fix",
            self.client.run_action(
                "fix",
                self.state.files[: config.PIPELINE_FILE_CAP],
                model=model,
                issue_context=issue_context(self.state.analysis),
            ),
            merge,
            "Fix failed",
        )
        return bool(ok)

    # ━━ Stage 4: Test ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def run_tests(self, model: str | None = None) -> bool:
        model = model or config.DEFAULT_MODEL
        def merge(result: dict) -> bool:
            scenarios = [t for t in as_list(result.get("testResults")) if isinstance(t, dict)]
            passed = sum(1 for t in scenarios if t.get("status") == "pass")
            self.state.test_results = result
            if result.get("passed"):
                self.state.logs.success(f"Tests passed: {passed}/{len(scenarios)}")
            else:
                self.state.logs.warning(f"Tests completed with issues: {passed}/{len(scenarios)}")
            return True

        gen = self._begin("test", Stage.TESTING, f"Running tests with {model_label(model)}...")
        ok = await self._call(
            gen, "test",
            self.client.run_action("test", self._files_for_review(), model=model),
            merge,
            "Test failed",
        )
        return bool(ok)

    # ━━ Stage 5: Measure ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def measure_metrics(self, model: str | None = None) -> bool:
        model = model or config.DEFAULT_MODEL
        def merge(result: dict) -> bool:
            self.state.metrics = result
            self.state.logs.success(f"Overall code health score: {result.get('overallScore', 'n/a')}/100")
            return True

        gen = self._begin("measure", Stage.MEASURING, f"Measuring code quality with {model_label(model)}...")
        ok = await self._call(
            gen, "measure",
            self.client.run_action("measure", self._files_for_review(), model=model),
            merge,
            "Measure failed",
        )
        return bool(ok)

    # ━━ Stage 6: Record ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def record_results(self) -> dict | None:
        def merge(result: dict) -> dict:
            ready = "Yes" if result.get("readyForProduction") else "No"
            self.state.logs.success(
                f"Documentation recorded: {result.get('projectName') or 'Project'} - Ready: {ready}"
            )
            return result

        gen = self._begin("record", Stage.RECORDING, "Recording and documenting pipeline results with AI...")
        return await self._call(
            gen, "record",
            self.client.run_action("record", self._files_for_review()),
            merge,
            "Recording failed",
        )

    # ━━ Stage 7: Approve ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def request_approval(self) -> dict | None:
        def merge(result: dict) -> dict:
            if result.get("approved"):
                self.state.logs.success(
                    f"Approved for deployment ({result.get('confidence')}% confidence)"
                    f" - {result.get('deploymentRecommendation')}"
                )
            else:
                self.state.logs.warning(f"Not approved: {result.get('reviewSummary') or 'Review required'}")
            return result

        gen = self._begin("approve", Stage.APPROVAL, "Running AI-powered approval review...")
        return await self._call(
            gen, "approve",
            self.client.run_action("approve", self._files_for_review()),
            merge,
            "Approval review failed",
        )

    # ━━ Stage 8: Deploy ━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━━

    async def deploy(self) -> bool:
        """Simulated deployment. Returns False only when a reset overtook it."""
        gen = self._begin("deploy", Stage.DEPLOYING, "Deploying to production...")
        try:
            await asyncio.sleep(config.DEPLOY_DELAY_SEC)
        finally:
            if self._inflight and self._inflight[0] == gen:
                self._inflight = None
        if not self._is_current(gen, "deploy"):
            return False

        self._set_stage(Stage.COMPLETE)
        self.state.logs.success("Deployment complete! Application is live.")
        return True

    # ── Session controls ──────────────────────────────────────────────

    def reset(self) -> None:
        """Restore the initial state in place; late responses are dropped."""
        self._generation += 1
        self._epoch += 1
        self._inflight = None
        fresh = PipelineState()
        for f in fields(PipelineState):
            setattr(self.state, f.name, getattr(fresh, f.name))
        log.info("Pipeline reset (generation %d)", self._generation)

    def update_files(self, files: Sequence[RepoFile]) -> None:
        """Replace the File Set wholesale; duplicate paths collapse, last write wins."""
        self.state.files = dedupe_files(files)

    def apply_code_fix(self, path: str, code: str) -> bool:
        if not path:
            self.state.logs.warning("Cannot apply fix: No file path specified")
            return False
        self.state.files = merge_files(self.state.files, [RepoFile.from_path(path, code)])
        self.state.logs.success(f"Applied fix to {path}")
        return True

    # ── Chat ──────────────────────────────────────────────────────────

    async def chat(self, message: str, model: str | None = None, auto_apply: bool = False) -> ChatMessage | None:
        """
        Ask the assistant about the current files.

        Never changes the stage: a failed call becomes an ``Error: ...``
        assistant message. With ``auto_apply`` every block attributed to a
        path is written into the File Set.
        """
        message = (message or "").strip()
        if not message:
            return None
        model = model or config.DEFAULT_MODEL
        epoch = self._epoch

        self.state.chat_history.append(ChatMessage(role="user", content=message))
        try:
            result: dict[str, Any] = await self.client.run_action(
                "chat",
                self.state.files[: config.CHAT_FILE_CAP],
                model=model,
                issue_context=message,
            )
        except Exception as e:
            if epoch != self._epoch:
                return None
            log.error("chat failed: %s", e)
            reply = ChatMessage(role="assistant", content=f"Error: {str(e) or 'Failed to get response'}")
            self.state.chat_history.append(reply)
            return reply

        if epoch != self._epoch:
            log.warning("Discarding chat reply that arrived after a reset")
            return None

        if not isinstance(result, dict):
            result = {"rawResponse": str(result)}
        text = result.get("rawResponse") or result.get("summary") or json.dumps(result)
        prose, blocks = parse_code_blocks(str(text))
        reply = ChatMessage(role="assistant", content=prose, code_blocks=blocks)
        self.state.chat_history.append(reply)

        if auto_apply:
            applied = sum(1 for b in blocks if b.file and b.code and self.apply_code_fix(b.file, b.code))
            if applied:
                self.state.logs.success(f"Auto-applied {applied} fix{'es' if applied > 1 else ''}")
        return reply

    async def fix_issue(self, index: int, model: str | None = None) -> ChatMessage | None:
        """Ask the assistant for a complete fixed file for one analysis issue."""
        analysis = self.state.analysis
        if analysis is None or not 0 <= index < len(analysis.issues):
            raise LookupError(f"No issue at index {index}")
        prompt = build_issue_fix_prompt(analysis.issues[index])
        return await self.chat(prompt, model=model, auto_apply=True)
