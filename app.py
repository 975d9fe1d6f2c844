"""
FastAPI application — REST API for CodeOps Pilot.

Service endpoints (stateless, JSON `{error}` on failure):
  POST /fetch-github-repo            — Repository metadata + capped code files
  POST /analyze-code                 — Run one AI action over a file subset

Dashboard session endpoints (one CodeOpsPipeline per session):
  POST   /sessions                   — New session
  GET    /sessions/{id}              — State + legal actions
  DELETE /sessions/{id}              — Drop session
  POST   /sessions/{id}/{action}     — clone | analyze | fix | test | measure |
                                       record | approve | deploy | reset
  PUT    /sessions/{id}/files        — Replace the File Set
  POST   /sessions/{id}/chat         — Ask the assistant
  POST   /sessions/{id}/issues/{n}/fix — Ask the assistant to fix one issue

  GET    /health                     — Health check
"""

from __future__ import annotations

import logging
import time
import uuid
from contextlib import asynccontextmanager
from typing import Any

import httpx
from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

import config
from activities.ai_actions import ActionError, run_action
from activities.fetch_repo import RepoFetchError, fetch_repository
from models.schemas import RepoFile
from utils.llm import ProviderError
from utils.service_clients import CodeOpsServiceClient
from workflows.pipeline import CodeOpsPipeline

load_dotenv()

logging.basicConfig(
    level=config.LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    datefmt="%H:%M:%S",
)
log = logging.getLogger(__name__)

_service: CodeOpsServiceClient | None = None

# Dashboard sessions keyed by id: {id: {"pipeline": ..., "created": timestamp}}
_sessions: dict[str, dict[str, Any]] = {}


@asynccontextmanager
async def lifespan(app: FastAPI):
    global _service
    if config.SERVICE_BASE_URL:
        log.info("Pipeline services at %s", config.SERVICE_BASE_URL)
    else:
        log.info("Pipeline services in-process")
    yield
    if _service is not None:
        await _service.aclose()
        _service = None


app = FastAPI(
    title="CodeOps Pilot",
    description="AI-assisted code operations pipeline: clone, analyze, fix, test, measure, record, approve, deploy",
    version="1.0.0",
    lifespan=lifespan,
)


def _service_client() -> CodeOpsServiceClient:
    """Client the pipelines use for the fetch and AI services.

    Talks to CODEOPS_SERVICE_URL when set, otherwise to this app in-process.
    """
    global _service
    if _service is None:
        if config.SERVICE_BASE_URL:
            http = httpx.AsyncClient(base_url=config.SERVICE_BASE_URL, timeout=None)
        else:
            http = httpx.AsyncClient(
                transport=httpx.ASGITransport(app=app),
                base_url="http://codeops",
                timeout=None,
            )
        _service = CodeOpsServiceClient(http)
    return _service


# ── Request models ────────────────────────────────────────────────────

class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class FetchRepoRequest(_CamelModel):
    repo_url: str | None = Field(default=None, alias="repoUrl")


class AnalyzeCodeRequest(_CamelModel):
    files: list[dict] | None = None
    action: str | None = None
    model: str | None = None
    issue_context: str | None = Field(default=None, alias="issueContext")


class CloneRequest(_CamelModel):
    repo_url: str = Field(default="", alias="repoUrl")
    model: str | None = None
    auto_analyze: bool = Field(default=True, alias="autoAnalyze")


class ModelRequest(_CamelModel):
    model: str | None = None


class FileModel(BaseModel):
    path: str
    name: str | None = None
    content: str = ""


class UpdateFilesRequest(BaseModel):
    files: list[FileModel]


class ChatRequest(_CamelModel):
    message: str
    model: str | None = None
    auto_apply: bool = Field(default=False, alias="autoApply")


# ── Health ────────────────────────────────────────────────────────────

@app.get("/health")
def health():
    return {
        "status": "ok",
        "service": "codeops-pilot",
        "providers": {
            "groq": bool(config.GROQ_API_KEY),
            "gateway": bool(config.AI_GATEWAY_API_KEY),
        },
        "sessions": len(_sessions),
    }


# ── Services ──────────────────────────────────────────────────────────

@app.post("/fetch-github-repo")
async def fetch_github_repo(req: FetchRepoRequest):
    """Fetch repository metadata and up to 50 code files from GitHub."""
    try:
        return await fetch_repository(req.repo_url)
    except RepoFetchError as e:
        return JSONResponse({"error": e.message}, status_code=e.status_code)


@app.post("/analyze-code")
async def analyze_code(req: AnalyzeCodeRequest):
    """Run one AI action over the given files."""
    try:
        return await run_action(req.action, req.files, req.model, req.issue_context)
    except ActionError as e:
        return JSONResponse({"error": e.message}, status_code=e.status_code)
    except ProviderError as e:
        return JSONResponse({"error": e.message}, status_code=500)
    except Exception as e:
        log.exception("analyze-code failed")
        return JSONResponse({"error": str(e) or "Unknown error"}, status_code=500)


# ── Session store ─────────────────────────────────────────────────────

def _cleanup_sessions() -> None:
    now = time.time()
    expired = [sid for sid, s in _sessions.items() if now - s["created"] > config.SESSION_TTL_SEC]
    for sid in expired:
        del _sessions[sid]
    # Make room for one more, oldest first
    if len(_sessions) >= config.MAX_SESSIONS:
        by_age = sorted(_sessions.items(), key=lambda x: x[1]["created"])
        for sid, _ in by_age[: len(_sessions) - config.MAX_SESSIONS + 1]:
            del _sessions[sid]


def _store_session(pipeline: CodeOpsPipeline) -> str:
    _cleanup_sessions()
    session_id = uuid.uuid4().hex[:8]
    _sessions[session_id] = {"pipeline": pipeline, "created": time.time()}
    return session_id


def _get_pipeline(session_id: str) -> CodeOpsPipeline:
    session = _sessions.get(session_id)
    if session and time.time() - session["created"] > config.SESSION_TTL_SEC:
        _sessions.pop(session_id, None)
        session = None
    if not session:
        raise HTTPException(status_code=404, detail=f"Session not found: {session_id}")
    return session["pipeline"]


def _require(pipeline: CodeOpsPipeline, action: str) -> None:
    if action not in pipeline.legal_actions():
        raise HTTPException(
            status_code=409,
            detail=f"Action '{action}' not allowed in stage '{pipeline.state.stage.value}'",
        )


def _session_view(session_id: str, pipeline: CodeOpsPipeline, **extra: Any) -> dict:
    return {
        "sessionId": session_id,
        **pipeline.state.to_dict(),
        "legalActions": sorted(pipeline.legal_actions()),
        "pendingAction": pipeline.pending_action,
        **extra,
    }


# ── Sessions ──────────────────────────────────────────────────────────

@app.post("/sessions")
async def create_session():
    pipeline = CodeOpsPipeline(_service_client())
    session_id = _store_session(pipeline)
    log.info("Created session %s", session_id)
    return _session_view(session_id, pipeline)


@app.get("/sessions/{session_id}")
async def get_session(session_id: str):
    return _session_view(session_id, _get_pipeline(session_id))


@app.delete("/sessions/{session_id}")
async def delete_session(session_id: str):
    _get_pipeline(session_id)
    _sessions.pop(session_id, None)
    return {"deleted": session_id}


@app.post("/sessions/{session_id}/clone")
async def clone(session_id: str, req: CloneRequest):
    """Clone, then analyze straight away when files arrived."""
    pipeline = _get_pipeline(session_id)
    _require(pipeline, "clone")
    if await pipeline.clone_repository(req.repo_url) and req.auto_analyze and pipeline.state.files:
        await pipeline.analyze_code(model=req.model)
    return _session_view(session_id, pipeline)


@app.post("/sessions/{session_id}/analyze")
async def analyze(session_id: str, req: ModelRequest | None = None):
    pipeline = _get_pipeline(session_id)
    _require(pipeline, "analyze")
    await pipeline.analyze_code(model=req.model if req else None)
    return _session_view(session_id, pipeline)


@app.post("/sessions/{session_id}/fix")
async def fix(session_id: str, req: ModelRequest | None = None):
    pipeline = _get_pipeline(session_id)
    _require(pipeline, "fix")
    await pipeline.apply_fixes(model=req.model if req else None)
    return _session_view(session_id, pipeline)


@app.post("/sessions/{session_id}/test")
async def test(session_id: str, req: ModelRequest | None = None):
    pipeline = _get_pipeline(session_id)
    _require(pipeline, "test")
    await pipeline.run_tests(model=req.model if req else None)
    return _session_view(session_id, pipeline)


@app.post("/sessions/{session_id}/measure")
async def measure(session_id: str, req: ModelRequest | None = None):
    pipeline = _get_pipeline(session_id)
    _require(pipeline, "measure")
    await pipeline.measure_metrics(model=req.model if req else None)
    return _session_view(session_id, pipeline)


@app.post("/sessions/{session_id}/record")
async def record(session_id: str):
    pipeline = _get_pipeline(session_id)
    _require(pipeline, "record")
    result = await pipeline.record_results()
    return _session_view(session_id, pipeline, result=result)


@app.post("/sessions/{session_id}/approve")
async def approve(session_id: str):
    pipeline = _get_pipeline(session_id)
    _require(pipeline, "approve")
    result = await pipeline.request_approval()
    return _session_view(session_id, pipeline, result=result)


@app.post("/sessions/{session_id}/deploy")
async def deploy(session_id: str):
    pipeline = _get_pipeline(session_id)
    _require(pipeline, "deploy")
    await pipeline.deploy()
    return _session_view(session_id, pipeline)


@app.post("/sessions/{session_id}/reset")
async def reset(session_id: str):
    pipeline = _get_pipeline(session_id)
    pipeline.reset()
    return _session_view(session_id, pipeline)


@app.put("/sessions/{session_id}/files")
async def update_files(session_id: str, req: UpdateFilesRequest):
    pipeline = _get_pipeline(session_id)
    _require(pipeline, "update_files")
    pipeline.update_files([
        RepoFile.from_dict(f.model_dump(exclude_none=True)) for f in req.files
    ])
    return _session_view(session_id, pipeline)


@app.post("/sessions/{session_id}/chat")
async def chat(session_id: str, req: ChatRequest):
    pipeline = _get_pipeline(session_id)
    _require(pipeline, "chat")
    if not req.message.strip():
        raise HTTPException(status_code=400, detail="Message is required")
    reply = await pipeline.chat(req.message, model=req.model, auto_apply=req.auto_apply)
    return _session_view(session_id, pipeline, reply=reply.to_dict() if reply else None)


@app.post("/sessions/{session_id}/issues/{index}/fix")
async def fix_issue(session_id: str, index: int, req: ModelRequest | None = None):
    pipeline = _get_pipeline(session_id)
    _require(pipeline, "fix_issue")
    try:
        reply = await pipeline.fix_issue(index, model=req.model if req else None)
    except LookupError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return _session_view(session_id, pipeline, reply=reply.to_dict() if reply else None)
