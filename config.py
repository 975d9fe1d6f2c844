"""
Configuration — loads settings from environment / .env file.
"""

from __future__ import annotations

import os

from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# GitHub
GITHUB_API_URL = os.getenv("GITHUB_API_URL", "https://api.github.com")
GITHUB_TOKEN = os.getenv("GITHUB_TOKEN", "")
GITHUB_USER_AGENT = "CodeOps-AI"

# AI providers. A provider with an empty key is skipped.
GROQ_API_KEY = os.getenv("GROQ_API_KEY", "")
GROQ_BASE_URL = os.getenv("GROQ_BASE_URL", "https://api.groq.com/openai/v1")
GROQ_MODEL = os.getenv("GROQ_MODEL", "meta-llama/llama-4-maverick-17b-128e-instruct")

AI_GATEWAY_API_KEY = os.getenv("AI_GATEWAY_API_KEY", "")
AI_GATEWAY_BASE_URL = os.getenv("AI_GATEWAY_BASE_URL", "https://ai.gateway.lovable.dev/v1")
AI_GATEWAY_MODEL = os.getenv("AI_GATEWAY_MODEL", "google/gemini-2.5-flash")

# Dashboard model names → gateway model ids
MODEL_ALIASES = {
    "gemini": AI_GATEWAY_MODEL,
    "claude": os.getenv("CLAUDE_MODEL", AI_GATEWAY_MODEL),
}
DEFAULT_MODEL = "gemini"

AI_TEMPERATURE = 0.2
AI_MAX_TOKENS = 4096

# Where the orchestrator reaches the fetch / AI services. Empty → in-process.
SERVICE_BASE_URL = os.getenv("CODEOPS_SERVICE_URL", "")

# Repository fetch limits
CODE_EXTENSIONS = {
    "js", "ts", "tsx", "jsx", "py", "java", "cpp", "c", "h", "css",
    "html", "json", "md", "yaml", "yml", "go", "rs", "rb", "php",
}
DEPENDENCY_DIRS = {"node_modules"}
MAX_REPO_FILES = 50
MAX_FETCHED_FILE_CHARS = 10_000

# AI request limits (enforced by the AI service, independent of the pipeline cap)
MAX_AI_FILES = 10
MAX_AI_FILE_CHARS = 1_500
TRUNCATION_MARKER = "\n... (truncated)"

# Pipeline
PIPELINE_FILE_CAP = 20
CHAT_FILE_CAP = 10
SOLVED_MATCH_PREFIX = 30
DEPLOY_DELAY_SEC = float(os.getenv("DEPLOY_DELAY_SEC", "2.0"))

# Dashboard sessions
MAX_SESSIONS = 50
SESSION_TTL_SEC = 3600
