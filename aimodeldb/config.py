"""
AIModelDB Repository
Introductory remarks: This module is part of the AIModelDB codebase.

Central configuration constants for the ingestion and validation pipeline.
"""

from __future__ import annotations

# Rate governor ---------------------------------------------------------------

RETENTION_SECONDS = 60 * 60
"""Idle horizon after which a rate-limit entry is purged."""

SWEEP_INTERVAL_SECONDS = 10 * 60
"""How often the background sweeper purges idle rate-limit entries."""

DATA_SOURCE_MAX_ATTEMPTS = 100
GITHUB_MAX_ATTEMPTS = 60
LLM_PROVIDER_MAX_ATTEMPTS = 20
DEFAULT_WINDOW_MS = 60 * 1000

DATA_SOURCE_PREFIXES = (
    "/aa-api",
    "/aa-web",
    "/huggingface-api",
    "/huggingface-web",
    "/roboflow-api",
    "/kaggle-api",
    "/tensorart-api",
    "/civitai-api",
    "/runcomfy-api",
    "/prompthero-api",
    "/liblib-api",
    "/shakker-api",
    "/openmodeldb-api",
    "/civitasbay-api",
)
GITHUB_PREFIXES = ("/github-api", "/github-web")
LLM_PROVIDER_PREFIXES = (
    "/openai-api",
    "/anthropic-api",
    "/cohere-api",
    "/google-api",
    "/deepseek-api",
    "/perplexity-api",
    "/openrouter-api",
)

# Upstream hosts for the local proxy. The path remainder is appended to the
# rewritten base.
PROXY_TARGETS = {
    "/aa-api": "https://artificialanalysis.ai/api",
    "/aa-web": "https://artificialanalysis.ai",
    "/huggingface-api": "https://huggingface.co/api",
    "/huggingface-web": "https://huggingface.co",
    "/github-api": "https://api.github.com",
    "/github-web": "https://github.com",
    "/roboflow-api": "https://api.roboflow.com",
    "/kaggle-api": "https://www.kaggle.com/api/v1",
    "/tensorart-api": "https://tensor.art/api",
    "/civitai-api": "https://civitai.com/api/v1",
    "/runcomfy-api": "https://runcomfy.com",
    "/prompthero-api": "https://prompthero.com",
    "/liblib-api": "https://www.liblib.ai",
    "/shakker-api": "https://www.shakker.ai",
    "/openmodeldb-api": "https://raw.githubusercontent.com",
    "/civitasbay-api": "https://civitasbay.org",
    "/openai-api": "https://api.openai.com/v1",
    "/anthropic-api": "https://api.anthropic.com",
    "/cohere-api": "https://api.cohere.com",
    "/google-api": "https://generativelanguage.googleapis.com",
    "/deepseek-api": "https://api.deepseek.com",
    "/perplexity-api": "https://api.perplexity.ai",
    "/openrouter-api": "https://openrouter.ai/api",
}

ALLOWED_ORIGINS = (
    "http://localhost:5173",
    "http://127.0.0.1:5173",
    "http://0.0.0.0:5173",
)
"""Origins allowed to call the local proxy. Matching is by prefix."""

# Provider tiers -------------------------------------------------------------

TIER_LIMITS = {
    "free": {"max_requests_per_minute": 3, "min_interval_ms": 20000},
    "tier1": {"max_requests_per_minute": 20, "min_interval_ms": 3000},
    "tier2": {"max_requests_per_minute": 50, "min_interval_ms": 1200},
    "tier3": {"max_requests_per_minute": 100, "min_interval_ms": 600},
    "tier4": {"max_requests_per_minute": 300, "min_interval_ms": 200},
}
DEFAULT_TIER = "tier1"

# Validation -----------------------------------------------------------------

DEFAULT_MAX_ATTEMPTS = 3
BACKOFF_BASE_SECONDS = 1.0
MAX_BACKOFF_SECONDS = 10.0
ARCHIVE_LIMIT = 500
"""Terminal jobs kept for inspection before the oldest are evicted."""

MAX_PENDING_JOBS = 5000

LLM_TEMPERATURE = 0.0
LLM_REQUEST_TIMEOUT_SECONDS = 60
ANTHROPIC_VERSION = "2023-06-01"

# Sync -----------------------------------------------------------------------

DEFAULT_SYNC_WORKERS = 4
LAST_SYNC_METADATA_KEY = "last_sync"
