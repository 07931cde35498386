"""
smolbrain

Long-term memory for AI agents: a local store of short text memories with
tags, full-text search, semantic similarity search and simple tasks.

Quick Start:
    from smolbrain import Brain

    with Brain() as brain:
        brain.add("The staging cluster is in eu-west-1", ["infra"])
        page = brain.similar("where does staging run?")

CLI Usage:
    smolbrain add "text" -t tag
    smolbrain find words to match
    smolbrain similar "a question"
    smolbrain task "something to do"

Default Store:
    ~/.smolbrain/ (created automatically).
    Override with SMOLBRAIN_STORE_PATH or an explicit path argument.

Environment Variables:
    SMOLBRAIN_STORE_PATH      - Override default store location
    SMOLBRAIN_OPENAI_API_KEY  - API key for the OpenAI embedding provider
    SMOLBRAIN_VERBOSE         - Set to 1 for debug logging
"""

# Configure quiet mode early (before any library imports)
import os
if not os.environ.get("SMOLBRAIN_VERBOSE"):
    os.environ.setdefault("HF_HUB_DISABLE_PROGRESS_BARS", "1")
    os.environ.setdefault("TRANSFORMERS_VERBOSITY", "error")
    os.environ.setdefault("TOKENIZERS_PARALLELISM", "false")
    os.environ.setdefault("HF_HUB_DISABLE_TELEMETRY", "1")

from .api import Brain
from .errors import (
    EmbeddingProviderError,
    NotFoundError,
    SmolbrainError,
    StorageError,
    TaskError,
    ValidationError,
)
from .filters import Filters, Window
from .tasks import Task
from .types import Memory, Page, ScoredMemory, StatusSummary

__version__ = "0.1.0"
__all__ = [
    "Brain",
    "Memory",
    "ScoredMemory",
    "Page",
    "StatusSummary",
    "Filters",
    "Window",
    "Task",
    "SmolbrainError",
    "NotFoundError",
    "TaskError",
    "ValidationError",
    "StorageError",
    "EmbeddingProviderError",
]
