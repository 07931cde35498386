"""
Configuration management for smolbrain stores.

The configuration is stored as a TOML file in the store directory.
It specifies which embedding provider to use and its parameters.
"""

import importlib.util
import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional

import tomli_w

from .types import utc_now


CONFIG_FILENAME = "smolbrain.toml"
DATABASE_FILENAME = "smolbrain.db"
CONFIG_VERSION = 1

DEFAULT_RECENT_LIMIT = 10


@dataclass
class ProviderConfig:
    """Configuration for a single provider."""
    name: str
    params: dict[str, Any] = field(default_factory=dict)


@dataclass
class StoreConfig:
    """Complete store configuration."""
    path: Path
    version: int = CONFIG_VERSION
    created: str = field(default_factory=utc_now)

    # None means no provider: similarity search and re-embedding are unavailable
    embedding: Optional[ProviderConfig] = field(
        default_factory=lambda: ProviderConfig("sentence-transformers")
    )
    recent_limit: int = DEFAULT_RECENT_LIMIT

    @property
    def config_path(self) -> Path:
        """Path to the TOML config file."""
        return self.path / CONFIG_FILENAME

    @property
    def database_path(self) -> Path:
        """Path to the SQLite database holding all persisted state."""
        return self.path / DATABASE_FILENAME

    def exists(self) -> bool:
        """Check if config file exists."""
        return self.config_path.exists()


def get_default_store_path() -> Path:
    """
    Resolve the store directory.

    Priority:
    1. SMOLBRAIN_STORE_PATH environment variable
    2. ~/.smolbrain
    """
    env = os.environ.get("SMOLBRAIN_STORE_PATH")
    if env:
        return Path(env).expanduser().resolve()
    return Path.home() / ".smolbrain"


def detect_default_embedding() -> Optional[ProviderConfig]:
    """
    Detect the best default embedding provider for the current environment.

    Priority:
    1. sentence-transformers (local, no network after model download)
    2. OpenAI (if an API key is available)
    3. None: keyword and listing operations still work
    """
    if importlib.util.find_spec("sentence_transformers") is not None:
        return ProviderConfig("sentence-transformers", {"model": "all-MiniLM-L6-v2"})

    has_openai_key = bool(
        os.environ.get("SMOLBRAIN_OPENAI_API_KEY") or
        os.environ.get("OPENAI_API_KEY")
    )
    if has_openai_key and importlib.util.find_spec("openai") is not None:
        return ProviderConfig("openai", {"model": "text-embedding-3-small"})

    return None


def create_default_config(store_path: Path) -> StoreConfig:
    """Create a new config with auto-detected defaults."""
    return StoreConfig(path=store_path, embedding=detect_default_embedding())


def load_config(store_path: Path) -> StoreConfig:
    """
    Load configuration from a store directory.

    Raises:
        FileNotFoundError: If config doesn't exist
        ValueError: If config is invalid
    """
    config_path = store_path / CONFIG_FILENAME

    if not config_path.exists():
        raise FileNotFoundError(f"Config not found: {config_path}")

    with open(config_path, "rb") as f:
        data = tomllib.load(f)

    version = data.get("store", {}).get("version", 1)
    if version > CONFIG_VERSION:
        raise ValueError(f"Config version {version} is newer than supported ({CONFIG_VERSION})")

    embedding = None
    section = data.get("embedding")
    if section and section.get("name"):
        embedding = ProviderConfig(
            name=section["name"],
            params={k: v for k, v in section.items() if k != "name"},
        )

    recent_limit = data.get("status", {}).get("recent", DEFAULT_RECENT_LIMIT)
    if not isinstance(recent_limit, int) or recent_limit < 0:
        raise ValueError(f"Invalid [status] recent value: {recent_limit!r}")

    return StoreConfig(
        path=store_path,
        version=version,
        created=data.get("store", {}).get("created", ""),
        embedding=embedding,
        recent_limit=recent_limit,
    )


def save_config(config: StoreConfig) -> None:
    """
    Save configuration to the store directory.

    Creates the directory if it doesn't exist.
    """
    config.path.mkdir(parents=True, exist_ok=True)

    data: dict[str, Any] = {
        "store": {
            "version": config.version,
            "created": config.created,
        },
    }
    if config.embedding is not None:
        embedding = {"name": config.embedding.name}
        embedding.update(config.embedding.params)
        data["embedding"] = embedding
    data["status"] = {"recent": config.recent_limit}

    with open(config.config_path, "wb") as f:
        tomli_w.dump(data, f)


def load_or_create_config(store_path: Path) -> StoreConfig:
    """
    Load existing config or create a new one with defaults.

    This is the main entry point for config management.
    """
    config_path = store_path / CONFIG_FILENAME

    if config_path.exists():
        return load_config(store_path)
    else:
        config = create_default_config(store_path)
        save_config(config)
        return config
