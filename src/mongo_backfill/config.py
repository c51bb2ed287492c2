from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from mongo_backfill.batching import MAX_BATCH_SIZE
from mongo_backfill.exceptions import ConfigurationError


class EnvConfig(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="MBACKFILL_", case_sensitive=False)

    mongodb_uri: Optional[str] = None
    default_db: Optional[str] = None
    collection: Optional[str] = None
    batch_size: Optional[int] = None
    rate_limit_ms: Optional[int] = None
    use_transactions: Optional[bool] = None
    log_level: Optional[str] = None


class FileConfig(BaseModel):
    mongodb_uri: Optional[str] = None
    default_db: Optional[str] = None
    collection: Optional[str] = None
    batch_size: Optional[int] = None
    rate_limit_ms: Optional[int] = None
    use_transactions: Optional[bool] = None
    log_level: Optional[str] = None


class RuntimeConfig(BaseModel):
    mongodb_uri: str = Field(..., description="MongoDB connection string")
    default_db: str = Field(..., description="Database holding the collection")
    collection: str = Field("matches", description="Collection to backfill")
    batch_size: int = Field(MAX_BATCH_SIZE, ge=1, le=MAX_BATCH_SIZE)
    rate_limit_ms: int = Field(0, ge=0, description="Delay between batch commits")
    use_transactions: bool = True
    log_level: str = "INFO"


DEFAULT_CONFIG_PATH = Path.cwd() / ".mbackfill.yml"
LOCAL_CONFIG_PATH = Path.cwd() / ".mbackfill.local.yml"

_KEYS = (
    "mongodb_uri",
    "default_db",
    "collection",
    "batch_size",
    "rate_limit_ms",
    "use_transactions",
    "log_level",
)


def load_file_config(path: Path = DEFAULT_CONFIG_PATH) -> FileConfig:
    if not path.exists():
        return FileConfig()

    data = yaml.safe_load(path.read_text()) or {}
    return FileConfig(**data)


def load_runtime_config(
    path: Path = DEFAULT_CONFIG_PATH,
    overrides: Optional[Dict[str, Any]] = None,
) -> RuntimeConfig:
    """Load configuration with priority: overrides > env vars > local file > main file.

    ``overrides`` holds command-line values; keys set to None are ignored.
    """
    file_config = load_file_config(path)

    # Local override file (gitignored) sits next to the main file
    local_path = path.parent / ".mbackfill.local.yml" if path != DEFAULT_CONFIG_PATH else LOCAL_CONFIG_PATH
    local_config = load_file_config(local_path)

    env_config = EnvConfig()

    explicit = overrides or {}
    merged: Dict[str, Any] = {}
    for key in _KEYS:
        for layer in (explicit, env_config.model_dump(), local_config.model_dump(), file_config.model_dump()):
            value = layer.get(key)
            if value is not None:
                merged[key] = value
                break

    if not merged.get("mongodb_uri"):
        raise ConfigurationError("Missing MongoDB URI. Set in .mbackfill.yml, .mbackfill.local.yml, or MBACKFILL_MONGODB_URI.")
    if not merged.get("default_db"):
        raise ConfigurationError("Missing default DB. Set in .mbackfill.yml, .mbackfill.local.yml, or MBACKFILL_DEFAULT_DB.")

    try:
        return RuntimeConfig(**merged)
    except ValidationError as exc:
        raise ConfigurationError(f"Invalid configuration: {exc}") from exc


def write_default_config(path: Path = DEFAULT_CONFIG_PATH) -> Path:
    if path.exists():
        return path

    content = {
        "mongodb_uri": "mongodb://localhost:27017",
        "default_db": "myapp",
        "collection": "matches",
        "batch_size": MAX_BATCH_SIZE,
        "rate_limit_ms": 0,
        "use_transactions": True,
        "log_level": "INFO",
    }
    path.write_text(yaml.safe_dump(content, sort_keys=False))
    return path
