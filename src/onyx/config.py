"""Onyx configuration loader.

Priority (high → low):
  1. CLI flags           (handled at call site, not in this module)
  2. Environment variables  (ONYX_EMBEDDING_MODEL, OLLAMA_URL, ONYX_LOG_LEVEL,
                            REDIS_URL)
  3. Per-project onyx.yaml  (next to .onyx.db)
  4. Global ~/.onyx/config.yaml  (model defaults only, no API keys)
  5. Hardcoded defaults

Global config must never contain API keys; use environment variables instead.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import re
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_GLOBAL_CONFIG_DIR: Path = Path.home() / ".onyx"
_GLOBAL_CONFIG_PATH: Path = _GLOBAL_CONFIG_DIR / "config.yaml"
_PROJECT_CONFIG_NAME: str = "onyx.yaml"

# Fields that suggest an API key are forbidden in global config.
# Does NOT match legitimate config keys like max_tokens or overlap_tokens.
_API_KEY_RE: re.Pattern[str] = re.compile(
    r"api[_\-]?(?:key|secret)"  # api_key, api-key, api_secret, apikey
    r"|_token$"                  # access_token, auth_token (suffix)
    r"|^token$"
    r"|_secret$"
    r"|^secret$"
    r"|passw(?:ord|d)"
    r"|credential",
    re.IGNORECASE,
)

_KNOWN_SECTIONS: frozenset[str] = frozenset(
    ["embedding", "chunking", "search", "context", "fetch", "queue", "logging"]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when a config file contains an invalid or forbidden value."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class EmbeddingCfg:
    """Embedding service configuration (onyx.yaml: embedding:).

    Attributes:
        model: LiteLLM model string; also stored on every ChunkEmbedding row.
        api_base: Base URL of the embedding service.
        dimensions: Expected vector length; mismatching responses are rejected.
        timeout: Request timeout in seconds.
    """

    model: str = "ollama/nomic-embed-text"
    api_base: str | None = "http://localhost:11434"
    dimensions: int = 768
    timeout: float = 30.0


@dataclass
class ChunkingCfg:
    """Markdown chunker limits (onyx.yaml: chunking:)."""

    max_tokens: int = 512
    overlap_tokens: int = 50


@dataclass
class SearchCfg:
    """Hybrid search defaults (onyx.yaml: search:)."""

    limit: int = 20
    semantic_weight: float = 0.7


@dataclass
class ContextCfg:
    """Context pack defaults (onyx.yaml: context:)."""

    max_tokens: int = 8_000
    pool_size: int = 50


@dataclass
class FetchCfg:
    """Source fetch settings (onyx.yaml: fetch:).

    Attributes:
        allow_private: Skip the private-address guard. Only for local
            deployments that ingest intranet pages.
    """

    user_agent: str = "Onyx-Bot/0.1 (onyx)"
    timeout: float = 30.0
    max_bytes: int = 5 * 1024 * 1024
    allow_private: bool = False


@dataclass
class QueueCfg:
    """arq job queues: Redis connection, retry policy, worker polling (onyx.yaml: queue:).

    Attributes:
        redis_url: Redis holding the arq queues and job results.
        max_attempts: Tries per job, including the first.
        backoff_seconds: Base delay; attempt n waits backoff_seconds * 2 ** (n - 1).
        poll_interval: Seconds between arq queue polls.
        job_timeout: Seconds before arq cancels a running job.
    """

    redis_url: str = "redis://localhost:6379/0"
    max_attempts: int = 3
    backoff_seconds: float = 5.0
    poll_interval: float = 1.0
    job_timeout: float = 300.0


@dataclass
class LoggingCfg:
    """Loguru sinks (onyx.yaml: logging:)."""

    level: str = "INFO"
    file: str | None = None


@dataclass
class OnyxConfig:
    """Root configuration object, built by load_config() from merged YAML layers."""

    embedding: EmbeddingCfg = field(default_factory=EmbeddingCfg)
    chunking: ChunkingCfg = field(default_factory=ChunkingCfg)
    search: SearchCfg = field(default_factory=SearchCfg)
    context: ContextCfg = field(default_factory=ContextCfg)
    fetch: FetchCfg = field(default_factory=FetchCfg)
    queue: QueueCfg = field(default_factory=QueueCfg)
    logging: LoggingCfg = field(default_factory=LoggingCfg)


# ---------------------------------------------------------------------------
# Validation helpers
# ---------------------------------------------------------------------------


def _check_no_api_keys(data: dict[str, Any], source: Path) -> None:
    """Raise ConfigError if *data* contains any API-key-like key names."""

    def _scan(obj: Any, path: str) -> None:
        if isinstance(obj, dict):
            for k, v in obj.items():
                full = f"{path}.{k}" if path else k
                if _API_KEY_RE.search(str(k)):
                    raise ConfigError(
                        f"Global config '{source}' contains a forbidden key '{full}'.\n"
                        f"  API keys must be set via environment variables, not config files.\n"
                        f"  Remove '{full}' from {source.name} and use:\n"
                        f"    export {str(k).upper().replace('-', '_')}=<value>"
                    )
                _scan(v, full)

    _scan(data, "")


def _warn_unknown_keys(data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised top-level keys."""
    for key in data:
        if key not in _KNOWN_SECTIONS:
            warnings.warn(
                f"Unknown config key '{key}' in '{source}', ignored.",
                UserWarning,
                stacklevel=4,
            )


def _validate(cfg: OnyxConfig) -> None:
    if cfg.embedding.dimensions < 1:
        raise ConfigError(f"embedding.dimensions must be >= 1, got {cfg.embedding.dimensions}")
    if cfg.chunking.max_tokens < 1:
        raise ConfigError(f"chunking.max_tokens must be >= 1, got {cfg.chunking.max_tokens}")
    if not 0 <= cfg.chunking.overlap_tokens < cfg.chunking.max_tokens:
        raise ConfigError(
            "chunking.overlap_tokens must be >= 0 and smaller than chunking.max_tokens"
        )
    if not 0.0 <= cfg.search.semantic_weight <= 1.0:
        raise ConfigError(
            f"search.semantic_weight must be in [0, 1], got {cfg.search.semantic_weight}"
        )
    if cfg.queue.max_attempts < 1:
        raise ConfigError(f"queue.max_attempts must be >= 1, got {cfg.queue.max_attempts}")


# ---------------------------------------------------------------------------
# Merge + build
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return a new dict that is *base* deep-merged with *override*."""
    result = dict(base)
    for k, v in override.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge(result[k], v)
        else:
            result[k] = v
    return result


def _cfg_from_dict(data: dict[str, Any]) -> OnyxConfig:
    """Build an *OnyxConfig* from a merged raw YAML dict."""
    cfg = OnyxConfig()

    if "embedding" in data:
        e = data["embedding"]
        cfg.embedding = EmbeddingCfg(
            model=str(e.get("model", cfg.embedding.model)),
            api_base=e.get("api_base", cfg.embedding.api_base),
            dimensions=int(e.get("dimensions", cfg.embedding.dimensions)),
            timeout=float(e.get("timeout", cfg.embedding.timeout)),
        )

    if "chunking" in data:
        c = data["chunking"]
        cfg.chunking = ChunkingCfg(
            max_tokens=int(c.get("max_tokens", cfg.chunking.max_tokens)),
            overlap_tokens=int(c.get("overlap_tokens", cfg.chunking.overlap_tokens)),
        )

    if "search" in data:
        s = data["search"]
        cfg.search = SearchCfg(
            limit=int(s.get("limit", cfg.search.limit)),
            semantic_weight=float(s.get("semantic_weight", cfg.search.semantic_weight)),
        )

    if "context" in data:
        ctx = data["context"]
        cfg.context = ContextCfg(
            max_tokens=int(ctx.get("max_tokens", cfg.context.max_tokens)),
            pool_size=int(ctx.get("pool_size", cfg.context.pool_size)),
        )

    if "fetch" in data:
        f = data["fetch"]
        cfg.fetch = FetchCfg(
            user_agent=str(f.get("user_agent", cfg.fetch.user_agent)),
            timeout=float(f.get("timeout", cfg.fetch.timeout)),
            max_bytes=int(f.get("max_bytes", cfg.fetch.max_bytes)),
            allow_private=bool(f.get("allow_private", cfg.fetch.allow_private)),
        )

    if "queue" in data:
        q = data["queue"]
        cfg.queue = QueueCfg(
            redis_url=str(q.get("redis_url", cfg.queue.redis_url)),
            max_attempts=int(q.get("max_attempts", cfg.queue.max_attempts)),
            backoff_seconds=float(q.get("backoff_seconds", cfg.queue.backoff_seconds)),
            poll_interval=float(q.get("poll_interval", cfg.queue.poll_interval)),
            job_timeout=float(q.get("job_timeout", cfg.queue.job_timeout)),
        )

    if "logging" in data:
        lg = data["logging"]
        cfg.logging = LoggingCfg(
            level=str(lg.get("level", cfg.logging.level)).upper(),
            file=lg.get("file") or cfg.logging.file,
        )

    return cfg


def _apply_env_overrides(cfg: OnyxConfig) -> OnyxConfig:
    """Apply environment variable overrides (layer 2)."""
    if model := os.environ.get("ONYX_EMBEDDING_MODEL"):
        cfg.embedding.model = model
    if api_base := os.environ.get("OLLAMA_URL"):
        cfg.embedding.api_base = api_base
    if level := os.environ.get("ONYX_LOG_LEVEL"):
        cfg.logging.level = level.upper()
    if redis_url := os.environ.get("REDIS_URL"):
        cfg.queue.redis_url = redis_url
    return cfg


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def load_config(
    project_dir: Path | None = None,
    *,
    global_config_path: Path | None = None,
) -> OnyxConfig:
    """Load and return a merged *OnyxConfig*.

    Applies layers in order: global → per-project → env vars.
    CLI flag overrides must be applied by the caller after this function.

    Args:
        project_dir: Directory to search for *onyx.yaml*. Defaults to CWD.
        global_config_path: Override the global config path (for testing).

    Returns:
        Fully merged *OnyxConfig* with env var overrides applied.

    Raises:
        ConfigError: If global config contains API-key-like fields, or if a
            value is out of range.
    """
    global_path = global_config_path if global_config_path is not None else _GLOBAL_CONFIG_PATH
    search_dir = project_dir if project_dir is not None else Path.cwd()

    merged: dict[str, Any] = {}

    # Layer 1: global config
    if global_path.exists():
        raw_global = yaml.safe_load(global_path.read_text(encoding="utf-8")) or {}
        _check_no_api_keys(raw_global, global_path)
        _warn_unknown_keys(raw_global, global_path)
        merged = _deep_merge(merged, raw_global)

    # Layer 2: per-project config
    project_cfg_path = search_dir / _PROJECT_CONFIG_NAME
    if project_cfg_path.exists():
        raw_project = yaml.safe_load(project_cfg_path.read_text(encoding="utf-8")) or {}
        _warn_unknown_keys(raw_project, project_cfg_path)
        merged = _deep_merge(merged, raw_project)

    cfg = _cfg_from_dict(merged)

    # Layer 3: env var overrides
    cfg = _apply_env_overrides(cfg)

    _validate(cfg)
    return cfg


def ensure_project_config(project_dir: Path) -> Path:
    """Write a commented ``onyx.yaml`` with defaults into *project_dir* if missing.

    Returns:
        Path to the project config file.
    """
    target = project_dir / _PROJECT_CONFIG_NAME
    if not target.exists():
        content = (
            "# Onyx project configuration.\n"
            "# NEVER store API keys here; use environment variables.\n"
            "\n"
            "embedding:\n"
            "  model: ollama/nomic-embed-text\n"
            "  api_base: http://localhost:11434\n"
            "  dimensions: 768\n"
            "\n"
            "chunking:\n"
            "  max_tokens: 512\n"
            "  overlap_tokens: 50\n"
            "\n"
            "queue:\n"
            "  redis_url: redis://localhost:6379/0\n"
            "  max_attempts: 3\n"
            "  backoff_seconds: 5\n"
        )
        target.write_text(content, encoding="utf-8")
    return target
