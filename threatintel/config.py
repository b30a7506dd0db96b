"""Load and validate configuration from YAML with env var substitution."""

from __future__ import annotations

import os
import re
from pathlib import Path
from typing import Any

import yaml

DEPLOYMENT_MODES = ("baseline", "shadow", "canary", "trimodel")

DEFAULT_MODELS = {
    "text_large": "@cf/qwen/qwen3-30b-a3b-fp8",
    "text_small": "@cf/mistralai/mistral-small-3.1-24b-instruct",
    "embeddings": "@cf/baai/bge-m3",
    "text_large_fallback": "@cf/meta/llama-3.3-70b-instruct-fp8-fast",
    "text_small_fallback": "@cf/meta/llama-3.1-8b-instruct-fp8-fast",
    "embeddings_fallback": "@cf/baai/bge-large-en-v1.5",
}


def _load_dotenv(path: str | Path = ".env") -> None:
    """Load a .env file into os.environ (without overwriting existing vars)."""
    env_path = Path(path)
    if not env_path.is_file():
        return
    with open(env_path) as f:
        for line in f:
            line = line.strip()
            if not line or line.startswith("#") or "=" not in line:
                continue
            key, _, value = line.partition("=")
            key = key.strip()
            value = value.strip().strip("'\"")
            if key and key not in os.environ:
                os.environ[key] = value


def _resolve_env_vars(value: Any) -> Any:
    """Recursively resolve ${ENV_VAR} patterns in config values."""
    if isinstance(value, str):
        pattern = re.compile(r"\$\{([^}]+)\}")
        match = pattern.search(value)
        if match:
            env_val = os.environ.get(match.group(1), "")
            # If the entire string is a single env var, return the resolved value
            if match.group(0) == value:
                return env_val
            return pattern.sub(lambda m: os.environ.get(m.group(1), ""), value)
        return value
    if isinstance(value, dict):
        return {k: _resolve_env_vars(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_resolve_env_vars(item) for item in value]
    return value


def load_config(path: str | Path = "config.yaml") -> dict[str, Any]:
    """Load config from YAML file and resolve environment variables."""
    _load_dotenv()

    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    return _resolve_env_vars(raw)


def get_deployment_config(config: dict) -> dict:
    """Active deployment mode, canary percentage and validation logging flag."""
    deploy = config.get("deployment", {})
    mode = str(deploy.get("mode", "baseline")).lower()
    if mode not in DEPLOYMENT_MODES:
        raise ValueError(
            f"Unknown deployment mode '{mode}' (expected one of {', '.join(DEPLOYMENT_MODES)})"
        )
    canary_percent = float(deploy.get("canary_percent", 0))
    if not 0 <= canary_percent <= 100:
        raise ValueError(f"canary_percent must be within 0-100, got {canary_percent}")
    return {
        "mode": mode,
        "canary_percent": canary_percent,
        "validation_logging": bool(deploy.get("validation_logging", True)),
    }


def get_model_config(config: dict) -> dict[str, str]:
    """Model ids per role, falling back to the production defaults."""
    overrides = config.get("models", {}) or {}
    return {role: overrides.get(role, default) for role, default in DEFAULT_MODELS.items()}


def get_inference_config(config: dict) -> dict:
    """Inference backend type and credentials."""
    inference = config.get("inference", {})
    return {
        "type": inference.get("type", "workers_ai"),
        "api_key": inference.get("api_key", ""),
        "account_id": inference.get("account_id", ""),
        "base_url": inference.get("base_url", ""),
        "max_retries": int(inference.get("max_retries", 3)),
        "timeout": int(inference.get("timeout", 120)),
    }


def get_neuron_budget(config: dict) -> int:
    """Daily neuron ceiling."""
    return int(config.get("usage", {}).get("daily_neuron_limit", 10_000))


def get_quota_limits(config: dict) -> dict:
    """Archive safety limits (80% of the provider's free tier by default)."""
    quota = config.get("archive", {}).get("quota", {})
    return {
        "storage_gb": float(quota.get("storage_gb", 8)),
        "class_a_ops": int(quota.get("class_a_ops", 800_000)),
        "class_b_ops": int(quota.get("class_b_ops", 8_000_000)),
        "warning_threshold": float(quota.get("warning_threshold", 0.7)),
        "critical_threshold": float(quota.get("critical_threshold", 0.8)),
    }


def get_archive_config(config: dict) -> dict:
    """Archive bucket, key prefix and per-article size ceiling."""
    archive = config.get("archive", {})
    return {
        "enabled": bool(archive.get("enabled", True)),
        "bucket": archive.get("bucket", ""),
        "prefix": archive.get("prefix", "threats"),
        "max_size_bytes": int(archive.get("max_size_bytes", 200 * 1024)),
        "age_days": int(archive.get("age_days", 90)),
        "max_per_run": int(archive.get("max_per_run", 100)),
    }


def get_processing_config(config: dict) -> dict:
    """Batch limits for the scheduled analysis job."""
    processing = config.get("processing", {})
    timeout = processing.get("article_timeout_seconds")
    return {
        "max_per_run": int(processing.get("max_per_run", 10)),
        "article_timeout_seconds": float(timeout) if timeout else None,
    }


def get_db_path(config: dict) -> str:
    """Get database path from config."""
    return config.get("database", {}).get("path", "data/threatintel.db")


def get_kv_path(config: dict) -> str:
    """Path of the SQLite file backing the key-value counter store."""
    return config.get("kv", {}).get("path", get_db_path(config))
