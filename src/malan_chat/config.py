"""Configuration loading utilities for the chat server.

This module handles layered configuration:
1. Explicit path argument (highest precedence)
2. Environment variable MALAN_CHAT_CONFIG
3. Fallback to "config/default.yaml"

Built-in defaults sit underneath whatever file is found, so a partial file
only needs the keys it changes. Environment variables with prefix
``MALAN_CHAT__`` override single leaves (e.g.
MALAN_CHAT__GENERATION__TEMPERATURE=0.2).

The API key never lives in the config itself; ``inference.api_key_env``
names the environment variable holding it. A ``.env`` file in the working
directory is loaded first.
"""

from __future__ import annotations

import copy
import logging
import os
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from .errors import ConfigError

logger = logging.getLogger(__name__)

ENV_CONFIG_PATH = "MALAN_CHAT_CONFIG"
ENV_PREFIX = "MALAN_CHAT__"

DEFAULTS: Dict[str, Any] = {
    "server": {"cors_origins": ["*"]},
    "inference": {
        "endpoint": "https://models.github.ai/inference",
        "model": "openai/gpt-4o",
        "vision_model": None,
        "api_key_env": "APIKEY",
        "timeout_seconds": 120.0,
    },
    "generation": {"max_tokens": 512, "temperature": 0.7, "top_p": 0.9},
    "vision": {"max_concurrency": 4, "timeout_seconds": 60.0},
    "identity": {"system_prompt": "You are a helpful AI assistant."},
    "history": {"default_conversation_id": "default", "max_idle_seconds": None},
    "diagnostics": {"default": None, "resources": {}},
    "downloads": {"mode": "inline", "filename": "Malan-Ai.txt", "dir": "data/downloads"},
}


def _parse_scalar(value: str) -> Any:
    if value.lower() in {"true", "false"}:
        return value.lower() == "true"
    try:
        if "." in value:
            return float(value)
        return int(value)
    except ValueError:
        return value


def _apply_env_overrides(cfg: Dict[str, Any]) -> Dict[str, Any]:
    """Apply environment variable overrides with prefix MALAN_CHAT__."""
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        # e.g., MALAN_CHAT__VISION__MAX_CONCURRENCY -> cfg["vision"]["max_concurrency"]
        parts = key[len(ENV_PREFIX):].lower().split("__")
        sub = cfg
        for p in parts[:-1]:
            if p not in sub or not isinstance(sub[p], dict):
                sub[p] = {}
            sub = sub[p]
        sub[parts[-1]] = _parse_scalar(value)
    return cfg


def _deep_merge(base: Dict[str, Any], extra: Dict[str, Any]) -> Dict[str, Any]:
    out = copy.deepcopy(base)
    for key, value in extra.items():
        if isinstance(value, dict) and isinstance(out.get(key), dict):
            out[key] = _deep_merge(out[key], value)
        else:
            out[key] = value
    return out


def load_config(path: str | None = None) -> Dict[str, Any]:
    """Load YAML configuration for the chat server.

    Parameters
    ----------
    path : str | None
        Optional path to a configuration file. If not provided, the
        environment variable ``MALAN_CHAT_CONFIG`` is consulted. As a
        last resort ``config/default.yaml`` is used.

    Returns
    -------
    Dict[str, Any]
        Defaults merged with the file contents, environment overrides applied.

    Raises
    ------
    ConfigError
        If the file exists but is not a valid YAML mapping.
    """
    load_dotenv()

    if path is None:
        path = os.environ.get(ENV_CONFIG_PATH, "config/default.yaml")

    path_obj = Path(path)
    if not path_obj.exists():
        logger.warning("Config file not found at %s. Using defaults.", path_obj)
        return _apply_env_overrides(copy.deepcopy(DEFAULTS))

    with path_obj.open("r", encoding="utf-8") as f:
        try:
            loaded = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Failed to parse config file {path_obj}: {e}") from e

    if not isinstance(loaded, dict):
        raise ConfigError(f"Invalid config format in {path_obj}, expected dict.")

    return _apply_env_overrides(_deep_merge(DEFAULTS, loaded))


def get_api_key(cfg: Dict[str, Any]) -> Optional[str]:
    """Return the inference credential from the environment, if set."""
    env_name = cfg.get("inference", {}).get("api_key_env") or "APIKEY"
    return os.environ.get(env_name) or None
