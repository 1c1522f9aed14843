"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
import yaml

# Ensure src/ is on the import path (for local imports without installing as package)
SRC_PATH = Path(__file__).resolve().parent.parent / "src"
if str(SRC_PATH) not in sys.path:
    sys.path.insert(0, str(SRC_PATH))


class DummyClient:
    """Stands in for ChatCompletionsClient; records every request.

    ``replies`` are returned in order for text-only requests; requests that
    carry an image block go to ``describe`` instead. Set ``fail`` or
    ``fail_images`` to an exception to raise it.
    """

    model = "dummy-model"

    def __init__(self, replies: Optional[List[str]] = None, describe: str = "a cat") -> None:
        self.replies = list(replies or ["ok"])
        self.describe_text = describe
        self.fail: Optional[Exception] = None
        self.fail_images: Optional[Exception] = None
        self.calls: List[Dict[str, Any]] = []

    async def create(self, messages, *, model=None, **params) -> str:
        self.calls.append({"messages": list(messages), "model": model, "params": params})
        is_vision = any(not isinstance(m.content, str) for m in messages)
        if is_vision:
            if self.fail_images is not None:
                raise self.fail_images
            return self.describe_text
        if self.fail is not None:
            raise self.fail
        return self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]

    async def aclose(self) -> None:  # pragma: no cover - trivial
        pass


@pytest.fixture(scope="session")
def project_root() -> Path:
    """Return the root directory of the project."""
    return Path(__file__).resolve().parent.parent


@pytest.fixture(scope="function")
def tmp_data_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for downloads / diagnostics during tests."""
    d = tmp_path / "data"
    d.mkdir(parents=True, exist_ok=True)
    return d


@pytest.fixture(scope="function")
def clean_env(monkeypatch: pytest.MonkeyPatch):
    """Ensure tests run with a clean environment (no leftover vars)."""
    import os

    for var in list(os.environ):
        if var.startswith("MALAN_CHAT"):
            monkeypatch.delenv(var, raising=False)
    monkeypatch.delenv("APIKEY", raising=False)
    yield


@pytest.fixture(scope="function")
def write_config(tmp_path: Path, clean_env):
    """Write a YAML config into tmp_path and return its path as str."""

    def _write(data: Dict[str, Any]) -> str:
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump(data, sort_keys=False), encoding="utf-8")
        return str(path)

    return _write


@pytest.fixture(scope="function")
def dummy_client() -> DummyClient:
    return DummyClient()
