"""Reply downloads: inline attachment responses or files kept on disk."""
from __future__ import annotations

import os
import re
import tempfile
import uuid
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .errors import ConfigError

INLINE = "inline"
STORED = "stored"
MODES = (INLINE, STORED)


def _safe_stem(name: str) -> str:
    s = re.sub(r"[^\w.\-]+", "_", name.strip() or "reply")
    return s[:64]


def _atomic_write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile("w", encoding="utf-8", delete=False, dir=str(path.parent)) as tmp:
        tmp.write(text)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp_name = tmp.name
    os.replace(tmp_name, path)


def content_disposition(filename: str) -> str:
    return f'attachment; filename="{filename}"'


class DownloadStore:
    """Directory of saved replies served back by name.

    Layout:
        downloads_dir/
          <stem>-<8 hex>.txt
    """

    def __init__(self, root: str, *, filename: str = "Malan-Ai.txt") -> None:
        self.root = Path(root)
        self.filename = filename

    def save(self, text: str) -> str:
        """Write ``text`` under a fresh unique name and return that name."""
        stem, ext = os.path.splitext(self.filename)
        name = f"{_safe_stem(stem)}-{uuid.uuid4().hex[:8]}{ext or '.txt'}"
        _atomic_write_text(self.root / name, text)
        return name

    def resolve(self, name: str) -> Optional[Path]:
        """Return the path for a saved file, or None if absent or outside the directory."""
        if not name or name != Path(name).name:
            return None
        root = self.root.resolve()
        path = (root / name).resolve()
        if path.parent != root or not path.is_file():
            return None
        return path


def create_from_config(cfg: Dict[str, Any]) -> Tuple[str, DownloadStore]:
    dl = (cfg or {}).get("downloads", {}) or {}
    mode = str(dl.get("mode") or INLINE).lower()
    if mode not in MODES:
        raise ConfigError(f"downloads.mode must be one of {MODES}, got {mode!r}")
    store = DownloadStore(str(dl.get("dir") or "data/downloads"), filename=str(dl.get("filename") or "Malan-Ai.txt"))
    return mode, store
