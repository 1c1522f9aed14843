"""Operator-configured text resources that a turn may include as context."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from .errors import DiagnosticResourceError


class DiagnosticResources:
    """Named, read-only text files listed in config under ``diagnostics.resources``.

    Only names present in the mapping can be read; there is no way to ask
    for an arbitrary path.
    """

    def __init__(self, resources: Mapping[str, str], default: Optional[str] = None) -> None:
        self.resources: Dict[str, Path] = {str(k): Path(v) for k, v in (resources or {}).items()}
        self.default = default

    def read(self, name: Optional[str] = None) -> str:
        name = name or self.default
        if not name:
            raise DiagnosticResourceError("No diagnostic resource configured.")
        path = self.resources.get(name)
        if path is None:
            raise DiagnosticResourceError(f"Unknown diagnostic resource: {name!r}")
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise DiagnosticResourceError(f"Failed to read diagnostic resource {name!r} at {path}: {e}") from e


def create_from_config(cfg: Dict[str, Any]) -> DiagnosticResources:
    diag = (cfg or {}).get("diagnostics", {}) or {}
    resources = diag.get("resources") or {}
    default = diag.get("default")
    if not default and len(resources) == 1:
        default = next(iter(resources))
    return DiagnosticResources(resources, default=default)
