"""State layout helpers for planwright.

Everything planwright persists lives under ``<project>/.pw/``::

    .pw/
        .gitignore       # operational files are not tracked
        config.json      # tracked, see planwright.config
        telemetry.jsonl  # local telemetry sink
        planwright.log   # written when `pw plan --verbose` is used
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any


def state_root(base: Path) -> Path:
    return base / ".pw"


def config_path(base: Path) -> Path:
    return state_root(base) / "config.json"


def telemetry_path(base: Path) -> Path:
    return state_root(base) / "telemetry.jsonl"


def log_path(base: Path) -> Path:
    return state_root(base) / "planwright.log"


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def read_json(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(f"Missing JSON file: {path}")
    content = path.read_text(encoding="utf-8").strip()
    if not content:
        return {}
    return json.loads(content)


def write_json(path: Path, data: dict[str, Any]) -> None:
    """Atomically write *data* as JSON to *path*.

    Writes to a temporary file in the same directory, then renames into
    place so readers never see a partial write.
    """
    serialized = json.dumps(data, indent=2, sort_keys=True)
    tmp = path.with_suffix(f".{os.getpid()}.tmp")
    tmp.write_text(f"{serialized}\n", encoding="utf-8")
    os.rename(tmp, path)


def append_jsonl(path: Path, record: dict[str, Any]) -> None:
    serialized = json.dumps(record, sort_keys=True)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as handle:
        handle.write(f"{serialized}\n")


def ensure_base_layout(base: Path, create_gitignore: bool = True) -> dict[str, Path]:
    """Create the .pw/ structure. Idempotent."""
    ensure_dir(state_root(base))

    gitignore_path = state_root(base) / ".gitignore"
    if create_gitignore and not gitignore_path.exists():
        gitignore_content = """# Operational state (not tracked)
*.jsonl
*.log
*.tmp

# Config file is tracked
!config.json
"""
        gitignore_path.write_text(gitignore_content, encoding="utf-8")

    return {
        "state_root": state_root(base),
        "config": config_path(base),
        "gitignore": gitignore_path if create_gitignore else None,
    }
