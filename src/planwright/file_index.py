"""Known project paths for mention autocompletion.

Paths are reported relative to the project root with a leading ``/``;
folders carry a trailing ``/``::

    /README.md
    /src/
    /src/app.py

Walk order is top-down with entries sorted per directory, so the result is
stable between refreshes.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from pathlib import Path

import pathspec

logger = logging.getLogger(__name__)

BUILTIN_IGNORES = [
    ".git/",
    ".hg/",
    ".svn/",
    ".pw/",
    "__pycache__/",
    "*.pyc",
    ".pytest_cache/",
    ".mypy_cache/",
    ".ruff_cache/",
    ".tox/",
    "*.egg-info/",
    ".venv/",
    "venv/",
    "node_modules/",
    "dist/",
    "build/",
    ".DS_Store",
]


def load_ignore_spec(root: Path, extra: Iterable[str] = ()) -> pathspec.PathSpec:
    """Combine built-in ignores, the project's .gitignore and *extra* patterns."""
    patterns = list(BUILTIN_IGNORES)
    gitignore = root / ".gitignore"
    if gitignore.exists():
        try:
            patterns.extend(gitignore.read_text(encoding="utf-8").splitlines())
        except (OSError, UnicodeDecodeError):
            logger.warning("Could not read %s", gitignore, exc_info=True)
    patterns.extend(extra)
    patterns = [p.strip() for p in patterns if p.strip() and not p.strip().startswith("#")]
    return pathspec.PathSpec.from_lines("gitwildmatch", patterns)


def list_project_paths(root: Path, max_entries: int = 5000, ignore: Iterable[str] = ()) -> list[str]:
    """List mentionable files and folders under *root*.

    Stops after *max_entries* entries.
    """
    spec = load_ignore_spec(root, ignore)
    paths: list[str] = []

    for dirpath, dirnames, filenames in os.walk(root):
        current = Path(dirpath)
        rel_dir = current.relative_to(root).as_posix()
        prefix = "" if rel_dir == "." else f"{rel_dir}/"

        kept = []
        for name in sorted(dirnames):
            if spec.match_file(f"{prefix}{name}/"):
                continue
            kept.append(name)
        dirnames[:] = kept

        if prefix:
            paths.append(f"/{prefix}")
            if len(paths) >= max_entries:
                break

        for name in sorted(filenames):
            rel = f"{prefix}{name}"
            if spec.match_file(rel):
                continue
            paths.append(f"/{rel}")
            if len(paths) >= max_entries:
                break
        if len(paths) >= max_entries:
            break

    return paths[:max_entries]
