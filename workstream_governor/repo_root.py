from __future__ import annotations

import os
from pathlib import Path
from typing import Mapping

from .errors import RepoRootError

REPO_ROOT_ENV = "REPO_ROOT"
ANCHOR_FILES = ("pyproject.toml", "governance.config.json")
MAX_DEPTH = 20


def is_valid_repo_root(path: Path, anchors: tuple[str, ...] = ANCHOR_FILES) -> bool:
    return all((path / anchor).is_file() for anchor in anchors)


def _walk_up(start: Path, anchors: tuple[str, ...], max_depth: int) -> Path | None:
    current = start
    for _ in range(max_depth):
        if is_valid_repo_root(current, anchors):
            return current
        if current.parent == current:
            return None
        current = current.parent
    return None


def resolve_repo_root(
    *,
    env: Mapping[str, str] | None = None,
    start: Path | None = None,
    anchors: tuple[str, ...] = ANCHOR_FILES,
    max_depth: int = MAX_DEPTH,
) -> Path:
    """Locate the repository root.

    ``REPO_ROOT`` wins when set and must point at a directory holding every anchor
    file. Otherwise parents of ``start`` (default: cwd) are walked, at most
    ``max_depth`` levels.
    """
    environ = os.environ if env is None else env
    override = environ.get(REPO_ROOT_ENV)
    if override:
        candidate = Path(override).resolve()
        if candidate.is_dir() and is_valid_repo_root(candidate, anchors):
            return candidate
        raise RepoRootError(
            f"E_REPO_ROOT_INVALID: REPO_ROOT environment variable set to invalid path: {override}"
        )

    found = _walk_up((start or Path.cwd()).resolve(), anchors, max_depth)
    if found is not None:
        return found

    raise RepoRootError(
        "E_REPO_ROOT_NOT_FOUND: Repository root not found. Expected to find "
        + " and ".join(anchors)
        + ". Set REPO_ROOT environment variable or run from repository root."
    )
