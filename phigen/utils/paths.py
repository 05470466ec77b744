# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Path helpers.

Artifact paths in a config are relative to the project root, so the same
config works from any working directory. Absolute paths pass through
unchanged.
"""

from pathlib import Path

_ROOT_MARKERS = ("pyproject.toml", ".git")


def resolve_project_root(start: Path | None = None) -> Path:
    """
    Walk up from `start` (default: the working directory) to the first
    directory holding a pyproject.toml or .git. If there is none, `start`
    itself is the root.
    """
    origin = (start or Path.cwd()).resolve()
    if origin.is_file():
        origin = origin.parent

    current = origin
    while current != current.parent:
        if any((current / marker).exists() for marker in _ROOT_MARKERS):
            return current
        current = current.parent
    return origin


def resolve_artifact_path(project_root: Path, configured: str) -> Path:
    """Join a configured path onto the project root unless it's already absolute."""
    path = Path(configured).expanduser()
    if path.is_absolute():
        return path
    return project_root / path
