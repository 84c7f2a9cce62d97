"""Project root resolution used to scope cached decisions."""

from functools import lru_cache
from pathlib import Path
from typing import Optional

# A .git directory, or a .git file for worktrees and submodules
PROJECT_MARKER = ".git"


@lru_cache(maxsize=256)
def _walk_for_marker(start: str) -> Optional[str]:
    current = Path(start)
    for candidate in (current, *current.parents):
        if (candidate / PROJECT_MARKER).exists():
            return str(candidate)
    return None


def resolve_project_root(cwd: Optional[str]) -> Optional[str]:
    """Nearest ancestor of ``cwd`` (inclusive) that contains a ``.git`` entry.

    Returns None when no ancestor has one, or when no cwd was given.
    Memoized per process, so repeated lookups for one cwd never re-walk.

    >>> import os, tempfile
    >>> root = tempfile.mkdtemp()
    >>> os.makedirs(os.path.join(root, ".git"))
    >>> os.makedirs(os.path.join(root, "pkg", "src"))
    >>> resolve_project_root(os.path.join(root, "pkg", "src")) == str(Path(root).resolve())
    True
    >>> resolve_project_root(None) is None
    True
    """
    if not cwd:
        return None
    try:
        start = Path(cwd).expanduser().resolve()
    except (OSError, RuntimeError, ValueError):
        return None
    return _walk_for_marker(str(start))


def clear_project_root_cache() -> None:
    _walk_for_marker.cache_clear()
