"""Atomic JSON document writes shared by the config and cache stores.

Readers never observe a partially written document: data goes to a temp
file in the target directory, then os.replace() swaps it in.
"""

import json
import os
import sys
import tempfile
import time
from pathlib import Path


def _safe_replace(src: str, dst: str, *, retries: int = 3, delay: float = 0.1):
    """os.replace() with retry for Windows PermissionError.

    On Windows, os.replace() can fail if the target file is held open
    by another process.  Retries with exponential backoff.
    On macOS/Linux, this is equivalent to a single os.replace() call.
    """
    for attempt in range(retries):
        try:
            os.replace(src, dst)
            return
        except PermissionError:
            if sys.platform != "win32" or attempt == retries - 1:
                raise
            time.sleep(delay * (2 ** attempt))


def write_json_atomic(path: Path, data: dict, *, private: bool = True) -> None:
    """Serialize ``data`` to ``path`` via temp file + replace. Raises on failure.

    >>> import tempfile
    >>> target = Path(tempfile.mkdtemp()) / "doc.json"
    >>> write_json_atomic(target, {"a": 1})
    >>> json.loads(target.read_text())
    {'a': 1}
    """
    if path.is_symlink():
        raise OSError(f"Refusing to write through symlink: {path}")
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.stem}_tmp_", suffix=".json")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, ensure_ascii=False)
        if private:
            try:
                os.chmod(tmp, 0o600)
            except OSError:
                pass
        _safe_replace(tmp, str(path))
    except Exception:
        try:
            os.unlink(tmp)
        except OSError:
            pass
        raise
