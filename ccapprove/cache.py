"""Persistent decision cache for LLM-tier outcomes.

The whole store is one JSON document mapping cache key → entry. Every
mutation reads the full document, edits it in memory, and replaces the file
atomically. Concurrent writers can lose at most one update (last writer
wins), which only costs a redundant LLM call later.

A corrupt or unreadable document is treated as empty (fail-open on the
cache only): a bogus miss never produces a wrong security decision.
"""

import hashlib
import json
import logging
import math
import time
from pathlib import Path
from typing import Any, Callable, Optional, Protocol

from pydantic import ValidationError

from ccapprove.atomic import write_json_atomic
from ccapprove.errors import CacheCorruptError
from ccapprove.models import CacheEntry

logger = logging.getLogger(__name__)

DEFAULT_TTL_HOURS = 168  # 1 week


def canonical_json(value: Any) -> str:
    """Deterministic JSON: sorted keys, no whitespace.

    >>> canonical_json({"b": 1, "a": [1, {"d": 2, "c": 3}]})
    '{"a":[1,{"c":3,"d":2}],"b":1}'
    """
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)


def cache_key(tool_name: str, tool_input: dict[str, Any], project_root: Optional[str]) -> str:
    """SHA-256 over (tool name, canonical input, project root).

    >>> cache_key("Bash", {"command": "ls"}, "/a") == cache_key("Bash", {"command": "ls"}, "/a")
    True
    >>> cache_key("Bash", {"command": "ls"}, "/a") == cache_key("Bash", {"command": "ls"}, "/b")
    False
    >>> cache_key("Bash", {"command": "ls"}, None) == cache_key("Bash", {"command": "ls"}, "")
    False
    >>> len(cache_key("Bash", {"command": "echo \\ud800"}, None))
    64
    """
    material = canonical_json({
        "toolName": tool_name,
        "toolInput": tool_input,
        "projectRoot": project_root,
    })
    # Lone surrogates are valid in JSON strings but not in strict UTF-8
    return hashlib.sha256(material.encode("utf-8", "surrogatepass")).hexdigest()


# ---------------------------------------------------------------------------
# Storage backends
# ---------------------------------------------------------------------------


class CacheStorage(Protocol):
    def load(self) -> dict: ...

    def save(self, data: dict) -> None: ...


class JsonFileStorage:
    """Single JSON document on disk, replaced atomically on save."""

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> dict:
        if not self.path.exists():
            return {}
        text = self.path.read_text(encoding="utf-8")
        if not text.strip():
            return {}
        try:
            data = json.loads(text)
        except json.JSONDecodeError as exc:
            raise CacheCorruptError(f"cache document is not valid JSON: {exc}") from exc
        if not isinstance(data, dict):
            raise CacheCorruptError("cache document is not a JSON object")
        return data

    def save(self, data: dict) -> None:
        write_json_atomic(self.path, data)


class MemoryStorage:
    """Dict-backed storage. Copies on load/save so callers can't alias it.

    >>> s = MemoryStorage()
    >>> s.save({"k": {"decision": "allow"}})
    >>> s.load()
    {'k': {'decision': 'allow'}}
    """

    def __init__(self, data: Optional[dict] = None):
        self._data = json.loads(json.dumps(data or {}))
        self.loads = 0
        self.saves = 0

    def load(self) -> dict:
        self.loads += 1
        return json.loads(json.dumps(self._data))

    def save(self, data: dict) -> None:
        self.saves += 1
        self._data = json.loads(json.dumps(data))


# ---------------------------------------------------------------------------
# Decision cache
# ---------------------------------------------------------------------------


class DecisionCache:
    """TTL-bounded, project-scoped cache of allow/deny decisions.

    >>> cache = DecisionCache(MemoryStorage(), clock=lambda: 1000.0)
    >>> cache.get("Bash", {"command": "make"}, "/p") is None
    True
    >>> cache.set("Bash", {"command": "make"}, "allow", "build", "/p")
    >>> cache.get("Bash", {"command": "make"}, "/p").reason
    'build'
    """

    def __init__(
        self,
        storage: CacheStorage,
        ttl_hours: float = DEFAULT_TTL_HOURS,
        enabled: bool = True,
        clock: Callable[[], float] = time.time,
    ):
        self.storage = storage
        self.ttl_seconds = ttl_hours * 3600
        self.enabled = enabled
        self._clock = clock

    # --- document I/O ---

    def _load(self) -> dict:
        try:
            return self.storage.load()
        except (CacheCorruptError, OSError, UnicodeDecodeError) as exc:
            logger.warning("Ignoring unreadable cache: %s", exc)
            return {}

    def _save(self, data: dict) -> bool:
        try:
            self.storage.save(data)
            return True
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Failed to write cache: %s", exc)
            return False

    @staticmethod
    def _parse(raw: Any) -> Optional[CacheEntry]:
        if not isinstance(raw, dict):
            return None
        try:
            return CacheEntry.model_validate(raw)
        except ValidationError:
            return None

    def _is_fresh(self, entry: CacheEntry, now: float) -> bool:
        return now - entry.timestamp <= self.ttl_seconds

    # --- lookups ---

    def get(
        self,
        tool_name: str,
        tool_input: dict[str, Any],
        project_root: Optional[str],
    ) -> Optional[CacheEntry]:
        """Fresh entry for this request, or None on miss / stale / malformed."""
        if not self.enabled:
            return None
        key = cache_key(tool_name, tool_input, project_root)
        entry = self._parse(self._load().get(key))
        if entry is None or entry.key != key:
            return None
        if not self._is_fresh(entry, self._clock()):
            logger.debug("Cache entry %s expired", key[:12])
            return None
        return entry

    def set(
        self,
        tool_name: str,
        tool_input: dict[str, Any],
        decision: str,
        reason: str,
        project_root: Optional[str],
    ) -> None:
        """Store an allow/deny decision, overwriting any entry with the same key.

        Expired and malformed entries are evicted in the same write.
        """
        if decision not in ("allow", "deny"):
            raise ValueError(f"only allow/deny decisions are cached, got {decision!r}")
        if not self.enabled:
            return
        now = self._clock()
        data = {}
        for k, v in self._load().items():
            existing = self._parse(v)
            if existing is not None and self._is_fresh(existing, now):
                data[k] = v
        key = cache_key(tool_name, tool_input, project_root)
        entry = CacheEntry(
            key=key,
            decision=decision,
            reason=reason,
            timestamp=now,
            tool_name=tool_name,
            tool_input=tool_input,
            project_root=project_root,
        )
        data[key] = entry.to_document()
        self._save(data)

    def entries(self) -> list[CacheEntry]:
        return [e for e in map(self._parse, self._load().values()) if e is not None]

    def list(self, project_root: Optional[str] = None) -> list[CacheEntry]:
        """All entries newest first, optionally only those for one project."""
        found = self.entries()
        if project_root is not None:
            found = [e for e in found if e.project_root == project_root]
        return sorted(found, key=lambda e: e.timestamp, reverse=True)

    def stats(self) -> dict:
        found = self.entries()
        stamps = [e.timestamp for e in found]
        return {
            "entries": len(found),
            "oldest_timestamp": min(stamps) if stamps else None,
            "newest_timestamp": max(stamps) if stamps else None,
        }

    # --- invalidation ---

    def _remove_where(self, predicate: Callable[[str, Any], bool]) -> int:
        data = self._load()
        kept = {k: v for k, v in data.items() if not predicate(k, v)}
        removed = len(data) - len(kept)
        if removed:
            self._save(kept)
        return removed

    def clear_all(self) -> int:
        """Remove every entry. Returns the number removed.

        Always rewrites the document, so it also resets a corrupt file.
        """
        data = self._load()
        self._save({})
        return len(data)

    def clear_by_decision(self, decision: str) -> int:
        return self._remove_where(
            lambda _k, v: isinstance(v, dict) and v.get("decision") == decision
        )

    def clear_by_key(self, key: str) -> bool:
        return self._remove_where(lambda k, _v: k == key) > 0

    def clear_by_grep(self, needle: str) -> int:
        """Remove entries whose tool name, reason, or input contains ``needle``."""
        lowered = needle.lower()

        def matches(_k, v) -> bool:
            if not isinstance(v, dict):
                return False
            haystack = " ".join([
                str(v.get("toolName", "")),
                str(v.get("reason", "")),
                canonical_json(v.get("toolInput", {})),
            ])
            return lowered in haystack.lower()

        return self._remove_where(matches)

    def prune(self) -> int:
        """Drop expired and malformed entries."""
        now = self._clock()

        def stale(_k, v) -> bool:
            entry = self._parse(v)
            return entry is None or not self._is_fresh(entry, now)

        return self._remove_where(stale)


def paginate(entries: list, page: int = 1, per_page: int = 20) -> tuple[list, int]:
    """Slice one page out of ``entries``. Returns (page_entries, total_pages).

    >>> paginate(list(range(45)), page=3, per_page=20)
    ([40, 41, 42, 43, 44], 3)
    >>> paginate([], page=1)
    ([], 0)
    """
    page = max(1, page)
    per_page = max(1, per_page)
    total_pages = math.ceil(len(entries) / per_page)
    start = (page - 1) * per_page
    return entries[start:start + per_page], total_pages
