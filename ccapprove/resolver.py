"""Decision resolution: fast rules → cache → LLM arbiter.

The cheapest tier that produces a definitive answer wins. Fast-tier verdicts
are never cached; only allow/deny from the arbiter are. Every terminal
decision writes exactly one audit record.
"""

import logging
import sqlite3
import time
from typing import Callable, NamedTuple, Optional

from ccapprove.audit import AuditLog, NullAuditLog, setup_logging, summarize_input
from ccapprove.cache import DecisionCache, JsonFileStorage
from ccapprove.config import ConfigStore, Paths
from ccapprove.fast_rules import FastVerdict, classify, compile_custom_patterns
from ccapprove.llm_client import LLMArbiter
from ccapprove.models import CacheEntry, Config, DecisionResult, ToolRequest
from ccapprove.policy import PolicyState, ensure_current
from ccapprove.project import resolve_project_root

logger = logging.getLogger(__name__)


class CacheOutcome(NamedTuple):
    """Result of a cache lookup: a hit carries the entry, a miss carries None."""

    entry: Optional[CacheEntry] = None

    @property
    def hit(self) -> bool:
        return self.entry is not None


CACHE_MISS = CacheOutcome()


class DecisionResolver:
    """Runs one request through the tiers and records the outcome."""

    def __init__(
        self,
        config: Config,
        cache: DecisionCache,
        arbiter: LLMArbiter,
        audit=None,
        policy_state: Optional[PolicyState] = None,
        config_store: Optional[ConfigStore] = None,
        project_resolver: Callable[[Optional[str]], Optional[str]] = resolve_project_root,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.cache = cache
        self.arbiter = arbiter
        self.audit = audit or NullAuditLog()
        self.policy_state = policy_state or PolicyState()
        self.config_store = config_store
        self._project_resolver = project_resolver
        self._clock = clock
        self.custom_patterns = compile_custom_patterns(
            allow=config.custom_allow_patterns,
            deny=config.custom_deny_patterns,
            passthrough=config.custom_passthrough_patterns,
        )

    def _ensure_policy(self) -> None:
        if self.config_store is None:
            self.policy_state.checked = True
            return
        ensure_current(self.policy_state, self.config_store, self.cache, config=self.config)

    def _lookup(self, request: ToolRequest, project_root: Optional[str]) -> CacheOutcome:
        entry = self.cache.get(request.tool_name, request.tool_input, project_root)
        return CacheOutcome(entry) if entry is not None else CACHE_MISS

    def resolve(self, request: ToolRequest) -> DecisionResult:
        start = self._clock()
        self._ensure_policy()

        fast = classify(request.tool_name, request.tool_input, self.custom_patterns)
        if fast.verdict is not FastVerdict.UNKNOWN:
            result = DecisionResult(decision=fast.verdict.value, reason=fast.reason, source="fast")
            return self._finish(request, result, None, start)

        project_root = self._project_resolver(request.cwd)
        outcome = self._lookup(request, project_root)
        if outcome.hit:
            result = DecisionResult(
                decision=outcome.entry.decision, reason=outcome.entry.reason, source="cache"
            )
            return self._finish(request, result, project_root, start)

        verdict = self.arbiter.arbitrate(
            request.tool_name,
            request.tool_input,
            project_root,
            self.config.llm.system_prompt,
        )
        self.cache.set(
            request.tool_name, request.tool_input, verdict.decision, verdict.reason, project_root
        )
        result = DecisionResult(decision=verdict.decision, reason=verdict.reason, source="llm")
        return self._finish(request, result, project_root, start)

    def _finish(
        self,
        request: ToolRequest,
        result: DecisionResult,
        project_root: Optional[str],
        start: float,
    ) -> DecisionResult:
        elapsed_ms = (self._clock() - start) * 1000
        logger.info(
            "%s %s via %s (%.1fms): %s",
            result.decision.upper(), request.tool_name, result.source, elapsed_ms, result.reason,
        )
        self.audit.record(
            request.tool_name,
            result.decision,
            result.reason,
            result.source,
            session_id=request.session_id,
            project_root=project_root,
            elapsed_ms=round(elapsed_ms, 2),
            summary=summarize_input(request.tool_input),
        )
        return result


def open_audit_log(config: Config, paths: Paths):
    """The audit sink for this config; NullAuditLog if disabled or unavailable."""
    if not config.logging.enabled:
        return NullAuditLog()
    try:
        return AuditLog(paths.audit_db)
    except (OSError, sqlite3.Error) as exc:
        logger.warning("Audit log unavailable at %s: %s", paths.audit_db, exc)
        return NullAuditLog()


def build_resolver(paths: Optional[Paths] = None) -> DecisionResolver:
    """Wire the production collaborators from the on-disk config."""
    paths = paths or Paths.default()
    store = ConfigStore(paths.config_file)
    config = store.load()
    setup_logging(config, paths)
    cache = DecisionCache(
        JsonFileStorage(paths.cache_file),
        ttl_hours=config.cache.ttl_hours,
        enabled=config.cache.enabled,
    )
    return DecisionResolver(
        config,
        cache,
        LLMArbiter.from_config(config),
        audit=open_audit_log(config, paths),
        policy_state=PolicyState(),
        config_store=store,
    )
