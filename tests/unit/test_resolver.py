"""Unit tests for the decision resolver: tier ordering, caching, audit, policy."""

from unittest.mock import MagicMock

import pytest

from ccapprove.audit import NullAuditLog
from ccapprove.cache import DecisionCache, JsonFileStorage, MemoryStorage
from ccapprove.config import ConfigStore, Paths
from ccapprove.models import Config, LLMDecision, ToolRequest
from ccapprove.policy import PolicyState
from ccapprove.resolver import CACHE_MISS, CacheOutcome, DecisionResolver, build_resolver


def request(command=None, tool="Bash", cwd="/work/repo/src", **tool_input):
    if command is not None:
        tool_input["command"] = command
    return ToolRequest(tool_name=tool, tool_input=tool_input, cwd=cwd, session_id="sess-1")


class TestFastTier:
    """Definitive fast-tier verdicts never touch the cache or the LLM."""

    def test_builtin_deny(self, make_resolver, arbiter, storage):
        result = make_resolver().resolve(request("rm -rf /"))
        assert result.decision == "deny"
        assert result.source == "fast"
        arbiter.arbitrate.assert_not_called()
        assert storage.loads == 0
        assert storage.saves == 0

    def test_read_only_tool(self, make_resolver, arbiter):
        result = make_resolver().resolve(request(tool="Read", file_path="src/app.py"))
        assert (result.decision, result.source) == ("allow", "fast")
        arbiter.arbitrate.assert_not_called()

    def test_passthrough_is_not_cached(self, make_resolver, arbiter, storage):
        config = Config.model_validate({"customPassthroughPatterns": [r"^git commit\b"]})
        result = make_resolver(config).resolve(request("git commit -m wip"))
        assert result.decision == "passthrough"
        assert result.source == "fast"
        assert storage.saves == 0
        arbiter.arbitrate.assert_not_called()

    def test_custom_allow_from_config(self, make_resolver, arbiter):
        config = Config.model_validate({"customAllowPatterns": [r"^npm (test|ci)\b"]})
        result = make_resolver(config).resolve(request("npm test"))
        assert (result.decision, result.source) == ("allow", "fast")

    def test_project_root_not_resolved_for_fast_verdicts(self, make_resolver):
        resolver_fn = MagicMock(return_value="/work/repo")
        make_resolver(project_resolver=resolver_fn).resolve(request("rm -rf ~"))
        resolver_fn.assert_not_called()


class TestLLMTier:
    """Unknown requests go to the cache, then the arbiter."""

    def test_feature_branch_push_goes_to_llm_and_is_cached(self, make_resolver, arbiter, cache):
        arbiter.arbitrate.return_value = LLMDecision(decision="allow", reason="pushing a feature branch")
        resolver = make_resolver()

        result = resolver.resolve(request("git push origin feature/foo"))

        assert result.decision == "allow"
        assert result.source == "llm"
        assert result.reason == "pushing a feature branch"
        args = arbiter.arbitrate.call_args.args
        assert args[0] == "Bash"
        assert args[1] == {"command": "git push origin feature/foo"}
        assert args[2] == "/work/repo"
        entry = cache.get("Bash", {"command": "git push origin feature/foo"}, "/work/repo")
        assert entry.decision == "allow"
        assert len(cache.entries()) == 1

    def test_repeat_request_hits_cache(self, make_resolver, arbiter):
        resolver = make_resolver()
        first = resolver.resolve(request("npm install"))
        second = resolver.resolve(request("npm install"))

        assert first.source == "llm"
        assert second.source == "cache"
        assert second.decision == first.decision
        assert second.reason == first.reason
        assert arbiter.arbitrate.call_count == 1

    def test_cache_hit_does_not_rewrite(self, make_resolver, storage):
        resolver = make_resolver()
        resolver.resolve(request("npm install"))
        saves = storage.saves
        resolver.resolve(request("npm install"))
        assert storage.saves == saves

    def test_cache_scoped_by_project(self, cache, arbiter, audit):
        roots = iter(["/project-a", "/project-b"])
        resolver = DecisionResolver(Config(), cache, arbiter, audit=audit,
                                    policy_state=PolicyState(checked=True),
                                    project_resolver=lambda cwd: next(roots))
        resolver.resolve(request("make deploy"))
        second = resolver.resolve(request("make deploy"))
        assert second.source == "llm"
        assert arbiter.arbitrate.call_count == 2

    def test_llm_deny_is_cached(self, make_resolver, arbiter):
        arbiter.arbitrate.return_value = LLMDecision(decision="deny", reason="uploads secrets")
        resolver = make_resolver()
        resolver.resolve(request("./upload.sh"))
        again = resolver.resolve(request("./upload.sh"))
        assert (again.decision, again.source) == ("deny", "cache")

    def test_expired_entry_requeries(self, make_resolver, arbiter, clock):
        resolver = make_resolver()
        resolver.resolve(request("npm install"))
        clock.advance(169 * 3600)
        assert resolver.resolve(request("npm install")).source == "llm"
        assert arbiter.arbitrate.call_count == 2

    def test_cache_disabled_always_asks(self, arbiter, audit, clock):
        cache = DecisionCache(MemoryStorage(), enabled=False, clock=clock)
        resolver = DecisionResolver(Config(), cache, arbiter, audit=audit,
                                    policy_state=PolicyState(checked=True),
                                    project_resolver=lambda cwd: None)
        resolver.resolve(request("npm install"))
        resolver.resolve(request("npm install"))
        assert arbiter.arbitrate.call_count == 2

    def test_corrupt_cache_falls_through_to_llm(self, tmp_path, arbiter, audit):
        path = tmp_path / "cache.json"
        path.write_text("{{{ definitely not json")
        cache = DecisionCache(JsonFileStorage(path))
        resolver = DecisionResolver(Config(), cache, arbiter, audit=audit,
                                    policy_state=PolicyState(checked=True),
                                    project_resolver=lambda cwd: "/p")
        result = resolver.resolve(request("npm install"))
        assert result.source == "llm"

    def test_system_prompt_passed_to_arbiter(self, make_resolver, arbiter):
        config = Config.model_validate({"llm": {"systemPrompt": "custom policy"}})
        make_resolver(config).resolve(request("npm install"))
        assert arbiter.arbitrate.call_args.args[3] == "custom policy"


class TestUnusualInput:
    """Valid JSON that strict UTF-8 writers reject still gets a real decision."""

    def test_read_with_lone_surrogate_is_allowed(self, make_resolver, audit):
        result = make_resolver().resolve(request(tool="Read", file_path="a\ud800b"))
        assert (result.decision, result.source) == ("allow", "fast")
        assert audit.list()["rows"][0]["summary"] == "a?b"

    def test_bash_with_lone_surrogate_reaches_llm(self, make_resolver, arbiter):
        result = make_resolver().resolve(request("echo \ud800"))
        assert result.source == "llm"
        assert arbiter.arbitrate.call_args.args[1] == {"command": "echo \ud800"}


class TestCacheOutcome:
    def test_variants(self):
        assert CACHE_MISS.hit is False
        assert CacheOutcome(MagicMock()).hit is True


class TestAudit:
    """Exactly one audit record per terminal decision."""

    @pytest.mark.parametrize("command,source", [
        ("rm -rf /", "fast"),
        ("npm install", "llm"),
    ])
    def test_one_record_per_resolution(self, make_resolver, audit, command, source):
        make_resolver().resolve(request(command))
        rows = audit.list()["rows"]
        assert len(rows) == 1
        assert rows[0]["source"] == source
        assert rows[0]["session_id"] == "sess-1"
        assert rows[0]["summary"] == f"$ {command}"

    def test_cache_hit_recorded(self, make_resolver, audit):
        resolver = make_resolver()
        resolver.resolve(request("npm install"))
        resolver.resolve(request("npm install"))
        assert [r["source"] for r in audit.list()["rows"]] == ["cache", "llm"]

    def test_project_root_recorded_for_llm(self, make_resolver, audit):
        make_resolver().resolve(request("npm install"))
        assert audit.list()["rows"][0]["project_root"] == "/work/repo"

    def test_null_audit_default(self, cache, arbiter):
        resolver = DecisionResolver(Config(), cache, arbiter, project_resolver=lambda cwd: None)
        assert isinstance(resolver.audit, NullAuditLog)
        assert resolver.resolve(request("npm install")).decision == "allow"


class TestPolicyIntegration:
    def test_stale_policy_flushes_cache_before_lookup(self, tmp_path, arbiter, audit, clock):
        store = ConfigStore(tmp_path / "config.json")
        config = Config.model_validate({"llm": {"systemPrompt": "old", "systemPromptVersion": 0}})
        store.save(config)
        storage = MemoryStorage()
        cache = DecisionCache(storage, clock=clock)
        cache.set("Bash", {"command": "make"}, "allow", "unrelated", "/p")
        cache.set("Bash", {"command": "npm install"}, "deny", "old policy said no", "/p")

        resolver = DecisionResolver(config, cache, arbiter, audit=audit,
                                    policy_state=PolicyState(), config_store=store,
                                    project_resolver=lambda cwd: "/p")
        result = resolver.resolve(request("npm install"))

        assert result.source == "llm"
        assert result.decision == "allow"
        assert arbiter.arbitrate.call_args.args[3] != "old"
        assert store.load().llm.system_prompt_version > 0
        assert [e.tool_input for e in cache.entries()] == [{"command": "npm install"}]

    def test_guard_runs_once(self, tmp_path, arbiter, audit, cache):
        store = MagicMock(spec=ConfigStore)
        state = PolicyState()
        resolver = DecisionResolver(Config(), cache, arbiter, audit=audit, policy_state=state,
                                    config_store=store, project_resolver=lambda cwd: None)
        resolver.resolve(request("npm install"))
        resolver.resolve(request("npm test"))
        assert state.checked is True
        assert store.save.call_count <= 1


class TestBuildResolver:
    def test_wires_from_disk(self, paths):
        ConfigStore(paths.config_file).save(
            Config.model_validate({"cache": {"ttlHours": 2, "enabled": False}})
        )
        resolver = build_resolver(paths)
        assert resolver.cache.enabled is False
        assert resolver.cache.ttl_seconds == 2 * 3600
        assert resolver.config_store.path == paths.config_file

    def test_defaults_without_config(self, paths):
        resolver = build_resolver(paths)
        assert resolver.config.llm.provider == "openrouter"
        assert resolver.policy_state.checked is False

    def test_default_paths_from_env(self, paths):
        assert Paths.default() == paths
