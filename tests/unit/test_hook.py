"""Unit tests for the hook I/O boundary."""

import io
import json

import pytest

from ccapprove.errors import InvalidRequestError
from ccapprove.hook import (
    PERMISSION_REQUEST,
    PRE_TOOL_USE,
    handle_permission_request,
    handle_pre_tool_use,
    parse_request,
    run_hook,
)
from ccapprove.models import DecisionResult


class StubResolver:
    def __init__(self, result=None, error=None):
        self.result = result
        self.error = error
        self.requests = []

    def resolve(self, request):
        self.requests.append(request)
        if self.error:
            raise self.error
        return self.result


def factory(decision="allow", reason="fine", source="llm", error=None):
    stub = StubResolver(DecisionResult(decision=decision, reason=reason, source=source), error)
    return lambda: stub


RAW = json.dumps({"tool_name": "Bash", "tool_input": {"command": "npm test"}, "cwd": "/repo",
                  "session_id": "abc", "hook_event_name": "PermissionRequest", "extra": 1})


class TestParseRequest:
    def test_valid(self):
        req = parse_request(RAW)
        assert req.tool_name == "Bash"
        assert req.tool_input == {"command": "npm test"}
        assert req.cwd == "/repo"

    def test_tool_input_key_order_preserved(self):
        req = parse_request('{"tool_name": "Edit", "tool_input": {"z": 1, "a": 2}}')
        assert list(req.tool_input) == ["z", "a"]

    @pytest.mark.parametrize("raw", [
        "",
        "not json",
        "[]",
        '"Bash"',
        "{}",
        '{"tool_name": ""}',
        '{"tool_name": 42, "tool_input": {}}',
        '{"tool_name": "Bash", "tool_input": "rm -rf /"}',
        '{"tool_name": "Bash", "tool_input": ["rm"]}',
    ])
    def test_invalid(self, raw):
        with pytest.raises(InvalidRequestError) as exc:
            parse_request(raw)
        assert str(exc.value).startswith("Invalid hook input")


class TestPermissionRequest:
    """PermissionRequest output contract."""

    def test_allow(self):
        payload, code = handle_permission_request(RAW, factory("allow"))
        assert code == 0
        assert payload == {"hookSpecificOutput": {
            "hookEventName": "PermissionRequest",
            "decision": {"behavior": "allow"},
        }}

    def test_deny_carries_message(self):
        payload, code = handle_permission_request(RAW, factory("deny", "Blocked by security pattern: fork bomb"))
        assert code == 0
        assert payload["hookSpecificOutput"]["decision"] == {
            "behavior": "deny", "message": "Blocked by security pattern: fork bomb",
        }

    def test_passthrough_is_silent(self):
        payload, code = handle_permission_request(RAW, factory("passthrough", "ask", "fast"))
        assert payload is None
        assert code == 0

    def test_malformed_input_denies_with_exit_1(self):
        payload, code = handle_permission_request("{oops", factory("allow"))
        assert code == 1
        decision = payload["hookSpecificOutput"]["decision"]
        assert decision["behavior"] == "deny"
        assert "not valid JSON" in decision["message"]

    def test_malformed_input_never_reaches_resolver(self):
        make = factory("allow")
        handle_permission_request('{"tool_input": {}}', make)
        assert make().requests == []

    def test_internal_fault_denies_with_exit_1(self):
        payload, code = handle_permission_request(RAW, factory(error=KeyError("boom")))
        assert code == 1
        assert payload["hookSpecificOutput"]["decision"] == {
            "behavior": "deny", "message": "Hook error: KeyError",
        }

    def test_factory_fault_denies(self):
        def broken():
            raise OSError("disk gone")

        payload, code = handle_permission_request(RAW, broken)
        assert code == 1
        assert payload["hookSpecificOutput"]["decision"]["behavior"] == "deny"


class TestPreToolUse:
    """PreToolUse output contract."""

    def test_allow(self):
        payload, code = handle_pre_tool_use(RAW, factory("allow", "tests"))
        assert code == 0
        assert payload == {"hookSpecificOutput": {
            "hookEventName": "PreToolUse",
            "permissionDecision": "allow",
            "permissionDecisionReason": "tests",
        }}

    def test_deny(self):
        payload, _ = handle_pre_tool_use(RAW, factory("deny", "nope"))
        assert payload["hookSpecificOutput"]["permissionDecision"] == "deny"

    def test_passthrough(self):
        assert handle_pre_tool_use(RAW, factory("passthrough", "ask", "fast")) == (None, 0)

    def test_malformed(self):
        payload, code = handle_pre_tool_use("[]", factory())
        assert code == 1
        assert payload["hookSpecificOutput"]["permissionDecision"] == "deny"


class TestRunHook:
    """stdin/stdout plumbing."""

    def test_writes_single_json_line(self):
        out = io.StringIO()
        code = run_hook(PERMISSION_REQUEST, factory("deny", "no"), stdin=io.StringIO(RAW), stdout=out)
        assert code == 0
        lines = out.getvalue().splitlines()
        assert len(lines) == 1
        assert json.loads(lines[0])["hookSpecificOutput"]["decision"]["behavior"] == "deny"

    def test_passthrough_writes_nothing(self):
        out = io.StringIO()
        code = run_hook(PRE_TOOL_USE, factory("passthrough", "ask", "fast"),
                        stdin=io.StringIO(RAW), stdout=out)
        assert code == 0
        assert out.getvalue() == ""

    def test_unreadable_stdin(self):
        class Broken(io.StringIO):
            def read(self, *args):
                raise OSError("closed")

        out = io.StringIO()
        code = run_hook(PERMISSION_REQUEST, factory(), stdin=Broken(), stdout=out)
        assert code == 1
        assert json.loads(out.getvalue())["hookSpecificOutput"]["decision"]["behavior"] == "deny"

    def test_end_to_end_with_real_resolver(self, paths):
        """Built-in deny needs no config, cache, or network."""
        out = io.StringIO()
        raw = json.dumps({"tool_name": "Bash", "tool_input": {"command": "rm -rf /"}})
        code = run_hook(PERMISSION_REQUEST, stdin=io.StringIO(raw), stdout=out)
        assert code == 0
        decision = json.loads(out.getvalue())["hookSpecificOutput"]["decision"]
        assert decision["behavior"] == "deny"
        assert "Blocked by security pattern" in decision["message"]

    def test_broken_config_survives_hook_run(self, paths):
        """A config that fails validation is read as defaults, never rewritten."""
        broken = ('{"llm": {"apiKey": "sk-user-key", "provider": "openai", "systemPromptVersion": 1},'
                  ' "cache": {"ttlHours": "one week"}}')
        paths.home.mkdir(parents=True)
        paths.config_file.write_text(broken)
        out = io.StringIO()
        raw = json.dumps({"tool_name": "Read", "tool_input": {"file_path": "README.md"}})

        assert run_hook(PERMISSION_REQUEST, stdin=io.StringIO(raw), stdout=out) == 0
        assert json.loads(out.getvalue())["hookSpecificOutput"]["decision"] == {"behavior": "allow"}
        assert paths.config_file.read_text() == broken

    def test_lone_surrogate_read_is_allowed(self, paths):
        out = io.StringIO()
        raw = '{"tool_name": "Read", "tool_input": {"file_path": "a\\ud800b"}}'
        assert run_hook(PERMISSION_REQUEST, stdin=io.StringIO(raw), stdout=out) == 0
        assert json.loads(out.getvalue())["hookSpecificOutput"]["decision"] == {"behavior": "allow"}
