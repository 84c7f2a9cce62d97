"""Hook I/O boundary.

The host pipes one JSON request to stdin and reads at most one JSON
response from stdout. Passthrough is signalled by writing nothing. Anything
that goes wrong on the way in or inside resolution becomes a deny with exit
code 1, never a silent allow.
"""

import json
import logging
import sys
from typing import Callable, Optional, TextIO

from pydantic import ValidationError

from ccapprove.errors import InvalidRequestError
from ccapprove.models import ToolRequest

logger = logging.getLogger(__name__)

PERMISSION_REQUEST = "PermissionRequest"
PRE_TOOL_USE = "PreToolUse"

HookResult = tuple[Optional[dict], int]


def parse_request(raw: str) -> ToolRequest:
    """Validate raw stdin into a ToolRequest or raise InvalidRequestError.

    >>> parse_request('{"tool_name": "Bash", "tool_input": {"command": "ls"}}').tool_name
    'Bash'
    >>> parse_request('[1, 2]')
    Traceback (most recent call last):
    ...
    ccapprove.errors.InvalidRequestError: Invalid hook input: expected a JSON object
    """
    try:
        data = json.loads(raw)
    except (json.JSONDecodeError, TypeError) as exc:
        raise InvalidRequestError("Invalid hook input: not valid JSON") from exc
    if not isinstance(data, dict):
        raise InvalidRequestError("Invalid hook input: expected a JSON object")
    try:
        return ToolRequest.model_validate(data)
    except ValidationError as exc:
        problems = ", ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'request'}: {err['msg']}"
            for err in exc.errors()
        )
        raise InvalidRequestError(f"Invalid hook input: {problems}") from exc


def permission_request_payload(decision: str, reason: str) -> dict:
    """
    >>> permission_request_payload("allow", "ok")
    {'hookSpecificOutput': {'hookEventName': 'PermissionRequest', 'decision': {'behavior': 'allow'}}}
    """
    body = {"behavior": decision}
    if decision == "deny":
        body["message"] = reason
    return {"hookSpecificOutput": {"hookEventName": PERMISSION_REQUEST, "decision": body}}


def pre_tool_use_payload(decision: str, reason: str) -> dict:
    return {
        "hookSpecificOutput": {
            "hookEventName": PRE_TOOL_USE,
            "permissionDecision": decision,
            "permissionDecisionReason": reason,
        }
    }


def _handle(raw: str, resolver_factory: Callable, render: Callable[[str, str], dict]) -> HookResult:
    try:
        request = parse_request(raw)
    except InvalidRequestError as exc:
        logger.warning("%s", exc)
        return render("deny", str(exc)), 1

    try:
        result = resolver_factory().resolve(request)
    except Exception as exc:
        logger.exception("Hook fault while resolving %s", request.tool_name)
        return render("deny", f"Hook error: {type(exc).__name__}"), 1

    if result.decision == "passthrough":
        return None, 0
    return render(result.decision, result.reason), 0


def handle_permission_request(raw: str, resolver_factory: Callable) -> HookResult:
    """Resolve a PermissionRequest event. Returns (payload or None, exit code)."""
    return _handle(raw, resolver_factory, permission_request_payload)


def handle_pre_tool_use(raw: str, resolver_factory: Callable) -> HookResult:
    """Resolve a PreToolUse event; used where PermissionRequest never fires."""
    return _handle(raw, resolver_factory, pre_tool_use_payload)


HANDLERS = {
    PERMISSION_REQUEST: (handle_permission_request, permission_request_payload),
    PRE_TOOL_USE: (handle_pre_tool_use, pre_tool_use_payload),
}


def run_hook(
    event: str,
    resolver_factory: Optional[Callable] = None,
    stdin: Optional[TextIO] = None,
    stdout: Optional[TextIO] = None,
) -> int:
    """Read stdin, resolve, write the response. Returns the process exit code."""
    handler, render = HANDLERS[event]
    stdin = stdin or sys.stdin
    stdout = stdout or sys.stdout
    if resolver_factory is None:
        from ccapprove.resolver import build_resolver
        resolver_factory = build_resolver

    try:
        raw = stdin.read()
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Could not read hook input: %s", exc)
        payload, code = render("deny", "Invalid hook input: unreadable stdin"), 1
    else:
        payload, code = handler(raw, resolver_factory)

    if payload is not None:
        stdout.write(json.dumps(payload) + "\n")
        stdout.flush()
    return code
