"""Fast rule tier: static pattern classification of tool requests.

Pure and stateless. No file or network I/O; every built-in regex is compiled
at import time, custom patterns are compiled once per distinct pattern list.

Precedence is explicit and deny-first:
  1. deny       : custom deny patterns, then built-in destructive patterns
  2. passthrough: custom passthrough patterns
  3. allow      : custom allow patterns, then the read-only tool set
  4. unknown    : everything else, deferred to the cache and LLM tiers

>>> classify("Read", {"file_path": "src/app.py"}).verdict.value
'allow'
>>> classify("Bash", {"command": "rm -rf /"}).verdict.value
'deny'
>>> classify("Bash", {"command": "npm test"}).verdict.value
'unknown'
"""

import json
import logging
import re
from enum import Enum
from functools import lru_cache
from typing import Any, NamedTuple, Optional, Sequence

logger = logging.getLogger(__name__)

# Tools whose input carries a shell command in the "command" field
SHELL_TOOLS = {"Bash"}

# Read-only and interaction tools, allowed regardless of input
ALWAYS_ALLOW_TOOLS = {
    "Read", "Glob", "Grep", "LS", "NotebookRead",
    "TodoRead", "TodoWrite", "Task", "TaskOutput", "BashOutput",
    "WebSearch", "AskUserQuestion", "ExitPlanMode", "EnterPlanMode",
    "ListMcpResourcesTool", "ReadMcpResourceTool",
}


class FastVerdict(str, Enum):
    ALLOW = "allow"
    DENY = "deny"
    PASSTHROUGH = "passthrough"
    UNKNOWN = "unknown"


class FastResult(NamedTuple):
    verdict: FastVerdict
    reason: str = ""


# --- Command normalization ---

# Strip leading env var assignments: HOME=/x PATH="/y:$PATH" cmd → cmd
ENV_ASSIGN_RE = re.compile(r"""^(?:\w+=(?:"[^"]*"|'[^']*'|\S+)\s+)+""")
WHITESPACE_RE = re.compile(r"\s+")


def normalize_command(command: str) -> str:
    """Collapse whitespace and strip leading env assignments.

    >>> normalize_command("  FOO=1 BAR='a b'   git   status ")
    'git status'
    """
    collapsed = WHITESPACE_RE.sub(" ", command).strip()
    return ENV_ASSIGN_RE.sub("", collapsed).strip()


# --- Recursive delete of root / home / system paths ---

_RM_RE = re.compile(r"\brm\s+([^;&|`\n)]*)")
_RM_RECURSIVE_FLAG_RE = re.compile(r"^(?:-[a-zA-Z]*[rR][a-zA-Z]*|--recursive)$")

# Deleting these, or their contents, is always destructive
_ROOT_LEVEL_TARGETS = {
    "/", "~", "$HOME", "${HOME}", "/home", "/Users", "/root",
    "/var", "/opt", "/dev", "/proc", "/sys",
}
# Anything at or beneath these is system territory
_SYSTEM_TREES = ("/etc", "/usr", "/bin", "/sbin", "/boot", "/lib", "/lib64", "/System")
_WINDOWS_ROOT_RE = re.compile(r"^[A-Za-z]:[\\/]?(?:\*|windows(?:[\\/].*)?)?$", re.IGNORECASE)


def _is_protected_target(target: str) -> bool:
    """
    >>> _is_protected_target("/*")
    True
    >>> _is_protected_target("/usr/local/lib")
    True
    >>> _is_protected_target("./build")
    False
    """
    target = target.strip("\"'")
    if _WINDOWS_ROOT_RE.match(target):
        return True
    trimmed = target
    for suffix in ("/*", "/."):
        if trimmed.endswith(suffix):
            trimmed = trimmed[: -len(suffix)] or "/"
    if trimmed != "/":
        trimmed = trimmed.rstrip("/") or "/"
    if trimmed in _ROOT_LEVEL_TARGETS:
        return True
    return any(trimmed == tree or trimmed.startswith(tree + "/") for tree in _SYSTEM_TREES)


def _recursive_delete_reason(command: str) -> Optional[str]:
    for match in _RM_RE.finditer(command):
        args = match.group(1).split()
        if "--no-preserve-root" in args:
            return "recursive delete with --no-preserve-root"
        flags = [a for a in args if a.startswith("-")]
        has_r = any(_RM_RECURSIVE_FLAG_RE.match(f) for f in flags)
        if not has_r:
            continue
        for target in (a for a in args if not a.startswith("-")):
            if _is_protected_target(target):
                return f"recursive delete of protected path {target.strip(chr(34) + chr(39))}"
    return None


# --- Built-in deny rules, keyed so they can be listed and tested by name ---

_PROTECTED_BRANCHES = r"(?:main|master|production|staging|develop)"
_BRANCH_REF = r"[\s:](?:refs/heads/)?" + _PROTECTED_BRANCHES + r"(?=\s|$)"
_FORCE_FLAG = r"\s(?:--force(?:-with-lease)?(?:=\S*)?|-[a-zA-Z]*f[a-zA-Z]*)(?=\s|$)"
_NET_TOOL = r"(?:curl|wget|nc|ncat|netcat|socat)"
_SECRET_PATH = r"(?:(?:~|\$HOME|/home/\w+|/root|/Users/\w+)/\.(?:ssh|aws|gnupg|kube)/|/etc/(?:passwd|shadow|gshadow|sudoers))"

DENY_RULES = {
    "force_push_protected": {
        "pattern": re.compile(r"\bgit\s+(?:-\S+\s+)*push\b(?=[^;&|]*" + _FORCE_FLAG + r")(?=[^;&|]*" + _BRANCH_REF + r")"),
        "label": "force push to a protected branch",
    },
    "force_refspec_protected": {
        "pattern": re.compile(r"\bgit\s+(?:-\S+\s+)*push\b[^;&|]*\s\+(?:\S*:)?(?:refs/heads/)?" + _PROTECTED_BRANCHES + r"(?=\s|$)"),
        "label": "force push to a protected branch",
    },
    "dd_to_device": {
        "pattern": re.compile(r"\bdd\b[^;&|]*\bof=/dev/(?!null\b|zero\b|stdout\b|stderr\b)"),
        "label": "raw disk write",
    },
    "dd_from_disk": {
        "pattern": re.compile(r"\bdd\b[^;&|]*\bif=/dev/(?:sd[a-z]|nvme\d|disk\d|hd[a-z]|xvd[a-z]|mmcblk\d)"),
        "label": "raw disk read",
    },
    "redirect_to_device": {
        "pattern": re.compile(r">\s*/dev/(?:sd[a-z]|nvme\d|disk\d|hd[a-z]|xvd[a-z]|mmcblk\d)"),
        "label": "raw disk write",
    },
    "mkfs": {
        "pattern": re.compile(r"\bmkfs(?:\.\w+)?\b"),
        "label": "filesystem format",
    },
    "partition_tools": {
        "pattern": re.compile(r"\b(?:fdisk|sfdisk|parted|diskpart|wipefs)\b", re.IGNORECASE),
        "label": "disk partitioning",
    },
    "format_drive": {
        "pattern": re.compile(r"\bformat\s+[A-Z]:", re.IGNORECASE),
        "label": "drive format",
    },
    "shred_device": {
        "pattern": re.compile(r"\bshred\b[^;&|]*\s/dev/"),
        "label": "raw disk wipe",
    },
    "fork_bomb": {
        "pattern": re.compile(r":\s*\(\s*\)\s*\{\s*:\s*\|\s*:\s*&\s*\}\s*;\s*:"),
        "label": "fork bomb",
    },
    "named_fork_bomb": {
        "pattern": re.compile(r"\b(\w+)\s*\(\s*\)\s*\{\s*\1\s*\|\s*\1\s*&\s*\}"),
        "label": "fork bomb",
    },
    "read_secret_paths": {
        "pattern": re.compile(r"\b(?:cat|head|tail|less|more|strings|grep|awk|sed|base64|xxd|od|cp|scp|tar|zip)\s+[^;&|]*" + _SECRET_PATH),
        "label": "credential file access",
    },
    "pipe_secrets_to_network": {
        "pattern": re.compile(r"(?:\b(?:env|printenv)\b|" + _SECRET_PATH + r"|\.env\b)[^;&]*\|\s*(?:\S+\s+)*?" + _NET_TOOL + r"\b"),
        "label": "credential exfiltration",
    },
    "post_secrets": {
        "pattern": re.compile(r"\b(?:curl|wget)\b[^;&|]*(?:@" + _SECRET_PATH + r"|--post-file[=\s]+" + _SECRET_PATH + r"|\$\((?:env|printenv)\))"),
        "label": "credential exfiltration",
    },
    "reverse_shell": {
        "pattern": re.compile(r">&?\s*/dev/(?:tcp|udp)/"),
        "label": "reverse shell",
    },
    "netcat_exec": {
        "pattern": re.compile(r"\b(?:nc|ncat|netcat)\b[^;&|]*\s-[ec]\s"),
        "label": "reverse shell",
    },
}


def match_deny_rules(command: str) -> Optional[str]:
    """Return the label of the first built-in deny rule the command hits.

    Both the whitespace-collapsed command and its env-stripped core are
    checked so ``FOO=1 rm -rf /`` cannot slip through.

    >>> match_deny_rules("HOME=/tmp rm -rf /")
    'recursive delete of protected path /'
    >>> match_deny_rules("git push --force origin main")
    'force push to a protected branch'
    >>> match_deny_rules("git push origin feature/foo") is None
    True
    """
    collapsed = WHITESPACE_RE.sub(" ", command).strip()
    core = normalize_command(command)
    candidates = [collapsed] if core == collapsed else [collapsed, core]
    for candidate in candidates:
        reason = _recursive_delete_reason(candidate)
        if reason:
            return reason
        for rule in DENY_RULES.values():
            if rule["pattern"].search(candidate):
                return rule["label"]
    return None


# --- Custom patterns from config ---


class CustomPatterns(NamedTuple):
    allow: tuple = ()
    deny: tuple = ()
    passthrough: tuple = ()


NO_CUSTOM_PATTERNS = CustomPatterns()


@lru_cache(maxsize=32)
def _compile_all(patterns: tuple[str, ...]) -> tuple:
    compiled = []
    for raw in patterns:
        try:
            compiled.append(re.compile(raw))
        except re.error as exc:
            logger.debug("Skipping invalid custom pattern %r: %s", raw, exc)
    return tuple(compiled)


def compile_custom_patterns(
    allow: Sequence[str] = (),
    deny: Sequence[str] = (),
    passthrough: Sequence[str] = (),
) -> CustomPatterns:
    """Compile user patterns, silently dropping ones that are not valid regexes.

    >>> len(compile_custom_patterns(allow=["^make ", "(unclosed"]).allow)
    1
    """
    return CustomPatterns(
        allow=_compile_all(tuple(allow)),
        deny=_compile_all(tuple(deny)),
        passthrough=_compile_all(tuple(passthrough)),
    )


# --- Classification ---


def shell_command(tool_name: str, tool_input: dict[str, Any]) -> Optional[str]:
    if tool_name not in SHELL_TOOLS:
        return None
    command = tool_input.get("command")
    return command if isinstance(command, str) else None


def request_subject(tool_name: str, tool_input: dict[str, Any]) -> str:
    """The text custom patterns are matched against.

    >>> request_subject("Bash", {"command": "make build"})
    'make build'
    >>> request_subject("Write", {"file_path": "a.txt"})
    'Write({"file_path":"a.txt"})'
    """
    command = shell_command(tool_name, tool_input)
    if command is not None:
        return command
    payload = json.dumps(tool_input, separators=(",", ":"), ensure_ascii=False, default=str)
    return f"{tool_name}({payload})"


def classify(
    tool_name: str,
    tool_input: dict[str, Any],
    custom: Optional[CustomPatterns] = None,
) -> FastResult:
    """Classify a request into allow / deny / passthrough / unknown."""
    custom = custom or NO_CUSTOM_PATTERNS
    subject = request_subject(tool_name, tool_input)
    command = shell_command(tool_name, tool_input)

    # Tier 1: deny always wins
    for pattern in custom.deny:
        if pattern.search(subject):
            return FastResult(FastVerdict.DENY, f"Matched custom deny pattern: {pattern.pattern}")
    if command:
        label = match_deny_rules(command)
        if label:
            return FastResult(FastVerdict.DENY, f"Blocked by security pattern: {label}")

    # Tier 2: explicit deferral to the user
    for pattern in custom.passthrough:
        if pattern.search(subject):
            return FastResult(FastVerdict.PASSTHROUGH, f"Matched custom passthrough pattern: {pattern.pattern}")

    # Tier 3: allow
    for pattern in custom.allow:
        if pattern.search(subject):
            return FastResult(FastVerdict.ALLOW, f"Matched custom allow pattern: {pattern.pattern}")
    if tool_name in ALWAYS_ALLOW_TOOLS:
        return FastResult(FastVerdict.ALLOW, f"{tool_name} is a read-only tool")

    return FastResult(FastVerdict.UNKNOWN)
