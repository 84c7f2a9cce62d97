"""
CLI for cc-approve.

Provides the hook entry points (permission, pre-tool-use) plus commands for
installing into Claude Code settings, configuring the LLM, and inspecting the
decision cache and audit log.
"""

import json
import logging
import os
import sys
import time
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from ccapprove import __version__
from ccapprove.atomic import write_json_atomic
from ccapprove.audit import AuditLog, summarize_input
from ccapprove.cache import DecisionCache, JsonFileStorage, paginate
from ccapprove.config import (
    DEFAULT_MODEL,
    DEFAULT_MODELS,
    ConfigStore,
    Paths,
    get_api_key,
    resolve_base_url,
)
from ccapprove.errors import ConfigError
from ccapprove.hook import PERMISSION_REQUEST, PRE_TOOL_USE, run_hook
from ccapprove.project import resolve_project_root

console = Console()

HOOK_COMMANDS = {
    PERMISSION_REQUEST: "cc-approve permission",
    PRE_TOOL_USE: "cc-approve pre-tool-use",
}
SCOPES = ("user", "project", "local")


def setup_logging(verbose: bool = False):
    """Console logging for interactive commands. Hooks log to debug.log instead."""
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


def format_age(seconds: float) -> str:
    """
    >>> format_age(42)
    '42s ago'
    >>> format_age(3 * 3600 + 5)
    '3h ago'
    >>> format_age(9 * 86400)
    '9d ago'
    """
    seconds = int(max(0, seconds))
    if seconds < 60:
        return f"{seconds}s ago"
    minutes = seconds // 60
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    return f"{hours // 24}d ago"


def mask_key(key: Optional[str]) -> str:
    """
    >>> mask_key("sk-or-v1-abcdef123456")
    'sk-o...3456'
    >>> mask_key(None)
    '(not set)'
    """
    if not key:
        return "(not set)"
    if len(key) <= 8:
        return "***"
    return f"{key[:4]}...{key[-4:]}"


def _open_cache(paths: Paths, store: ConfigStore) -> DecisionCache:
    config = store.load()
    return DecisionCache(JsonFileStorage(paths.cache_file), ttl_hours=config.cache.ttl_hours)


@click.group()
@click.version_option(__version__, prog_name="cc-approve")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
def main(verbose: bool):
    """cc-approve - LLM-backed permission decisions for Claude Code."""
    if verbose:
        setup_logging(verbose)


# ---------------------------------------------------------------------------
# Hook entry points
# ---------------------------------------------------------------------------


@main.command()
def permission():
    """PermissionRequest hook: reads a request on stdin, answers on stdout."""
    sys.exit(run_hook(PERMISSION_REQUEST))


@main.command(name="pre-tool-use")
def pre_tool_use():
    """PreToolUse hook, for sessions where PermissionRequest never fires."""
    sys.exit(run_hook(PRE_TOOL_USE))


# ---------------------------------------------------------------------------
# Install / uninstall
# ---------------------------------------------------------------------------


def settings_path_for(scope: str, cwd: Optional[Path] = None) -> Path:
    """Claude Code settings file for an install scope."""
    if scope == "user":
        return Path.home() / ".claude" / "settings.json"
    base = (cwd or Path.cwd()) / ".claude"
    return base / ("settings.json" if scope == "project" else "settings.local.json")


def _read_settings(settings_path: Path) -> dict:
    if not settings_path.exists():
        return {}
    text = settings_path.read_text(encoding="utf-8")
    if not text.strip():
        return {}
    settings = json.loads(text)
    if not isinstance(settings, dict):
        raise ValueError(f"{settings_path} is not a JSON object")
    return settings


def _is_our_hook(entry) -> bool:
    return any(cmd in json.dumps(entry) for cmd in HOOK_COMMANDS.values())


def install_hooks(settings: dict, events: tuple) -> bool:
    """Add our hook entry for each event, replacing stale copies. Returns True if changed.

    >>> s = {}
    >>> install_hooks(s, (PERMISSION_REQUEST,))
    True
    >>> install_hooks(s, (PERMISSION_REQUEST,))
    False
    >>> s["hooks"]["PermissionRequest"][0]["hooks"][0]["command"]
    'cc-approve permission'
    """
    hooks = settings.setdefault("hooks", {})
    changed = False
    for event in events:
        desired = {
            "matcher": "*",
            "hooks": [{"type": "command", "command": HOOK_COMMANDS[event]}],
        }
        current = hooks.get(event, [])
        ours = [h for h in current if _is_our_hook(h)]
        if ours == [desired]:
            continue
        hooks[event] = [h for h in current if not _is_our_hook(h)] + [desired]
        changed = True
    return changed


def remove_hooks(settings: dict) -> bool:
    """Strip our entries from every hook event. Returns True if anything was removed."""
    hooks = settings.get("hooks")
    if not isinstance(hooks, dict):
        return False
    removed = False
    for event in list(hooks):
        entries = hooks[event]
        if not isinstance(entries, list):
            continue
        kept = [h for h in entries if not _is_our_hook(h)]
        if len(kept) < len(entries):
            removed = True
            if kept:
                hooks[event] = kept
            else:
                del hooks[event]
    return removed


@main.command()
@click.option("--scope", type=click.Choice(SCOPES), default="user", show_default=True,
              help="Which Claude Code settings file to write")
@click.option("--provider", type=click.Choice(sorted(DEFAULT_MODELS)), help="LLM provider")
@click.option("--api-key", help="API key for the provider")
@click.option("--model", help="Model name")
@click.option("--pre-tool-use", "with_pre_tool_use", is_flag=True,
              help="Also install the PreToolUse hook (covers background agents)")
def install(scope: str, provider: Optional[str], api_key: Optional[str], model: Optional[str],
            with_pre_tool_use: bool):
    """Install the permission hook into Claude Code settings."""
    paths = Paths.default()
    store = ConfigStore(paths.config_file)
    config = store.load()
    if provider:
        config.llm.provider = provider
        if not model:
            config.llm.model = DEFAULT_MODELS[provider]
    if api_key:
        config.llm.api_key = api_key
    if model:
        config.llm.model = model
    try:
        store.save(config)
    except ConfigError as e:
        console.print(f"[red][FAIL][/red] {escape(str(e))}")
        sys.exit(1)
    console.print(f"[green][OK][/green] Configuration saved to {paths.config_file}")

    settings_path = settings_path_for(scope)
    try:
        settings = _read_settings(settings_path)
    except (OSError, ValueError) as e:
        console.print(f"[red][FAIL][/red] Could not read {settings_path}: {escape(str(e))}")
        sys.exit(1)

    events = (PERMISSION_REQUEST, PRE_TOOL_USE) if with_pre_tool_use else (PERMISSION_REQUEST,)
    if not install_hooks(settings, events):
        console.print(f"[yellow][-][/yellow] Hook already configured in {settings_path}")
    else:
        write_json_atomic(settings_path, settings, private=False)
        console.print(f"[green][OK][/green] Hook installed to {settings_path}")

    if not get_api_key(config):
        console.print("[yellow]No API key found.[/yellow] Set one with 'cc-approve config --api-key KEY'")
    console.print("[dim]Run 'cc-approve doctor' to verify setup.[/dim]")


@main.command()
@click.option("--scope", type=click.Choice(SCOPES), default="user", show_default=True)
def uninstall(scope: str):
    """Remove cc-approve hooks from Claude Code settings."""
    settings_path = settings_path_for(scope)
    if not settings_path.exists():
        console.print(f"[yellow]Settings file not found: {settings_path}[/yellow]")
        return
    try:
        settings = _read_settings(settings_path)
    except (OSError, ValueError) as e:
        console.print(f"[red][FAIL][/red] Could not read {settings_path}: {escape(str(e))}")
        sys.exit(1)

    if remove_hooks(settings):
        write_json_atomic(settings_path, settings, private=False)
        console.print(f"[green][OK][/green] Removed cc-approve hooks from {settings_path}")
    else:
        console.print("[yellow]Hook was not installed[/yellow]")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@main.command(name="config")
@click.option("--model", help="Model name, or 'default' to reset")
@click.option("--provider", type=click.Choice(sorted(DEFAULT_MODELS)))
@click.option("--api-key", help="API key for the provider")
@click.option("--base-url", help="Override the provider base URL ('default' to reset)")
def config_cmd(model: Optional[str], provider: Optional[str], api_key: Optional[str],
               base_url: Optional[str]):
    """Update LLM settings."""
    paths = Paths.default()
    store = ConfigStore(paths.config_file)
    config = store.load()

    if not any((model, provider, api_key, base_url)):
        console.print("Nothing to change. Options: --model, --provider, --api-key, --base-url")
        console.print("[dim]Run 'cc-approve status' to see the current configuration[/dim]")
        return

    if provider:
        config.llm.provider = provider
        if not model:
            config.llm.model = DEFAULT_MODELS[provider]
    if model:
        config.llm.model = DEFAULT_MODEL if model == "default" else model
    if api_key:
        config.llm.api_key = api_key
    if base_url:
        config.llm.base_url = None if base_url == "default" else base_url

    try:
        store.save(config)
    except ConfigError as e:
        console.print(f"[red][FAIL][/red] {escape(str(e))}")
        sys.exit(1)

    console.print(f"[green][OK][/green] Provider: {config.llm.provider}")
    console.print(f"[green][OK][/green] Model: {escape(config.llm.model)}")
    if api_key:
        console.print(f"[green][OK][/green] API key: {mask_key(config.llm.api_key)}")
    if base_url:
        console.print(f"[green][OK][/green] Base URL: {escape(resolve_base_url(config))}")


@main.command()
def status():
    """Print the current configuration (API key masked)."""
    paths = Paths.default()
    config = ConfigStore(paths.config_file).load()
    document = config.to_document()
    if document["llm"].get("apiKey"):
        document["llm"]["apiKey"] = mask_key(document["llm"]["apiKey"])
    console.print(f"[bold]cc-approve {__version__}[/bold]  ({paths.config_file})")
    console.print_json(json.dumps(document))


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


@main.command(name="clear-cache")
@click.option("--deny-only", is_flag=True, help="Only clear cached denials")
@click.option("--allow-only", is_flag=True, help="Only clear cached approvals")
@click.option("--key", help="Clear one entry by cache key")
@click.option("--grep", "needle", help="Clear entries whose tool, reason, or input contains TEXT")
def clear_cache(deny_only: bool, allow_only: bool, key: Optional[str], needle: Optional[str]):
    """Clear cached decisions."""
    if sum(bool(x) for x in (deny_only, allow_only, key, needle)) > 1:
        raise click.UsageError("Use at most one of --deny-only, --allow-only, --key, --grep")

    paths = Paths.default()
    cache = _open_cache(paths, ConfigStore(paths.config_file))

    if key:
        if cache.clear_by_key(key):
            console.print(f"[green][OK][/green] Removed cache entry {escape(key)}")
        else:
            console.print(f"[yellow]No cache entry with key {escape(key)}[/yellow]")
        return
    if needle:
        count = cache.clear_by_grep(needle)
        console.print(f"[green][OK][/green] Removed {count} entries matching '{escape(needle)}'")
        return
    if deny_only or allow_only:
        decision = "deny" if deny_only else "allow"
        count = cache.clear_by_decision(decision)
        console.print(f"[green][OK][/green] Removed {count} cached {decision} decisions")
        return
    count = cache.clear_all()
    console.print(f"[green][OK][/green] Cache cleared ({count} entries)")


@main.command(name="cache")
@click.option("--page", default=1, type=click.IntRange(min=1), help="Page number")
@click.option("--per-page", default=20, type=click.IntRange(min=1), help="Entries per page")
@click.option("--all", "show_all", is_flag=True, help="Show all projects, not just the current one")
def cache_cmd(page: int, per_page: int, show_all: bool):
    """List cached decisions for the current project, newest first."""
    paths = Paths.default()
    cache = _open_cache(paths, ConfigStore(paths.config_file))
    project_root = None if show_all else resolve_project_root(os.getcwd())

    entries = cache.list() if show_all else [
        e for e in cache.list() if e.project_root == project_root
    ]
    if not entries:
        if show_all:
            console.print("[yellow]No cached decisions found.[/yellow]")
        else:
            console.print(f"[yellow]No cached decisions for project: {project_root}[/yellow]")
            console.print("[dim]Use --all to see entries for all projects.[/dim]")
        return

    page_entries, total_pages = paginate(entries, page, per_page)
    title = f"Cache entries: {len(entries)} total (page {page}/{total_pages})"
    if not show_all:
        title = f"Project: {project_root}\n{title}"

    table = Table(title=title, title_justify="left")
    table.add_column("Decision")
    table.add_column("Tool", style="cyan")
    table.add_column("Age", style="dim")
    table.add_column("Reason")
    table.add_column("Input", style="dim")
    if show_all:
        table.add_column("Project", style="dim")
    table.add_column("Key", style="dim", no_wrap=True, min_width=12)

    now = time.time()
    for entry in page_entries:
        color = "green" if entry.decision == "allow" else "red"
        row = [
            f"[{color}]{entry.decision.upper()}[/{color}]",
            escape(entry.tool_name),
            format_age(now - entry.timestamp),
            escape(entry.reason),
            escape(summarize_input(entry.tool_input or {})[:100]),
        ]
        if show_all:
            row.append(escape(entry.project_root or "-"))
        row.append(entry.key[:12])
        table.add_row(*row)

    console.print(table)
    if page < total_pages:
        console.print(f"[dim]Page {page} of {total_pages}. Use --page {page + 1} to see more.[/dim]")


# ---------------------------------------------------------------------------
# Audit log
# ---------------------------------------------------------------------------


@main.command()
@click.option("--limit", "-n", default=20, type=click.IntRange(min=1), help="Maximum rows")
@click.option("--offset", default=0, type=click.IntRange(min=0), help="Rows to skip")
@click.option("--decision", type=click.Choice(["allow", "deny", "passthrough"]))
@click.option("--source", type=click.Choice(["fast", "cache", "llm"]))
@click.option("--purge", is_flag=True, help="Delete all audit records")
def logs(limit: int, offset: int, decision: Optional[str], source: Optional[str], purge: bool):
    """Show recent decisions from the audit log."""
    paths = Paths.default()
    if not paths.audit_db.exists():
        console.print("[yellow]No decisions recorded yet.[/yellow]")
        return
    audit = AuditLog(paths.audit_db)

    if purge:
        count = audit.purge()
        console.print(f"[green][OK][/green] Deleted {count} audit records")
        return

    result = audit.list(limit=limit, offset=offset, filters={"decision": decision, "source": source})
    if not result["rows"]:
        console.print("[yellow]No matching decisions.[/yellow]")
        return

    table = Table(title=f"Decisions {offset + 1}-{offset + len(result['rows'])} of {result['total']}",
                  title_justify="left")
    table.add_column("Time", style="dim")
    table.add_column("Decision")
    table.add_column("Source")
    table.add_column("Tool", style="cyan")
    table.add_column("ms", justify="right")
    table.add_column("Summary")
    table.add_column("Reason", style="dim")

    colors = {"allow": "green", "deny": "red", "passthrough": "yellow"}
    for row in result["rows"]:
        color = colors.get(row["decision"], "white")
        elapsed = row["elapsed_ms"]
        table.add_row(
            row["timestamp"][:19],
            f"[{color}]{row['decision'].upper()}[/{color}]",
            row["source"],
            escape(row["tool_name"]),
            f"{elapsed:.0f}" if elapsed is not None else "-",
            escape((row["summary"] or "")[:80]),
            escape((row["reason"] or "")[:120]),
        )
    console.print(table)


# ---------------------------------------------------------------------------
# Diagnostics
# ---------------------------------------------------------------------------


def _hook_status(settings_path: Path) -> str:
    if not settings_path.exists():
        return "[dim]- File not found[/dim]"
    try:
        settings = _read_settings(settings_path)
    except (OSError, ValueError):
        return "[red][FAIL] File exists but could not be parsed[/red]"
    hooks = settings.get("hooks", {})
    installed = [event for event in HOOK_COMMANDS if any(_is_our_hook(h) for h in hooks.get(event, []))]
    if installed:
        return f"[green][OK] Hook configured ({', '.join(installed)})[/green]"
    return "[yellow]File exists, hook not configured[/yellow]"


@main.command()
def doctor():
    """Diagnose configuration, cache, and installation."""
    paths = Paths.default()
    store = ConfigStore(paths.config_file)
    config = store.load()

    console.print(Panel(
        f"Provider: {config.llm.provider}\n"
        f"Model: {escape(config.llm.model)}\n"
        f"API Key: {'[green]set in config[/green]' if config.llm.api_key else '[yellow]not in config[/yellow]'}\n"
        f"Base URL: {escape(resolve_base_url(config))}\n"
        f"Policy version: {config.llm.system_prompt_version}"
        f"{' (auto-update)' if config.auto_update_system_prompt else ' (pinned)'}\n"
        f"Cache: {f'enabled ({config.cache.ttl_hours:g}h TTL)' if config.cache.enabled else 'disabled'}",
        title="Configuration",
    ))
    if config.is_fallback:
        console.print(f"[red][FAIL][/red] {paths.config_file} could not be read; defaults shown above")

    stats = _open_cache(paths, store).stats()
    oldest = stats["oldest_timestamp"]
    console.print(Panel(
        f"Entries: {stats['entries']}\n"
        f"Oldest entry: {format_age(time.time() - oldest) if oldest else '-'}",
        title="Cache",
    ))

    lines = []
    any_installed = False
    for label, scope in (("User settings", "user"), ("Project settings", "project"),
                         ("Project local", "local")):
        path = settings_path_for(scope)
        line = _hook_status(path)
        any_installed = any_installed or "[OK]" in line
        lines.append(f"{label}: {line}\n  [dim]{path}[/dim]")
    if not any_installed:
        lines.append("\n[yellow]Hook not found in any settings file. Run 'cc-approve install'.[/yellow]")
    console.print(Panel("\n".join(lines), title="Installation"))

    api_key = get_api_key(config)
    console.print(Panel(
        f"API key available: {'[green]yes[/green]' if api_key else '[red]no[/red]'}\n"
        f"Config dir: {paths.home}\n"
        f"Config file: {paths.config_file}\n"
        f"Audit log: {paths.audit_db}",
        title="Environment",
    ))


if __name__ == "__main__":
    main()
