"""
Configuration document and filesystem layout for cc-approve.

Everything lives under ``$CC_APPROVE_HOME`` (default ``~/.cc-approve``):
  config.json   : LLM connection, prompt + policy version, cache, patterns
  cache.json    : decision cache document
  decisions.db  : audit log (SQLite)
  debug.log     : redacted debug log

The config is read once per process. A missing, unparseable, or invalid
document yields defaults instead of an error. Defaults that stand in for an
unusable document are marked (``Config.is_fallback``) and never written back
over it.
"""

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from ccapprove.atomic import write_json_atomic
from ccapprove.errors import ConfigError
from ccapprove.models import Config

logger = logging.getLogger(__name__)

HOME_ENV = "CC_APPROVE_HOME"
DEBUG_ENV = "CC_APPROVE_DEBUG"
GENERIC_KEY_ENV = "CC_APPROVE_API_KEY"

PROVIDER_KEY_ENV = {
    "openrouter": "OPENROUTER_API_KEY",
    "openai": "OPENAI_API_KEY",
    "anthropic": "ANTHROPIC_API_KEY",
}

DEFAULT_BASE_URLS = {
    "openrouter": "https://openrouter.ai/api/v1",
    "openai": "https://api.openai.com/v1",
    "anthropic": "https://api.anthropic.com",
}

DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_MODELS = {
    "openrouter": "openai/gpt-4o-mini",
    "openai": DEFAULT_MODEL,
    "anthropic": "claude-haiku-4-5-20251001",
}


@dataclass(frozen=True)
class Paths:
    """Locations of every file cc-approve reads or writes."""

    home: Path

    @classmethod
    def default(cls) -> "Paths":
        override = os.environ.get(HOME_ENV, "").strip()
        home = Path(override).expanduser() if override else Path.home() / ".cc-approve"
        return cls(home=home)

    @property
    def config_file(self) -> Path:
        return self.home / "config.json"

    @property
    def cache_file(self) -> Path:
        return self.home / "cache.json"

    @property
    def audit_db(self) -> Path:
        return self.home / "decisions.db"

    @property
    def debug_log(self) -> Path:
        return self.home / "debug.log"


class ConfigStore:
    """Loads and saves the config document.

    >>> import tempfile
    >>> store = ConfigStore(Path(tempfile.mkdtemp()) / "config.json")
    >>> store.load().cache.enabled
    True
    """

    def __init__(self, path: Path):
        self.path = Path(path)

    def load(self) -> Config:
        if not self.path.exists():
            return Config()
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
            logger.warning("Config at %s unreadable, using defaults: %s", self.path, exc)
            return Config.fallback()
        if not isinstance(raw, dict):
            logger.warning("Config at %s is not an object, using defaults", self.path)
            return Config.fallback()
        try:
            return Config.model_validate(raw)
        except ValidationError as exc:
            logger.warning("Config at %s invalid, using defaults: %s", self.path, exc.error_count())
            return Config.fallback()

    def save(self, config: Config) -> None:
        if config.is_fallback and self.path.exists():
            raise ConfigError(f"{self.path} could not be read; fix or remove it before saving")
        try:
            write_json_atomic(self.path, config.to_document())
        except OSError as exc:
            raise ConfigError(f"could not write {self.path}: {exc}") from exc


def get_api_key(config: Config) -> Optional[str]:
    """API key from config, then the provider's env var, then CC_APPROVE_API_KEY."""
    if config.llm.api_key and config.llm.api_key.strip():
        return config.llm.api_key.strip()
    for env_name in (PROVIDER_KEY_ENV.get(config.llm.provider), GENERIC_KEY_ENV):
        if env_name:
            value = os.environ.get(env_name, "").strip()
            if value:
                return value
    return None


def resolve_base_url(config: Config) -> str:
    """
    >>> resolve_base_url(Config())
    'https://openrouter.ai/api/v1'
    """
    if config.llm.base_url:
        return config.llm.base_url.rstrip("/")
    return DEFAULT_BASE_URLS[config.llm.provider]


def debug_enabled() -> bool:
    return os.environ.get(DEBUG_ENV, "") == "1"
