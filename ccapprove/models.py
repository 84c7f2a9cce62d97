"""Pydantic v2 models shared by every tier of the decision pipeline.

Documents written to disk (config, cache) use camelCase keys so they stay
readable by earlier installs; Python code uses snake_case attributes.
"""

from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

from ccapprove.prompt import DEFAULT_SYSTEM_PROMPT

Decision = Literal["allow", "deny"]
Outcome = Literal["allow", "deny", "passthrough"]
Source = Literal["fast", "cache", "llm"]
Provider = Literal["openrouter", "openai", "anthropic"]


class _Document(BaseModel):
    """Base for persisted documents: camelCase on disk, snake_case in code."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")


# ---------------------------------------------------------------------------
# Hook request
# ---------------------------------------------------------------------------


class ToolRequest(BaseModel):
    """One incoming tool invocation, as sent by the hook runner on stdin.

    >>> req = ToolRequest.model_validate({"tool_name": "Bash", "tool_input": {"command": "ls"}})
    >>> req.tool_name, req.cwd
    ('Bash', None)
    """

    model_config = ConfigDict(extra="ignore")

    tool_name: str = Field(min_length=1)
    tool_input: dict[str, Any] = Field(default_factory=dict)
    cwd: Optional[str] = None
    session_id: Optional[str] = None
    hook_event_name: Optional[str] = None
    permission_mode: Optional[str] = None
    transcript: Optional[list[Any]] = None


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class CacheEntry(_Document):
    """A persisted LLM-tier decision."""

    key: str
    decision: Decision
    reason: str
    timestamp: float
    tool_name: str = Field(alias="toolName")
    tool_input: Optional[dict[str, Any]] = Field(default=None, alias="toolInput")
    project_root: Optional[str] = Field(default=None, alias="projectRoot")

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)


# ---------------------------------------------------------------------------
# Results
# ---------------------------------------------------------------------------


class LLMDecision(BaseModel):
    """Strict response contract for the arbiter.

    >>> LLMDecision.model_validate({"decision": "allow", "reason": "ok"}).decision
    'allow'
    """

    model_config = ConfigDict(extra="ignore")

    decision: Decision
    reason: str

    @field_validator("decision", mode="before")
    @classmethod
    def _normalize_decision(cls, value):
        if isinstance(value, str):
            return value.strip().lower()
        return value


class DecisionResult(BaseModel):
    """Terminal output of one resolution."""

    decision: Outcome
    reason: str
    source: Source


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------


class LLMConfig(_Document):
    provider: Provider = "openrouter"
    api_key: Optional[str] = Field(default=None, alias="apiKey")
    model: str = "gpt-4o-mini"
    base_url: Optional[str] = Field(default=None, alias="baseUrl")
    system_prompt: str = Field(default=DEFAULT_SYSTEM_PROMPT, alias="systemPrompt")
    # Documents written before versioning existed default to 0 so they upgrade
    system_prompt_version: int = Field(default=0, alias="systemPromptVersion")
    timeout_seconds: float = Field(default=15.0, alias="timeoutSeconds", gt=0)


class CacheConfig(_Document):
    enabled: bool = True
    ttl_hours: float = Field(default=168, alias="ttlHours", ge=0)


class LoggingConfig(_Document):
    enabled: bool = True
    level: Literal["debug", "info", "warn", "error"] = "info"


class Config(_Document):
    """The on-disk config document.

    >>> Config().llm.provider
    'openrouter'
    >>> Config.model_validate({"cache": {"enabled": False}}).cache.enabled
    False
    """

    llm: LLMConfig = Field(default_factory=LLMConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    auto_update_system_prompt: bool = Field(default=True, alias="autoUpdateSystemPrompt")
    custom_allow_patterns: list[str] = Field(default_factory=list, alias="customAllowPatterns")
    custom_deny_patterns: list[str] = Field(default_factory=list, alias="customDenyPatterns")
    custom_passthrough_patterns: list[str] = Field(
        default_factory=list, alias="customPassthroughPatterns"
    )

    # Set when the on-disk document could not be used and defaults stand in
    _fallback: bool = PrivateAttr(default=False)

    @classmethod
    def fallback(cls) -> "Config":
        """Defaults standing in for an unreadable or invalid document.

        >>> Config.fallback().is_fallback, Config().is_fallback
        (True, False)
        """
        config = cls()
        config._fallback = True
        return config

    @property
    def is_fallback(self) -> bool:
        return self._fallback

    def to_document(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
