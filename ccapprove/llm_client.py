"""LLM arbiter: the only tier allowed to touch the network.

One bounded attempt per request, no retries. Every failure (missing key,
timeout, transport error, HTTP error, malformed reply) resolves to a deny
with a reason naming the failure category. ``arbitrate`` never raises.

Providers:
  openrouter / openai: POST {base_url}/chat/completions via httpx
  anthropic          : anthropic SDK messages.create (max_retries=0)
"""

import json
import logging
import re
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from ccapprove.audit import clean_text, redact
from ccapprove.config import DEFAULT_BASE_URLS, get_api_key
from ccapprove.models import Config, LLMConfig, LLMDecision

logger = logging.getLogger(__name__)

MAX_TOKENS = 300
MAX_VALUE_CHARS = 4000
_FENCE_RE = re.compile(r"^```[\w-]*\s*|\s*```$")


class ArbiterFailure(Exception):
    """A categorized arbitration failure; ``reason`` is safe to show users."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


def _deny(reason: str) -> LLMDecision:
    return LLMDecision(decision="deny", reason=reason)


# --- Request building ---


def sanitize_input(value: Any) -> Any:
    """Redact secrets and truncate long strings anywhere in the tool input.

    >>> sanitize_input({"command": "curl -H 'Authorization: Bearer abc123' x"})
    {'command': "curl -H 'Authorization: Bearer *** x"}
    """
    if isinstance(value, str):
        text = redact(clean_text(value))
        if len(text) > MAX_VALUE_CHARS:
            text = f"{text[:MAX_VALUE_CHARS]}...[truncated {len(text) - MAX_VALUE_CHARS} chars]"
        return text
    if isinstance(value, dict):
        return {clean_text(k): sanitize_input(v) for k, v in value.items()}
    if isinstance(value, list):
        return [sanitize_input(v) for v in value]
    return value


def build_user_message(tool_name: str, tool_input: dict[str, Any], project_root: Optional[str]) -> str:
    """
    >>> print(build_user_message("Bash", {"command": "ls"}, None))
    Tool: Bash
    Project Root: (none)
    Input:
    {
      "command": "ls"
    }
    """
    payload = json.dumps(sanitize_input(tool_input), indent=2, ensure_ascii=False, default=str)
    return f"Tool: {tool_name}\nProject Root: {project_root or '(none)'}\nInput:\n{payload}"


# --- Response parsing ---


def parse_decision(text: Optional[str]) -> LLMDecision:
    """Parse a model reply into a strict allow/deny decision, denying on any defect.

    >>> parse_decision('{"decision": "allow", "reason": "tests"}').decision
    'allow'
    >>> parse_decision('```json\\n{"decision": "deny", "reason": "rm"}\\n```').reason
    'rm'
    >>> parse_decision("sure, go ahead").decision
    'deny'
    >>> parse_decision('{"reason": "no decision"}').decision
    'deny'
    """
    stripped = (text or "").strip()
    if not stripped:
        return _deny("LLM arbitration failed: empty response")
    stripped = _FENCE_RE.sub("", stripped).strip()

    # The whole reply must be the object; JSON quoted inside prose is not a verdict
    try:
        parsed = json.loads(stripped)
    except json.JSONDecodeError:
        return _deny("LLM arbitration failed: response was not JSON")

    if not isinstance(parsed, dict):
        return _deny("LLM arbitration failed: response was not a JSON object")
    try:
        result = LLMDecision.model_validate(parsed)
    except ValidationError:
        return _deny("LLM arbitration failed: response missing a valid decision or reason")
    if not result.reason.strip():
        result = LLMDecision(decision=result.decision, reason=f"LLM returned {result.decision}")
    return result


# --- Arbiter ---


class LLMArbiter:
    """Single-shot chat-completion client with a fail-closed contract."""

    def __init__(
        self,
        llm: LLMConfig,
        api_key: Optional[str],
        timeout: Optional[float] = None,
        http_client: Optional[httpx.Client] = None,
        anthropic_client: Any = None,
    ):
        self.llm = llm
        self.api_key = api_key
        self.timeout = timeout if timeout is not None else llm.timeout_seconds
        self._http_client = http_client
        self._anthropic_client = anthropic_client

    @classmethod
    def from_config(cls, config: Config, **kwargs) -> "LLMArbiter":
        return cls(config.llm, get_api_key(config), **kwargs)

    def arbitrate(
        self,
        tool_name: str,
        tool_input: dict[str, Any],
        project_root: Optional[str],
        system_prompt: str,
    ) -> LLMDecision:
        if not self.api_key:
            return _deny("LLM arbitration unavailable: no API key configured")
        message = build_user_message(tool_name, tool_input, project_root)
        try:
            if self.llm.provider == "anthropic":
                text = self._complete_anthropic(system_prompt, message)
            elif self.llm.provider in ("openrouter", "openai"):
                text = self._complete_chat(system_prompt, message)
            else:
                raise ArbiterFailure(f"LLM arbitration failed: unknown provider {self.llm.provider!r}")
        except ArbiterFailure as exc:
            logger.info("Arbitration failed for %s: %s", tool_name, exc.reason)
            return _deny(exc.reason)
        except Exception:
            logger.exception("Unexpected arbitration error for %s", tool_name)
            return _deny("LLM arbitration failed: unexpected error")

        logger.debug("LLM raw reply: %s", (text or "")[:500])
        return parse_decision(text)

    # --- transports ---

    def _base_url(self) -> str:
        return (self.llm.base_url or DEFAULT_BASE_URLS[self.llm.provider]).rstrip("/")

    def _complete_chat(self, system_prompt: str, message: str) -> str:
        payload = {
            "model": self.llm.model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": message},
            ],
            "temperature": 0,
            "max_tokens": MAX_TOKENS,
        }
        headers = {"Authorization": f"Bearer {self.api_key}"}
        if self.llm.provider == "openrouter":
            headers["X-Title"] = "cc-approve"

        client = self._http_client or httpx.Client(timeout=self.timeout)
        try:
            response = client.post(
                f"{self._base_url()}/chat/completions",
                json=payload,
                headers=headers,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as exc:
            raise ArbiterFailure("LLM arbitration failed: request timed out") from exc
        except httpx.HTTPError as exc:
            raise ArbiterFailure("LLM arbitration failed: transport error") from exc
        finally:
            if self._http_client is None:
                client.close()

        if response.status_code >= 400:
            raise ArbiterFailure(f"LLM arbitration failed: HTTP {response.status_code}")
        try:
            body = response.json()
            content = body["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ArbiterFailure("LLM arbitration failed: unexpected response shape") from exc
        return content if isinstance(content, str) else ""

    def _complete_anthropic(self, system_prompt: str, message: str) -> str:
        # Imported here: the SDK is heavy and only this provider needs it
        import anthropic

        client = self._anthropic_client
        if client is None:
            base_url = self.llm.base_url
            # Configs written for the OpenAI-compatible endpoint end in /v1
            if base_url and base_url.rstrip("/").endswith("/v1"):
                base_url = base_url.rstrip("/")[:-3]
            client = anthropic.Anthropic(
                api_key=self.api_key,
                base_url=base_url or None,
                timeout=self.timeout,
                max_retries=0,
            )
        try:
            response = client.messages.create(
                model=self.llm.model,
                max_tokens=MAX_TOKENS,
                temperature=0,
                system=system_prompt,
                messages=[{"role": "user", "content": message}],
            )
        except anthropic.APITimeoutError as exc:
            raise ArbiterFailure("LLM arbitration failed: request timed out") from exc
        except anthropic.APIStatusError as exc:
            raise ArbiterFailure(f"LLM arbitration failed: HTTP {exc.status_code}") from exc
        except anthropic.APIConnectionError as exc:
            raise ArbiterFailure("LLM arbitration failed: transport error") from exc

        try:
            return "".join(
                block.text for block in response.content if getattr(block, "type", "") == "text"
            )
        except (AttributeError, TypeError) as exc:
            raise ArbiterFailure("LLM arbitration failed: unexpected response shape") from exc
