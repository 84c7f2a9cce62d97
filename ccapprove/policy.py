"""Policy version guard.

When the compiled-in policy version is newer than the one recorded in the
config, the stored system prompt is replaced and the decision cache is
flushed so no decision made under the old policy is served again. The check
runs at most once per process.
"""

import logging
from dataclasses import dataclass
from typing import Optional

from ccapprove.cache import DecisionCache
from ccapprove.config import ConfigStore
from ccapprove.errors import ConfigError
from ccapprove.models import Config
from ccapprove.prompt import CURRENT_POLICY_VERSION, DEFAULT_SYSTEM_PROMPT

logger = logging.getLogger(__name__)


@dataclass
class PolicyState:
    """Per-process record of whether the version check already ran."""

    checked: bool = False


def needs_upgrade(config: Config, current_version: int = CURRENT_POLICY_VERSION) -> bool:
    """
    >>> needs_upgrade(Config(), current_version=1)
    True
    >>> needs_upgrade(Config.model_validate({"autoUpdateSystemPrompt": False}), 1)
    False
    """
    return config.auto_update_system_prompt and config.llm.system_prompt_version < current_version


def ensure_current(
    state: PolicyState,
    config_store: ConfigStore,
    cache: DecisionCache,
    current_version: int = CURRENT_POLICY_VERSION,
    current_prompt: str = DEFAULT_SYSTEM_PROMPT,
    config: Optional[Config] = None,
) -> bool:
    """Upgrade the stored prompt and flush the cache if the policy is stale.

    ``config`` is the in-memory document the caller resolves with; it is
    updated in place on upgrade. Fallback defaults standing in for an
    unreadable document are upgraded in memory but never saved. Returns True
    if an upgrade happened.
    """
    if state.checked:
        return False
    state.checked = True

    if config is None:
        config = config_store.load()
    if not needs_upgrade(config, current_version):
        return False

    previous = config.llm.system_prompt_version
    config.llm.system_prompt = current_prompt
    config.llm.system_prompt_version = current_version
    logger.info("Policy upgraded from v%s to v%s", previous, current_version)

    if config.is_fallback:
        logger.warning("Config document unusable, policy upgrade kept in memory only")
    else:
        try:
            config_store.save(config)
        except ConfigError as exc:
            logger.warning("Could not persist policy upgrade: %s", exc)
    removed = cache.clear_all()
    logger.info("Flushed %d cached decisions after policy upgrade", removed)
    return True
