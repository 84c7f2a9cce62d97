"""Shared fixtures for cc-approve tests."""

import logging

import pytest
from unittest.mock import Mock

from ccapprove.audit import AuditLog
from ccapprove.cache import DecisionCache, MemoryStorage
from ccapprove.config import Paths
from ccapprove.models import Config, LLMDecision
from ccapprove.policy import PolicyState
from ccapprove.project import clear_project_root_cache
from ccapprove.resolver import DecisionResolver


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Point CC_APPROVE_HOME and HOME at temp dirs and drop provider key env vars."""
    home = tmp_path / "cc-approve-home"
    monkeypatch.setenv("CC_APPROVE_HOME", str(home))
    monkeypatch.setenv("HOME", str(tmp_path / "user-home"))
    for name in ("OPENROUTER_API_KEY", "OPENAI_API_KEY", "ANTHROPIC_API_KEY",
                 "CC_APPROVE_API_KEY", "CC_APPROVE_DEBUG"):
        monkeypatch.delenv(name, raising=False)
    clear_project_root_cache()
    yield Paths(home=home)
    clear_project_root_cache()
    logger = logging.getLogger("ccapprove")
    for handler in list(logger.handlers):
        if getattr(handler, "_ccapprove", False):
            logger.removeHandler(handler)
            handler.close()
    logger.propagate = True


@pytest.fixture
def paths(isolated_home):
    return isolated_home


class FakeClock:
    """Manually advanced clock, in epoch seconds."""

    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def storage():
    return MemoryStorage()


@pytest.fixture
def cache(storage, clock):
    return DecisionCache(storage, ttl_hours=168, clock=clock)


@pytest.fixture
def arbiter():
    """Stub arbiter that allows everything and counts calls."""
    stub = Mock()
    stub.arbitrate.return_value = LLMDecision(decision="allow", reason="routine dev command")
    return stub


@pytest.fixture
def audit():
    return AuditLog(":memory:")


@pytest.fixture
def make_resolver(cache, arbiter, audit):
    """Factory for a resolver with in-memory collaborators and a fixed project root."""
    def _create(config=None, project_root="/work/repo", **kwargs):
        return DecisionResolver(
            config or Config(),
            kwargs.pop("cache", cache),
            kwargs.pop("arbiter", arbiter),
            audit=kwargs.pop("audit", audit),
            policy_state=kwargs.pop("policy_state", PolicyState(checked=True)),
            project_resolver=kwargs.pop("project_resolver", lambda cwd: project_root),
            **kwargs,
        )
    return _create
