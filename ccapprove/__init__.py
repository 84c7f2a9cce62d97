"""
cc-approve - permission decisions for Claude Code tool requests.

Requests are resolved by static rules first, then a per-project decision
cache, and only then by an LLM. Installed as a PermissionRequest hook:
  cc-approve install
"""

__version__ = "0.4.0"


def __getattr__(name: str):
    """Lazy imports so the hook entry point only loads what it uses."""
    _public = {
        "DecisionResolver": "ccapprove.resolver",
        "build_resolver": "ccapprove.resolver",
        "DecisionCache": "ccapprove.cache",
        "LLMArbiter": "ccapprove.llm_client",
        "ToolRequest": "ccapprove.models",
        "DecisionResult": "ccapprove.models",
        "classify": "ccapprove.fast_rules",
    }
    if name in _public:
        import importlib
        module = importlib.import_module(_public[name])
        return getattr(module, name)
    raise AttributeError(f"module 'ccapprove' has no attribute {name!r}")


__all__ = [
    "__version__",
    "DecisionResolver",
    "build_resolver",
    "DecisionCache",
    "LLMArbiter",
    "ToolRequest",
    "DecisionResult",
    "classify",
]
