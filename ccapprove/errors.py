"""Exceptions raised inside cc-approve.

None of these escape the hook boundary: hook.run_hook converts anything
that reaches it into a deny response.
"""


class CCApproveError(Exception):
    """Base class for cc-approve errors."""


class InvalidRequestError(CCApproveError):
    """The hook input could not be parsed or failed schema validation."""


class CacheCorruptError(CCApproveError):
    """The cache document exists but is not a JSON object."""


class ConfigError(CCApproveError):
    """The config document could not be written."""
