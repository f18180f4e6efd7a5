"""Runtime configuration — env-driven messenger defaults.

Settings are read from ``RELAYBUS_*`` environment variables or a ``.env``
file.  They only supply defaults: every messenger can be constructed with
explicit arguments instead.
"""

from __future__ import annotations

from enum import Enum

from pydantic_settings import BaseSettings, SettingsConfigDict

from relaybus.core.recipients import ReferencePolicy


class ErrorPolicy(str, Enum):
    """What a broadcast does when a handler raises.

    * ``fail_fast`` — abort the remaining handlers and re-raise unchanged.
    * ``collect`` — run every handler, then raise ``HandlerDispatchError``.
    """

    FAIL_FAST = "fail_fast"
    COLLECT = "collect"


class MessengerSettings(BaseSettings):
    """Messenger defaults with environment variable overrides.

    Examples
    --------
    Override via environment::

        export RELAYBUS_DEFAULT_POLICY=strong
        export RELAYBUS_ERROR_POLICY=collect
        export RELAYBUS_LOG_LEVEL=DEBUG
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_prefix="RELAYBUS_",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Policy used by get_default_messenger()
    default_policy: ReferencePolicy = ReferencePolicy.WEAK
    # Applied to messengers constructed without an explicit error_policy
    error_policy: ErrorPolicy = ErrorPolicy.FAIL_FAST
    log_level: str = "WARNING"


# Module-level singleton: import as `from relaybus.config import settings`
settings = MessengerSettings()
