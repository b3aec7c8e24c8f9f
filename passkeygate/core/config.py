import logging
import os
from typing import Optional, Any, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

_settings_instance: Optional["Settings"] = None

dont_use_env = os.getenv("PASSKEYGATE_NO_ENV", "false").lower() in ("true", "1", "t")


class Settings(BaseSettings):
    """
    Manages all service configuration using Pydantic.
    Loads settings from environment variables so a deployment never needs code changes.
    """
    # Relying party / transport
    RP_NAME: str = "PasskeyGate"  # rpID and origin are derived from each request, only the display name is static
    API_ROUTE: str = "/api/passkey"
    CORS_MAX_AGE_SECONDS: int = 600

    # Key-value store
    KV_BACKEND: Literal["sqlite", "memory"] = "sqlite"
    KV_KEY_PREFIX: str = "passkey:"

    # Database settings (only used by the sqlite backend)
    DEFAULT_DATABASE_URI: str = "sqlite+aiosqlite:///./passkeygate.db"  # PROVIDE ASYNC URI
    AUTO_CREATE_DATABASE: bool = True
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 40
    DATABASE_POOL_TIMEOUT: int = 30
    DATABASE_POOL_RECYCLE: int = 1800
    DATABASE_POOL_PRE_PING: bool = True

    # Identity hashing. Changing either namespace orphans every stored user.
    USER_ID_NAMESPACE: str = "passkeygate"
    ASSERTION_HANDLE_NAMESPACE: str = "passkeygate-webauthn"

    # Ceremony settings
    CHALLENGE_TTL_SECONDS: int = 300
    MANAGEMENT_TOKEN_TTL_SECONDS: int = 300
    CHALLENGE_LENGTH_BYTES: int = 32
    CEREMONY_TIMEOUT_MS: int = 60000

    model_config = SettingsConfigDict(env_file=None if dont_use_env else os.getenv("ENV_FILE_NAME", ".env"),
                                      env_file_encoding='utf-8', extra='ignore')


def init_settings(**kwargs: Any) -> "Settings":
    """
    Initializes or re-initializes the global settings singleton. Call it at
    application startup, or in tests, to pin configuration explicitly.

    Args:
        **kwargs: Keyword arguments to initialize settings with.
    """
    global _settings_instance, dont_use_env
    if _settings_instance is not None:
        logger.warning("Settings have already been initialized. Re-initializing.")
    dont_use_env = kwargs.pop("dont_use_env", True)
    _settings_instance = Settings(**kwargs)
    return _settings_instance


def get_settings() -> "Settings":
    """
    Retrieves the global settings singleton.

    If settings have not been initialized via `init_settings()`, they are
    loaded from the environment on first access, unless `PASSKEYGATE_NO_ENV`
    is set.
    """
    global _settings_instance
    if _settings_instance is None:
        if dont_use_env:
            raise RuntimeError(
                "PASSKEYGATE_NO_ENV is set. Settings must be initialized manually "
                "by calling `init_settings()` at application startup."
            )
        logger.debug("Auto-initializing settings on first access.")
        _settings_instance = init_settings(dont_use_env=False)
    return _settings_instance


# `from passkeygate.core.config import settings` resolves attributes lazily,
# so importing a module never forces configuration to load.
class _SettingsProxy:
    def __getattr__(self, name: str) -> Any:
        return getattr(get_settings(), name)


settings = _SettingsProxy()
