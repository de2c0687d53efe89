"""Configuration for the DALL-E MCP service.

``settings`` is a mutable singleton whose attributes fall back to environment
variables.  An embedding host can populate it before startup so keys don't
have to live in the process environment:

    from dalle_mcp.config import settings
    settings.OPENAI_API_KEY = "sk-..."

At startup the values are frozen into a ``ServiceConfig`` via
``load_config()``; everything downstream receives that object instead of
reading the environment itself.
"""

import logging
import os
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

import httpx

logger = logging.getLogger("dalle_mcp.config")

OPENAI_MODELS_URL = "https://api.openai.com/v1/models"

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off", ""}


class ConfigError(Exception):
    pass


class Settings:
    """Lightweight mutable config, one global instance."""

    OPENAI_API_KEY: Optional[str] = None
    MCP_AUTH_TOKEN: Optional[str] = None
    OUTPUT_DIR: Optional[str] = None

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        """Return the attribute value if set, otherwise fall back to env."""
        value = getattr(self, name, None)
        if value is not None:
            return value if isinstance(value, str) else str(value)
        return os.getenv(name, default)

    def get_int(self, name: str, default: Optional[int]) -> Optional[int]:
        raw = self.get(name)
        if raw is None or raw.strip() == "":
            return default
        try:
            return int(raw)
        except ValueError:
            raise ConfigError(f"{name} must be an integer, got {raw!r}")

    def get_bool(self, name: str, default: bool = False) -> bool:
        raw = self.get(name)
        if raw is None:
            return default
        lowered = raw.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
        raise ConfigError(f"{name} must be a boolean, got {raw!r}")


settings = Settings()


@dataclass(frozen=True)
class ServiceConfig:
    api_key: Optional[str] = None
    auth_token: Optional[str] = None
    port: int = 3010
    output_dir: str = "./generated-images"
    log_level: str = "INFO"
    log_to_file: bool = False
    log_file_path: str = "./logs/mcp.log"
    image_generation_rate_limit: int = 10
    image_cleanup_enabled: bool = False
    image_retention_days: int = 7
    image_max_count: Optional[int] = None
    image_cleanup_interval_hours: int = 24
    image_cleanup_dry_run: bool = False
    download_timeout: float = 60.0

    @property
    def retention(self) -> timedelta:
        return timedelta(days=self.image_retention_days)

    @property
    def cleanup_interval(self) -> timedelta:
        return timedelta(hours=self.image_cleanup_interval_hours)

    def redacted(self) -> dict:
        return {
            "api_key": f"{self.api_key[:10]}..." if self.api_key else None,
            "auth_token": "set" if self.auth_token else "not set",
            "port": self.port,
            "output_dir": self.output_dir,
            "log_level": self.log_level,
            "image_cleanup_enabled": self.image_cleanup_enabled,
            "image_retention_days": self.image_retention_days,
            "image_max_count": self.image_max_count,
            "image_cleanup_interval_hours": self.image_cleanup_interval_hours,
        }


# LOG_LEVEL historically took 0-3 (ERROR, WARN, INFO, DEBUG).
_NUMERIC_LOG_LEVELS = {"0": "ERROR", "1": "WARNING", "2": "INFO", "3": "DEBUG"}


def _log_level(raw: Optional[str]) -> str:
    if not raw:
        return "INFO"
    raw = raw.strip().upper()
    if raw in _NUMERIC_LOG_LEVELS:
        return _NUMERIC_LOG_LEVELS[raw]
    if raw == "WARN":
        return "WARNING"
    if raw not in {"ERROR", "WARNING", "INFO", "DEBUG"}:
        raise ConfigError(f"LOG_LEVEL must be one of ERROR, WARN, INFO, DEBUG or 0-3, got {raw!r}")
    return raw


def load_config(source: Settings = settings) -> ServiceConfig:
    """Snapshot ``source`` (and the environment behind it) into a ServiceConfig."""
    max_count = source.get_int("IMAGE_MAX_COUNT", None)
    timeout = source.get("DOWNLOAD_TIMEOUT_SECONDS")
    return ServiceConfig(
        api_key=source.get("OPENAI_API_KEY") or None,
        auth_token=source.get("MCP_AUTH_TOKEN") or None,
        port=source.get_int("PORT", 3010),
        output_dir=source.get("OUTPUT_DIR") or "./generated-images",
        log_level=_log_level(source.get("LOG_LEVEL")),
        log_to_file=source.get_bool("LOG_TO_FILE"),
        log_file_path=source.get("LOG_FILE_PATH") or "./logs/mcp.log",
        image_generation_rate_limit=source.get_int("IMAGE_GENERATION_RATE_LIMIT", 10),
        image_cleanup_enabled=source.get_bool("IMAGE_CLEANUP_ENABLED"),
        image_retention_days=source.get_int("IMAGE_RETENTION_DAYS", 7),
        image_max_count=max_count if max_count and max_count > 0 else None,
        image_cleanup_interval_hours=source.get_int("IMAGE_CLEANUP_INTERVAL_HOURS", 24),
        image_cleanup_dry_run=source.get_bool("IMAGE_CLEANUP_DRY_RUN"),
        download_timeout=float(timeout) if timeout else 60.0,
    )


def is_valid_openai_key_format(api_key: object) -> bool:
    """OpenAI keys start with ``sk-`` (project keys with ``sk-proj-``)."""
    if not api_key or not isinstance(api_key, str):
        return False
    if not api_key.startswith("sk-"):
        return False
    return 20 <= len(api_key) <= 200


@dataclass(frozen=True)
class KeyCheck:
    valid: bool
    error: Optional[str] = None


async def validate_openai_key(api_key: str) -> KeyCheck:
    """Check the key against the API with a cheap model listing call."""
    if not is_valid_openai_key_format(api_key):
        return KeyCheck(False, 'Invalid API key format. OpenAI keys should start with "sk-" or "sk-proj-"')

    try:
        async with httpx.AsyncClient(timeout=15.0) as client:
            response = await client.get(OPENAI_MODELS_URL, headers={"Authorization": f"Bearer {api_key}"})
    except httpx.TransportError as exc:
        logger.warning("OpenAI API unreachable during key validation: %s", exc)
        return KeyCheck(False, "Unable to reach OpenAI API. Please check your internet connection.")

    if response.status_code == 401:
        return KeyCheck(False, "Invalid API key. Please check your OPENAI_API_KEY.")
    if response.status_code == 429:
        logger.warning("OpenAI API rate limit hit during validation, but key appears valid")
        return KeyCheck(True)
    if response.status_code >= 400:
        return KeyCheck(False, f"API key validation failed: HTTP {response.status_code}")
    return KeyCheck(True)


async def validate_config(source: Settings = settings, check_api_key: bool = True) -> ServiceConfig:
    logger.info("Validating configuration...")
    config = load_config(source)

    if not config.api_key:
        raise ConfigError("Missing required environment variable: OPENAI_API_KEY (OpenAI API key for DALL-E access)")
    if not is_valid_openai_key_format(config.api_key):
        raise ConfigError('Invalid OPENAI_API_KEY format. OpenAI keys should start with "sk-" or "sk-proj-"')

    if check_api_key:
        logger.info("Validating OpenAI API key...")
        check = await validate_openai_key(config.api_key)
        if not check.valid:
            raise ConfigError(check.error)
        logger.info("OpenAI API key validated successfully")

    if not config.auth_token:
        logger.warning("MCP_AUTH_TOKEN is not set. API will run without authentication.")

    logger.info("Configuration validated successfully")
    return config
