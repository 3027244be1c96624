"""Runtime configuration for the checkout gateway.

Plain settings are read from environment variables. Secrets are read from an
environment variable when present, otherwise from SSM Parameter Store under
``/evotion/{environment}/...``.

Usage:
    from enrollment.config import get_settings, get_secret, SecretName

    settings = get_settings()
    token = get_secret(SecretName.CLICKFUNNELS_API_TOKEN)
"""

import logging
import os
from dataclasses import dataclass
from enum import Enum
from functools import lru_cache

from enrollment.services.ssm_service import SSMServiceError, get_ssm_service

logger = logging.getLogger(__name__)


class ConfigurationError(Exception):
    """Raised when a required setting or secret is not configured."""

    def __init__(self, message: str, setting: str | None = None) -> None:
        super().__init__(message)
        self.setting = setting


class SecretName(str, Enum):
    """Secrets the gateway needs, with their environment variable names."""

    STRIPE_SECRET_KEY = "STRIPE_SECRET_KEY"
    STRIPE_WEBHOOK_SECRET = "STRIPE_WEBHOOK_SECRET"
    CLICKFUNNELS_API_TOKEN = "CLICKFUNNELS_API_TOKEN"
    ADMIN_API_KEY = "ADMIN_API_KEY"

    @property
    def ssm_suffix(self) -> str:
        return {
            SecretName.STRIPE_SECRET_KEY: "stripe/secret_key",
            SecretName.STRIPE_WEBHOOK_SECRET: "stripe/webhook_secret",
            SecretName.CLICKFUNNELS_API_TOKEN: "clickfunnels/api_token",
            SecretName.ADMIN_API_KEY: "admin/api_key",
        }[self]


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring non-numeric %s=%r, using %s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    return int(_env_float(name, float(default)))


@dataclass(frozen=True)
class Settings:
    """Non-secret settings for the gateway."""

    environment: str = "dev"
    clickfunnels_subdomain: str = ""
    clickfunnels_workspace_id: str = ""
    base_url: str = "http://localhost:3000"
    webhook_timeout_seconds: float = 10.0
    enrollment_max_attempts: int = 3
    enrollment_retry_delay_seconds: float = 1.0
    http_max_retries: int = 3
    http_base_delay_seconds: float = 1.0
    http_max_retry_after_seconds: float = 60.0

    @classmethod
    def from_env(cls) -> "Settings":
        """Build settings from the process environment."""
        return cls(
            environment=os.environ.get("ENVIRONMENT", "dev"),
            clickfunnels_subdomain=os.environ.get("CLICKFUNNELS_SUBDOMAIN", ""),
            clickfunnels_workspace_id=os.environ.get("CLICKFUNNELS_WORKSPACE_ID", ""),
            base_url=os.environ.get("APP_BASE_URL", "http://localhost:3000"),
            webhook_timeout_seconds=_env_float("WEBHOOK_TIMEOUT_SECONDS", 10.0),
            enrollment_max_attempts=_env_int("ENROLLMENT_MAX_ATTEMPTS", 3),
            enrollment_retry_delay_seconds=_env_float("ENROLLMENT_RETRY_DELAY_SECONDS", 1.0),
            http_max_retries=_env_int("HTTP_MAX_RETRIES", 3),
            http_base_delay_seconds=_env_float("HTTP_BASE_DELAY_SECONDS", 1.0),
            http_max_retry_after_seconds=_env_float("HTTP_MAX_RETRY_AFTER_SECONDS", 60.0),
        )

    @property
    def clickfunnels_base_url(self) -> str:
        """Base URL of the ClickFunnels v2 API for the configured subdomain.

        Raises:
            ConfigurationError: If the subdomain is not set.
        """
        if not self.clickfunnels_subdomain:
            raise ConfigurationError(
                "ClickFunnels subdomain is not configured",
                setting="CLICKFUNNELS_SUBDOMAIN",
            )
        return f"https://{self.clickfunnels_subdomain}.myclickfunnels.com/api/v2"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get the shared Settings instance."""
    return Settings.from_env()


def reset_settings() -> None:
    """Drop cached settings (for testing)."""
    get_settings.cache_clear()


def get_secret(name: SecretName, environment: str | None = None) -> str:
    """Resolve a secret from the environment or SSM Parameter Store.

    Args:
        name: Which secret to fetch.
        environment: Environment segment of the SSM path. Defaults to settings.

    Returns:
        The secret value.

    Raises:
        ConfigurationError: If the secret is set nowhere.
    """
    value = os.environ.get(name.value)
    if value:
        return value

    env = environment or get_settings().environment
    path = f"/evotion/{env}/{name.ssm_suffix}"
    try:
        value = get_ssm_service().get_parameter(path)
    except SSMServiceError as e:
        raise ConfigurationError(
            f"{name.value} is not configured: {e}", setting=name.value
        ) from e

    if not value:
        raise ConfigurationError(f"{name.value} is empty", setting=name.value)
    return value
