"""Secrets from AWS SSM Parameter Store.

SecureString parameters live under ``/evotion/{environment}/...`` and are
decrypted on read. Values are cached per process for ``cache_ttl_seconds`` so
a warm Lambda container picks up a rotated secret without a redeploy.
"""

import logging
import time
from functools import lru_cache
from typing import Any

import boto3
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger(__name__)

DEFAULT_CACHE_TTL_SECONDS = 300.0


class SSMServiceError(Exception):
    """Raised when a parameter cannot be read."""


class SSMService:
    """Cached reader for SSM SecureString parameters.

    Usage:
        token = get_ssm_service().get_parameter("/evotion/prod/clickfunnels/api_token")
    """

    def __init__(
        self,
        *,
        client: Any | None = None,
        cache_ttl_seconds: float = DEFAULT_CACHE_TTL_SECONDS,
    ) -> None:
        self._client = client
        self._ttl = cache_ttl_seconds
        self._cache: dict[str, tuple[float, str]] = {}

    def _get_client(self) -> Any:
        if self._client is None:
            self._client = boto3.client("ssm")
        return self._client

    def get_parameter(self, name: str, *, use_cache: bool = True) -> str:
        """Read and decrypt one parameter.

        Raises:
            SSMServiceError: If the parameter is missing, access is denied or
                SSM cannot be reached.
        """
        if use_cache and name in self._cache:
            fetched_at, value = self._cache[name]
            if time.monotonic() - fetched_at < self._ttl:
                return value

        logger.info("Reading SSM parameter %s", name)
        try:
            response = self._get_client().get_parameter(Name=name, WithDecryption=True)
        except ClientError as e:
            code = e.response.get("Error", {}).get("Code", "Unknown")
            if code == "ParameterNotFound":
                raise SSMServiceError(f"SSM parameter not found: {name}") from e
            if code == "AccessDeniedException":
                raise SSMServiceError(
                    f"No ssm:GetParameter permission for {name}"
                ) from e
            raise SSMServiceError(f"SSM error reading {name} ({code}): {e}") from e
        except BotoCoreError as e:
            raise SSMServiceError(f"SSM unreachable while reading {name}: {e}") from e

        value = response["Parameter"]["Value"]
        self._cache[name] = (time.monotonic(), value)
        return value

    def clear_cache(self) -> None:
        self._cache.clear()


@lru_cache(maxsize=1)
def get_ssm_service() -> SSMService:
    """Get the shared SSMService instance."""
    return SSMService()


def reset_ssm_service() -> None:
    """Drop the shared instance and its cache (for testing)."""
    get_ssm_service.cache_clear()
