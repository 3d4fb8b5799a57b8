"""SSM Parameter Store service for secure secret retrieval.

Provides cached access to AWS SSM Parameter Store SecureString parameters.
Used for webhook signing secrets and the Stripe API key.
"""

import logging
import time
from collections.abc import Callable
from typing import Any

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)


class SSMServiceError(Exception):
    """Raised when SSM parameter retrieval fails."""

    def __init__(self, message: str, not_found: bool = False) -> None:
        super().__init__(message)
        self.not_found = not_found


class SSMService:
    """Service for retrieving secrets from AWS SSM Parameter Store.

    Features:
    - Retrieves SecureString parameters with automatic decryption
    - In-process caching to avoid repeated API calls
    - Optional cache expiry so rotated secrets are picked up by warm containers

    Usage:
        ssm = SSMService(cache_ttl_seconds=60)
        secret = ssm.get_parameter("/webhooks/dev/webhooks/stripe/secret")
    """

    def __init__(
        self,
        client: Any | None = None,
        cache_ttl_seconds: int | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the SSM client.

        Args:
            client: Pre-built boto3 SSM client (optional)
            cache_ttl_seconds: Seconds a cached value stays valid; None keeps it
                for the life of the process
            clock: Time source for cache expiry
        """
        self._client = client or boto3.client("ssm")
        self._cache_ttl_seconds = cache_ttl_seconds
        self._clock = clock
        self._cache: dict[str, tuple[str, float]] = {}

    def get_parameter(self, name: str, *, use_cache: bool = True) -> str:
        """Retrieve a parameter value from SSM Parameter Store.

        Args:
            name: Full parameter path
            use_cache: Whether to use cached value if available (default: True)

        Returns:
            The decrypted parameter value.

        Raises:
            SSMServiceError: If parameter cannot be retrieved.
        """
        if use_cache and name in self._cache:
            value, fetched_at = self._cache[name]
            age = self._clock() - fetched_at
            if self._cache_ttl_seconds is None or age < self._cache_ttl_seconds:
                logger.debug("SSM cache hit for %s", name)
                return value
            logger.debug("SSM cache entry for %s expired", name)

        try:
            logger.info("Fetching SSM parameter: %s", name)
            response = self._client.get_parameter(Name=name, WithDecryption=True)
            value = response["Parameter"]["Value"]

            self._cache[name] = (value, self._clock())
            return value

        except ClientError as e:
            error_code = e.response.get("Error", {}).get("Code", "Unknown")
            if error_code == "ParameterNotFound":
                self._cache.pop(name, None)
                raise SSMServiceError(f"SSM parameter not found: {name}", not_found=True) from e
            if error_code == "AccessDeniedException":
                raise SSMServiceError(
                    f"Access denied to SSM parameter: {name}. "
                    "Check IAM permissions for ssm:GetParameter."
                ) from e
            raise SSMServiceError(
                f"Failed to retrieve SSM parameter {name}: {e}"
            ) from e

    def clear_cache(self) -> None:
        """Clear all cached parameters.

        Useful after a secret rotation.
        """
        self._cache.clear()
        logger.info("SSM parameter cache cleared")
