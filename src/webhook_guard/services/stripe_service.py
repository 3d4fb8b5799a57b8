"""Stripe upstream API access for the reconciliation sweep.

Uses the v8+ StripeClient pattern with the API key from SSM Parameter
Store. Only read operations are exposed: the sweep never writes toward the
provider.
"""

import logging
from typing import Any

import stripe
from pydantic import BaseModel, Field
from stripe import StripeClient

from ..config import GuardConfig
from .ssm_service import SSMService, SSMServiceError

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


class StripeServiceError(Exception):
    """Raised when a Stripe operation fails."""

    def __init__(self, message: str, stripe_error_code: str | None = None) -> None:
        """Initialize with message and optional Stripe error code.

        Args:
            message: Human-readable error message.
            stripe_error_code: Stripe-specific error code if available.
        """
        super().__init__(message)
        self.stripe_error_code = stripe_error_code


class EventPage(BaseModel):
    """One page of the upstream event listing."""

    events: list[dict[str, Any]] = Field(default_factory=list)
    has_more: bool = False

    @property
    def last_event_id(self) -> str | None:
        return self.events[-1]["id"] if self.events else None


def _to_dict(obj: Any) -> dict[str, Any]:
    """StripeObject -> plain dict (recursively where the SDK supports it)."""
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(obj)


class StripeService:
    """Read-only view of Stripe events and payment intents.

    Usage:
        stripe_svc = StripeService(SSMService(), GuardConfig.from_env())
        page = stripe_svc.list_events(created_gte=start, created_lte=end)
    """

    def __init__(
        self,
        ssm: SSMService,
        config: GuardConfig,
        client: StripeClient | None = None,
    ) -> None:
        """Initialize Stripe service.

        Args:
            ssm: SSM service holding the Stripe API key
            config: Guard configuration (parameter paths)
            client: Pre-built StripeClient (optional)
        """
        self._ssm = ssm
        self._config = config
        self._client = client

    def _get_client(self) -> StripeClient:
        """Get or create the Stripe client (lazy initialization).

        Raises:
            StripeServiceError: If credentials cannot be retrieved.
        """
        if self._client is None:
            try:
                secret_key = self._ssm.get_parameter(self._config.stripe_api_key_parameter)
                self._client = StripeClient(secret_key)
                logger.info(
                    "Stripe client initialized for environment: %s",
                    self._config.environment,
                )
            except SSMServiceError as e:
                raise StripeServiceError(f"Failed to initialize Stripe client: {e}") from e
        return self._client

    def list_events(
        self,
        *,
        created_gte: int,
        created_lte: int,
        starting_after: str | None = None,
        limit: int = MAX_PAGE_SIZE,
    ) -> EventPage:
        """Fetch one page of events created inside a window.

        Args:
            created_gte: Window start, epoch seconds (inclusive)
            created_lte: Window end, epoch seconds (inclusive)
            starting_after: Event ID cursor from the previous page
            limit: Page size, at most 100

        Returns:
            EventPage with events as plain dicts.

        Raises:
            StripeServiceError: If the listing fails.
        """
        client = self._get_client()

        params: dict[str, Any] = {
            "created": {"gte": created_gte, "lte": created_lte},
            "limit": min(limit, MAX_PAGE_SIZE),
        }
        if starting_after:
            params["starting_after"] = starting_after

        try:
            page = client.events.list(params=params)
        except stripe.StripeError as e:
            error_code = getattr(e, "code", None)
            logger.error("Stripe event listing failed: %s (code: %s)", str(e), error_code)
            raise StripeServiceError(
                f"Failed to list events: {e}",
                stripe_error_code=error_code,
            ) from e

        return EventPage(
            events=[_to_dict(event) for event in page.data],
            has_more=bool(page.has_more),
        )

    def retrieve_payment_intent(self, payment_intent_id: str) -> dict[str, Any] | None:
        """Fetch a payment intent.

        Args:
            payment_intent_id: Stripe PaymentIntent ID (pi_xxx)

        Returns:
            Payment intent as a dict, or None if Stripe has no such object.

        Raises:
            StripeServiceError: For any other failure.
        """
        client = self._get_client()

        try:
            payment_intent = client.payment_intents.retrieve(payment_intent_id)
        except stripe.InvalidRequestError as e:
            if getattr(e, "code", None) == "resource_missing":
                return None
            logger.error("Stripe payment intent lookup failed: %s", str(e))
            raise StripeServiceError(
                f"Failed to retrieve payment intent {payment_intent_id}: {e}",
                stripe_error_code=getattr(e, "code", None),
            ) from e
        except stripe.StripeError as e:
            error_code = getattr(e, "code", None)
            logger.error("Stripe payment intent lookup failed: %s (code: %s)", str(e), error_code)
            raise StripeServiceError(
                f"Failed to retrieve payment intent {payment_intent_id}: {e}",
                stripe_error_code=error_code,
            ) from e

        return _to_dict(payment_intent)
