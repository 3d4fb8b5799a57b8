"""Webhook ingress endpoints.

Provides ``POST /webhooks/{provider}`` for Stripe, GitHub and Shopify. The
raw body and the provider's signature header go through the authorization
gateway; only an allow is acknowledged with 202.

These endpoints do NOT require JWT authentication as they receive
signed payloads from external services.
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from starlette.concurrency import run_in_threadpool
from starlette.status import HTTP_202_ACCEPTED, HTTP_401_UNAUTHORIZED, HTTP_404_NOT_FOUND

from ...dependencies import get_gateway
from ...models.enums import WebhookProvider
from ...models.webhook import WebhookRequest
from ...services.authorization import AuthorizationGateway
from ...utils.logging import get_logger
from ...verification.detector import HASH_PREFIX

logger = get_logger(__name__)

router = APIRouter(tags=["webhooks"])

# Signature header sent by each provider
SIGNATURE_HEADERS: dict[WebhookProvider, str] = {
    WebhookProvider.STRIPE: "Stripe-Signature",
    WebhookProvider.GITHUB: "X-Hub-Signature-256",
    WebhookProvider.SHOPIFY: "X-Shopify-Hmac-Sha256",
}


# === Response Models ===


class WebhookAck(BaseModel):
    """Acknowledgement for an authorized webhook."""

    received: bool = True
    provider: str
    event_id: str | None = None
    event_type: str | None = None
    duplicate: str


class WebhookRejected(BaseModel):
    """Rejection body; carries no reason."""

    received: bool = False


# === Webhook Endpoint ===


@router.post(
    "/webhooks/{provider}",
    summary="Receive a signed webhook",
    description="""
Authorizes a webhook from Stripe, GitHub or Shopify by verifying its
signature over the raw body.

**Idempotent**: Redelivered events are accepted and flagged with `duplicate=true`.
""",
    status_code=HTTP_202_ACCEPTED,
    response_model=WebhookAck,
    responses={
        401: {"description": "Webhook not authorized", "model": WebhookRejected},
        404: {"description": "Unsupported provider"},
    },
)
async def receive_webhook(
    provider: str,
    request: Request,
    gateway: AuthorizationGateway = Depends(get_gateway),
) -> WebhookAck | JSONResponse:
    """Verify an inbound webhook and acknowledge it if authorized."""
    declared = WebhookProvider.from_label(provider)
    if declared not in SIGNATURE_HEADERS:
        raise HTTPException(status_code=HTTP_404_NOT_FOUND, detail="Unsupported provider")

    payload = await request.body()
    signature = request.headers.get(SIGNATURE_HEADERS[declared], "")
    # Shopify sends the bare base64 digest; detection keys on the sha256= prefix
    if declared is WebhookProvider.SHOPIFY and signature and not signature.startswith(HASH_PREFIX):
        signature = HASH_PREFIX + signature

    webhook_request = WebhookRequest(
        payload=payload,
        signature_header=signature,
        declared_provider=declared,
        operation_name=f"webhooks/{declared.value}",
        request_id=getattr(request.state, "correlation_id", None),
    )
    decision = await run_in_threadpool(gateway.authorize, webhook_request)

    if not decision.is_authorized or decision.resolver_context is None:
        logger.info("Rejected %s webhook over HTTP", declared.value)
        return JSONResponse(
            status_code=HTTP_401_UNAUTHORIZED,
            content=WebhookRejected().model_dump(),
        )

    context = decision.resolver_context
    return WebhookAck(
        provider=context.provider.value,
        event_id=context.event_id,
        event_type=context.event_type,
        duplicate=context.duplicate.value,
    )
