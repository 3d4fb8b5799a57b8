"""FastAPI application for the webhook ingress.

Receives provider webhooks over HTTP and runs them through the same
authorization gateway as the AppSync authorizer Lambda.
"""

from fastapi import FastAPI
from mangum import Mangum

from .. import __version__
from ..utils.logging import configure_lambda_logging
from .middleware.correlation import CorrelationIdMiddleware
from .routes.health import router as health_router
from .routes.webhooks import router as webhooks_router


def create_app() -> FastAPI:
    """Build the FastAPI application."""
    app = FastAPI(
        title="Webhook Guard API",
        description="Signed webhook ingress for Stripe, GitHub and Shopify",
        version=__version__,
    )

    app.add_middleware(CorrelationIdMiddleware)

    # Include routers under /api prefix
    # This matches CloudFront routing: /api/* → API Gateway
    app.include_router(health_router, prefix="/api")
    app.include_router(webhooks_router, prefix="/api")

    return app


configure_lambda_logging()
app = create_app()

# Lambda handler - Mangum wraps FastAPI for AWS Lambda + API Gateway
handler = Mangum(app, lifespan="off")


def run_server(host: str = "0.0.0.0", port: int = 8080) -> None:
    """Run the FastAPI server locally.

    Args:
        host: Host to bind to (default: 0.0.0.0)
        port: Port to listen on (default: 8080)
    """
    import uvicorn

    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
