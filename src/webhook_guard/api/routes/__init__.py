"""API routes package.

- health: Health check endpoint
- webhooks: Signed webhook ingress

All routers are registered in app.py with /api prefix.
"""

from .health import router as health_router
from .webhooks import router as webhooks_router

__all__ = ["health_router", "webhooks_router"]
