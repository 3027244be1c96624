"""API routes package.

Routers are organized by concern:

- webhooks: Stripe webhook deliveries
- success: buyer return from checkout
- payments: payment status lookups
- admin: manual enrollment recovery

All routers are registered in main.py with /api prefix.
"""

from gateway.routes.admin import router as admin_router
from gateway.routes.payments import router as payments_router
from gateway.routes.success import router as success_router
from gateway.routes.webhooks import router as webhooks_router

__all__ = [
    "admin_router",
    "payments_router",
    "success_router",
    "webhooks_router",
]
