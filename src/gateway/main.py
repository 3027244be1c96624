"""ASGI application: Stripe webhooks, the checkout success page, payment
status and admin recovery, all mounted under ``/api``.

``handler`` is the Lambda entry point; ``run_server`` serves the same app
with uvicorn for local work.
"""

import logging
import os
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from mangum import Mangum

from enrollment import __version__
from enrollment.services.clickfunnels_client import get_clickfunnels_client
from enrollment.services.webhook_router import drain_background_tasks
from enrollment.utils.logging import configure_logging
from gateway.exceptions import register_exception_handlers
from gateway.middleware.correlation import CorrelationIdMiddleware
from gateway.routes import admin, payments, success, webhooks

logger = logging.getLogger(__name__)
configure_logging(os.environ.get("LOG_LEVEL", "INFO").upper())

# The storefront calls payment-status from the browser
STOREFRONT_ORIGINS = [
    origin.strip()
    for origin in os.environ.get("STOREFRONT_ORIGINS", "http://localhost:3000").split(",")
    if origin.strip()
]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    yield
    await drain_background_tasks()
    await get_clickfunnels_client().aclose()
    logger.info("Checkout gateway stopped")


app = FastAPI(
    title="Checkout Gateway API",
    description="Stripe webhook and success-page reconciliation with ClickFunnels",
    version=__version__,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=STOREFRONT_ORIGINS,
    allow_methods=["GET", "POST"],
    allow_headers=["Content-Type", "Authorization"],
)
app.add_middleware(CorrelationIdMiddleware)

register_exception_handlers(app)

for module in (webhooks, success, payments, admin):
    app.include_router(module.router, prefix="/api")


@app.get("/api/ping")
async def ping() -> dict[str, Any]:
    return {
        "status": "ok",
        "timestamp": datetime.now(UTC).isoformat(),
        "service": "checkout-gateway",
    }


# API Gateway / Lambda; startup and shutdown happen per invocation
handler = Mangum(app, lifespan="off")


def run_server() -> None:
    """Serve the app with uvicorn. ``HOST``, ``PORT`` and ``RELOAD`` override the defaults."""
    import uvicorn

    host = os.environ.get("HOST", "127.0.0.1")
    port = int(os.environ.get("PORT", "8080"))
    if os.environ.get("RELOAD", "").lower() in {"1", "true", "yes"}:
        uvicorn.run("gateway.main:app", host=host, port=port, reload=True, reload_dirs=["src"])
    else:
        uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
