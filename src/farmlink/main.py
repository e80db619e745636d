# src/farmlink/main.py
"""Main entry point for the FarmLink application."""

from __future__ import annotations

import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from farmlink import __version__
from farmlink.api.v1 import conversations_router, orders_router
from farmlink.api.v1.dependencies import get_gateway
from farmlink.core.settings import settings
from farmlink.services.order_poller import OrderStatusPoller
from farmlink.services.orders import OrderTracker
from farmlink.services.translation import get_translator

logging.basicConfig(
    level=settings.log_level.upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# Initialize FastAPI app
app = FastAPI(
    title=f"{settings.app_name} API",
    description="Order tracking and multilingual negotiation chat for a farm marketplace",
    version=__version__,
)

# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include API routers
app.include_router(orders_router, prefix="/api/v1")
app.include_router(conversations_router, prefix="/api/v1")


@app.on_event("startup")
async def on_startup() -> None:
    app.state.order_poller = None
    if not settings.order_auto_advance_enabled:
        return

    poller = OrderStatusPoller(OrderTracker(get_gateway()), reload_each_tick=True)
    await poller.start()
    app.state.order_poller = poller
    logger.info("Order auto-advance running every %.1fs", poller.interval)


@app.on_event("shutdown")
async def on_shutdown() -> None:
    poller: OrderStatusPoller | None = getattr(app.state, "order_poller", None)
    if poller:
        await poller.stop()
        poller.tracker.close()
    await get_translator().close()


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the service is running."""
    return {"status": "ok"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint with basic information about the API."""
    return {
        "name": f"{settings.app_name} API",
        "version": __version__,
        "docs": "/docs",
    }


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("farmlink.main:app", host="0.0.0.0", port=8000, reload=settings.debug)
