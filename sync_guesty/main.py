import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from sync_guesty.config import ALLOWED_ORIGINS, AVAILABILITY_REFRESH_ENABLED
from sync_guesty.logging_config import setup_logging
from sync_guesty.middleware import RequestIDMiddleware
from sync_guesty.routes.admin import router as admin_router
from sync_guesty.routes.availability import router as availability_router
from sync_guesty.routes.health import router as health_router
from sync_guesty.routes.metrics import router as metrics_router
from sync_guesty.routes.pricing import router as pricing_router
from sync_guesty.routes.webhooks import router as webhooks_router

# Initialize structured logging
setup_logging()
logger = structlog.get_logger(__name__)

app = FastAPI(
    title="Guesty Sync API",
    description=(
        "Availability and pricing cache plus booking sync between the site, Guesty and Stripe"
    ),
    version="1.0.0",
)

app.add_middleware(RequestIDMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS if "*" not in ALLOWED_ORIGINS else ["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Register routers
app.include_router(health_router, tags=["Health"])
app.include_router(metrics_router, tags=["Metrics"])
app.include_router(availability_router, prefix="/api", tags=["Availability"])
app.include_router(pricing_router, prefix="/api", tags=["Pricing"])
app.include_router(admin_router, prefix="/api/admin/guesty", tags=["Admin"])
app.include_router(webhooks_router, prefix="/api/webhooks", tags=["Webhooks"])


@app.on_event("startup")
def startup_event() -> None:
    """Build the process services and start the availability refresh loop."""
    from sync_guesty.db.engine import engine
    from sync_guesty.state import build_services

    logger.info("FastAPI application starting up...")

    services = build_services(engine)
    app.state.services = services

    if AVAILABILITY_REFRESH_ENABLED:
        services.refresher.start()
    else:
        logger.info("availability_refresh_loop_disabled")

    logger.info("FastAPI application initialized", properties=services.catalog.keys())


@app.on_event("shutdown")
def shutdown_event() -> None:
    services = getattr(app.state, "services", None)
    if services is not None:
        services.shutdown()
    logger.info("FastAPI application stopped")
