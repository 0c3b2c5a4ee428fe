"""FastAPI application wiring.

The store is constructed once here and injected into the fulfillment engine;
nothing else holds a reference to it.  The lifespan closes it on shutdown.

Run with:
    uvicorn storefront.app:create_app --factory
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI

from storefront import __version__
from storefront.config import Settings, load_settings
from storefront.fulfillment import FulfillmentEngine
from storefront.notifications import Notifier, ReceiptNotifier
from storefront.storage import Store, build_store
from storefront.webhooks.handlers import WebhookService, register_webhook_routes
from storefront.webhooks.router import EventRouter

logger = logging.getLogger(__name__)

_LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Set the root log format and level once per process."""
    logging.basicConfig(level=level.upper(), format=_LOG_FORMAT)


def create_app(
    settings: Settings | None = None,
    *,
    store: Store | None = None,
    notifier: Notifier | None = None,
) -> FastAPI:
    """Build the webhook service app.

    Settings are loaded (and validated) here, so missing secrets fail the
    process at startup rather than on the first request.
    """
    settings = settings or load_settings()
    configure_logging(settings.log_level)
    grant_ttl = timedelta(hours=settings.download_grant_ttl_hours)

    store = store or build_store(
        settings.database_url,
        min_size=settings.db_pool_min_size,
        max_size=settings.db_pool_max_size,
    )
    notifier = notifier or ReceiptNotifier(
        api_key=settings.resend_api_key,
        sender_email=settings.sender_email,
        base_url=settings.public_base_url,
        api_url=settings.email_api_url,
        timeout=settings.email_timeout_seconds,
        link_ttl=grant_ttl,
    )
    engine = FulfillmentEngine(store, grant_ttl=grant_ttl)
    service = WebhookService(
        secret=settings.stripe_webhook_secret,
        router=EventRouter(engine),
        notifier=notifier,
        tolerance_seconds=settings.webhook_tolerance_seconds,
        unhandled_status=settings.unhandled_event_status,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("Storefront webhook service %s starting", __version__)
        yield
        store.close()
        logger.info("Storefront webhook service stopped")

    app = FastAPI(title="Storefront Webhooks", version=__version__, lifespan=lifespan)
    app.state.store = store

    @app.get("/healthz")
    async def healthz():
        return {"status": "ok"}

    register_webhook_routes(app, service)
    return app
