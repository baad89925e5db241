"""Lightweight HTTP server for the Stripe webhook endpoint."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

import asyncpg
from aiohttp import web

import subsync
from subsync.config import AppConfig, get_config
from subsync.db.pool import check_pool, get_pool
from subsync.payments.provider import StripeProvider
from subsync.payments.resolver import Provider
from subsync.payments.sync import PostgresSubscriptionStore, SubscriptionStore
from subsync.payments.webhooks import handle_webhook

logger = logging.getLogger(__name__)

CONFIG_KEY = web.AppKey("config", AppConfig)
PROVIDER_KEY = web.AppKey("provider", Provider)
STORE_KEY = web.AppKey("store", SubscriptionStore)
POOL_KEY = web.AppKey("pool", asyncpg.Pool)


async def webhook_endpoint(request: web.Request) -> web.Response:
    """Handle POST to the webhook route.

    The body is read as raw bytes and handed on untouched; signature
    verification needs the exact bytes Stripe signed.
    """
    config = request.app[CONFIG_KEY]
    payload = await request.read()

    try:
        return await asyncio.wait_for(
            handle_webhook(
                payload,
                request.headers.get("Stripe-Signature"),
                webhook_secret=config.stripe_webhook_secret.get_secret_value(),
                provider=request.app[PROVIDER_KEY],
                store=request.app[STORE_KEY],
                tolerance=config.webhook_tolerance_seconds,
            ),
            timeout=config.webhook_timeout_seconds,
        )
    except asyncio.TimeoutError:
        logger.error(
            f"Webhook handling exceeded {config.webhook_timeout_seconds}s - "
            "abandoning so Stripe retries"
        )
        return web.json_response({"error": "Timed out"}, status=503)


async def health_endpoint(request: web.Request) -> web.Response:
    """Handle GET /health, including a database round trip when a pool is attached."""
    database = "not_configured"
    pool = request.app.get(POOL_KEY)
    if pool is not None:
        try:
            await asyncio.wait_for(check_pool(pool), timeout=2.0)
            database = "ok"
        except Exception as e:
            logger.warning(f"Health check database query failed: {e}")
            database = "error"

    body = {
        "status": "ok" if database != "error" else "degraded",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": subsync.__version__,
        "database": database,
    }
    return web.json_response(body, status=200 if database != "error" else 503)


def create_app(
    provider: Provider,
    store: SubscriptionStore,
    config: Optional[AppConfig] = None,
    pool: Optional[asyncpg.Pool] = None,
) -> web.Application:
    """Create aiohttp application with webhook and health routes.

    Args:
        provider: Stripe lookup handle shared by all requests
        store: Subscription store shared by all requests
        config: Configuration (defaults to get_config())
        pool: Optional database pool checked by /health

    Returns:
        Configured aiohttp Application

    Raises:
        ValueError: If the webhook signing secret is not configured
    """
    config = config or get_config()
    if not config.stripe_webhook_secret.get_secret_value():
        raise ValueError("stripe_webhook_secret not configured")

    app = web.Application()
    app[CONFIG_KEY] = config
    app[PROVIDER_KEY] = provider
    app[STORE_KEY] = store
    if pool is not None:
        app[POOL_KEY] = pool

    app.router.add_post(config.webhook_path, webhook_endpoint)
    app.router.add_get("/health", health_endpoint)
    return app


async def run_server(shutdown_event: Optional[asyncio.Event] = None) -> None:
    """Run webhook server until shutdown signal.

    Args:
        shutdown_event: Optional event to signal shutdown
    """
    config = get_config()
    pool = await get_pool()
    app = create_app(
        provider=StripeProvider(config.stripe_secret.get_secret_value()),
        store=PostgresSubscriptionStore(pool),
        config=config,
        pool=pool,
    )

    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, config.webhook_server_host, config.webhook_server_port)
    await site.start()

    logger.info(f"Webhook server listening on port {config.webhook_server_port}")
    logger.info(f"Webhook endpoint: {config.webhook_path}")

    if shutdown_event:
        await shutdown_event.wait()
    else:
        await asyncio.Event().wait()

    logger.info("Shutting down webhook server...")
    await runner.cleanup()
