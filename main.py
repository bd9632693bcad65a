#!/usr/bin/env python3
"""
Stream Subscriptions - Entry Point
Runs the subscription manager against a session client and serves its control API
"""
import importlib
import inspect
import logging
import os
from typing import Callable, Optional

from aiohttp import web

from subscriptions.api import MANAGER_KEY, attach_manager, setup_routes
from subscriptions.config import SubscriptionOptions
from subscriptions.manager import SubscriptionManager
from subscriptions.utils import make_prefix_predicate

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)
logger = logging.getLogger("stream_subscriptions")


def load_client_factory(path: str) -> Callable:
    """Resolve 'package.module:callable' to the session client factory"""
    module_name, _, attr = path.partition(":")
    if not module_name or not attr:
        raise ValueError(f"SUBSCRIBER_CLIENT_FACTORY must look like 'module:callable', got {path!r}")
    module = importlib.import_module(module_name)
    return getattr(module, attr)


async def start_manager(app: web.Application) -> None:
    """Build the session client and the subscription manager on startup"""
    factory = load_client_factory(os.environ.get("SUBSCRIBER_CLIENT_FACTORY", ""))
    client = factory()
    if inspect.isawaitable(client):
        client = await client

    prefixes = [p for p in os.environ.get("SUBSCRIBER_BOT_UID_PREFIXES", "").split(",") if p.strip()]
    manager = SubscriptionManager(
        client,
        options=SubscriptionOptions.from_env(),
        is_automated=make_prefix_predicate(prefixes),
    )
    attach_manager(app, manager)


async def stop_manager(app: web.Application) -> None:
    manager = app.get(MANAGER_KEY)
    if manager is not None and not manager.destroyed:
        manager.destroy()


def create_app(manager: Optional[SubscriptionManager] = None) -> web.Application:
    """Create and configure the aiohttp application"""
    app = web.Application()
    setup_routes(app)

    if manager is not None:
        attach_manager(app, manager)
    else:
        app.on_startup.append(start_manager)
    app.on_cleanup.append(stop_manager)

    logger.info("🎧 Subscription control API ready • WebSocket enabled")
    return app


def main():
    app = create_app()
    port = int(os.environ.get("PORT", 3000))
    host = os.environ.get("SERVER_HOST", "0.0.0.0")

    logger.info(f"🚀 Starting server on {host}:{port}")
    web.run_app(app, host=host, port=port)


if __name__ == "__main__":
    main()
