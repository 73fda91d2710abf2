"""Minimal aiohttp health endpoint for hosting platforms that health-check ``PORT``."""

from __future__ import annotations

import os

from aiohttp import web

from modledger import get_version
from modledger.util.logger import get_logger

logger = get_logger("health")

SERVICE_NAME = "modledger"


def resolve_port(configured: int) -> int:
    """``PORT`` from the environment wins over the configured port."""
    value = os.getenv("PORT")
    if not value:
        return configured
    try:
        return int(value)
    except ValueError:
        logger.warning("[HEALTH] Ignoring non-numeric PORT=%r; using %s", value, configured)
        return configured


def build_app(is_ready=lambda: True) -> web.Application:
    app = web.Application()

    async def health(_: web.Request) -> web.Response:
        return web.json_response(
            {"ok": True, "service": SERVICE_NAME, "version": get_version(), "ready": bool(is_ready())}
        )

    app.router.add_get("/", health)
    app.router.add_get("/healthz", health)
    return app


async def start_health_server(port: int, is_ready=lambda: True, host: str = "0.0.0.0") -> web.AppRunner:
    runner = web.AppRunner(build_app(is_ready))
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    logger.info("[HEALTH] Health server listening on %s:%s", host, port)
    return runner
