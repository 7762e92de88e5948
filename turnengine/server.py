"""HTTP surface for the turn engine.

Uses aiohttp's AppRunner/TCPSite so the server can be started and stopped
from an existing event loop.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Any

from aiohttp import WSMsgType, web

from turnengine.errors import RequestValidationError, UpstreamError, UpstreamTimeout
from turnengine.services import ServiceBundle

logger = logging.getLogger(__name__)

SERVICES = web.AppKey("services", ServiceBundle)


def _services(request: web.Request) -> ServiceBundle:
    return request.app[SERVICES]


async def _health(request: web.Request) -> web.Response:
    """GET /health — liveness plus the number of running background tasks."""
    return web.json_response({
        "status": "ok",
        "background_tasks": _services(request).dispatcher.pending,
    })


async def _handle_turn(request: web.Request) -> web.Response:
    """POST /turns — run one turn synchronously."""
    try:
        payload: Any = await request.json()
    except ValueError:
        return web.json_response({"error": "invalid JSON"}, status=400)

    try:
        response = await _services(request).orchestrator.handle_turn(payload)
    except RequestValidationError as exc:
        logger.info("Rejected turn request: %s", exc)
        return web.json_response({"error": str(exc), "fields": exc.fields}, status=400)
    except UpstreamTimeout as exc:
        logger.warning("Turn timed out: %s", exc)
        return web.json_response({"error": "upstream timeout"}, status=504)
    except UpstreamError as exc:
        logger.warning("Turn failed upstream: %s", exc)
        return web.json_response({"error": "upstream error"}, status=502)

    return web.json_response(response.to_dict())


async def _pump(queue: asyncio.Queue[dict[str, Any]], ws: web.WebSocketResponse) -> None:
    while True:
        event = await queue.get()
        try:
            await ws.send_json(event)
        except ConnectionError as exc:
            logger.info("Live channel send failed: %s", exc)
            return


async def _live(request: web.Request) -> web.WebSocketResponse:
    """GET /live/{owner_id} — websocket stream of the owner's new messages."""
    owner_id = request.match_info["owner_id"]
    hub = _services(request).broadcast

    ws = web.WebSocketResponse(heartbeat=30)
    await ws.prepare(request)
    queue = hub.subscribe(owner_id)
    sender = asyncio.create_task(_pump(queue, ws))
    logger.info("Live channel opened for %s", owner_id)
    try:
        async for msg in ws:
            if msg.type == WSMsgType.ERROR:
                logger.warning("Live channel error for %s: %s", owner_id, ws.exception())
                break
    finally:
        sender.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sender
        hub.unsubscribe(owner_id, queue)
        logger.info("Live channel closed for %s", owner_id)
    return ws


def create_app(services: ServiceBundle) -> web.Application:
    """Build the aiohttp Application with routes."""
    app = web.Application()
    app[SERVICES] = services
    app.router.add_get("/health", _health)
    app.router.add_post("/turns", _handle_turn)
    app.router.add_get("/live/{owner_id}", _live)
    return app


class TurnServer:
    """Manages the aiohttp server lifecycle."""

    def __init__(self, services: ServiceBundle, host: str = "0.0.0.0", port: int = 8080) -> None:
        self._services = services
        self.host = host
        self.port = port
        self._runner: web.AppRunner | None = None

    async def start(self) -> None:
        self._runner = web.AppRunner(create_app(self._services))
        await self._runner.setup()
        site = web.TCPSite(self._runner, self.host, self.port)
        await site.start()
        logger.info("Turn server listening on %s:%d", self.host, self.port)

    async def stop(self) -> None:
        """Shut down the server gracefully."""
        if self._runner is not None:
            await self._runner.cleanup()
            self._runner = None
            logger.info("Turn server stopped")
