"""FastAPI application for the WhatsApp to Slack relay."""

from __future__ import annotations

import asyncio
import contextlib
import json
import logging
import os
from collections.abc import AsyncIterator
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, Request, WebSocket
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from src.realtime.fanout import EventFanout
from src.relay.delivery import SlackDeliveryService
from src.relay.engine import RelayEngine
from src.selection.repository import ConfigRepository
from src.selection.store import SelectionStore
from src.server.routes import create_api_router
from src.session.client import BridgeSessionClient, InvalidSessionEventError
from src.session.controller import ReconnectionController, RetryPolicy
from src.session.dispatcher import SessionEventDispatcher

logger = logging.getLogger(__name__)

_DEFAULT_START_DELAY_SECONDS = 2.0


def create_app_from_env() -> FastAPI:
    """Factory for uvicorn --factory: reads config from environment variables."""
    config_path = os.environ.get("CONFIG_PATH", "config.json")
    bridge_url = os.environ.get("BRIDGE_URL", "http://localhost:3001")
    bridge_secret = os.environ.get("BRIDGE_SECRET", "")
    headless = os.environ.get("SESSION_HEADLESS", "true").lower() not in ("0", "false", "no")
    start_delay = float(
        os.environ.get("SESSION_START_DELAY_SECONDS", str(_DEFAULT_START_DELAY_SECONDS)),
    )
    expose_errors = os.environ.get("RELAY_ENV", "") == "development"
    if not bridge_secret:
        logger.warning(
            "BRIDGE_SECRET is not set; bridge events are accepted without a signature",
        )

    store = SelectionStore(ConfigRepository(config_path))
    client = BridgeSessionClient(bridge_url, secret=bridge_secret, headless=headless)
    return create_app(
        client,
        store,
        SlackDeliveryService.from_env(store),
        policy=RetryPolicy.from_env(),
        start_delay=start_delay,
        expose_errors=expose_errors,
    )


def create_app(
    client: BridgeSessionClient,
    store: SelectionStore,
    delivery: SlackDeliveryService,
    policy: RetryPolicy | None = None,
    start_delay: float = _DEFAULT_START_DELAY_SECONDS,
    autostart: bool = True,
    expose_errors: bool = False,
) -> FastAPI:
    """Wire the relay components together and build the app.

    With ``autostart`` the session is started ``start_delay`` seconds after
    the server comes up; the relay worker and event dispatcher always run.
    """
    fanout = EventFanout(store)
    controller = ReconnectionController(client, fanout, policy)
    engine = RelayEngine(store, client, delivery, fanout)
    dispatcher = SessionEventDispatcher(client.events, controller, engine)

    @contextlib.asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        logger.info(
            "Relay starting: %d selected chats, Slack webhook configured: %s",
            len(store), bool(store.get_endpoint()),
        )
        engine.start()
        dispatcher.start()
        starter: asyncio.Task[None] | None = None
        if autostart:
            starter = asyncio.create_task(_delayed_start(controller, start_delay))
        try:
            yield
        finally:
            if starter is not None and not starter.done():
                starter.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await starter
            await controller.stop()
            await dispatcher.stop()
            await engine.stop()
            logger.info("Relay stopped")

    app = FastAPI(docs_url=None, redoc_url=None, lifespan=lifespan)
    app.state.store = store
    app.state.client = client
    app.state.fanout = fanout
    app.state.controller = controller
    app.state.engine = engine
    app.state.dispatcher = dispatcher

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {
            "status": "healthy",
            "message": "WhatsApp to Slack relay is running",
            "timestamp": datetime.now(UTC).isoformat(),
        }

    app.include_router(create_api_router(store, controller, fanout))

    @app.post("/webhook/session")
    async def session_webhook(request: Request) -> JSONResponse:
        """Receive a lifecycle or message event pushed by the bridge."""
        body = await request.body()
        if not client.verify_signature(dict(request.headers), body):
            logger.warning("Bridge event rejected: invalid signature")
            return JSONResponse({"error": "Invalid signature"}, status_code=401)

        try:
            payload = json.loads(body)
        except ValueError:
            return JSONResponse({"error": "Invalid JSON"}, status_code=400)
        if not isinstance(payload, dict):
            return JSONResponse({"error": "Event must be a JSON object"}, status_code=400)

        try:
            event = client.parse_event(payload)
        except InvalidSessionEventError as e:
            logger.warning("Bridge event rejected: %s", e)
            return JSONResponse({"error": str(e)}, status_code=400)

        try:
            client.publish(event)
        except asyncio.QueueFull:
            logger.error("Session event queue full, rejecting %s event", event.type.value)
            return JSONResponse({"error": "Event queue full"}, status_code=503)
        return JSONResponse({"accepted": True}, status_code=202)

    @app.websocket("/ws")
    async def realtime(ws: WebSocket) -> None:
        await ws.accept()
        await fanout.connect(ws, controller.chats if controller.is_ready else None)
        try:
            while True:
                message = await ws.receive()
                if message["type"] == "websocket.disconnect":
                    break
                await fanout.handle_command(ws, _decode_frame(message))
        finally:
            fanout.disconnect(ws)

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        if exc.status_code == 404:
            return JSONResponse(
                {
                    "error": "Not found",
                    "message": "The requested resource was not found",
                },
                status_code=404,
            )
        return JSONResponse({"error": exc.detail}, status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def internal_error(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("Server error on %s %s", request.method, request.url.path)
        return JSONResponse(
            {
                "error": "Internal server error",
                "message": str(exc) if expose_errors else "Something went wrong",
            },
            status_code=500,
        )

    return app


def _decode_frame(message: dict[str, Any]) -> Any:
    """Decode a text or binary JSON frame; undecodable frames read as None."""
    raw = message.get("text")
    if raw is None:
        raw = message.get("bytes")
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except ValueError:
        logger.warning("Observer sent a non-JSON frame")
        return None


async def _delayed_start(controller: ReconnectionController, delay: float) -> None:
    await asyncio.sleep(delay)
    logger.info("Starting WhatsApp session")
    controller.start()
