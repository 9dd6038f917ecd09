"""REST endpoints for chat listing, selection management and status."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

if TYPE_CHECKING:
    from src.realtime.fanout import EventFanout
    from src.selection.store import SelectionStore
    from src.session.controller import ReconnectionController

logger = logging.getLogger(__name__)


def _bad_request(message: str) -> JSONResponse:
    return JSONResponse({"error": "Bad request", "message": message}, status_code=400)


async def _json_body(request: Request) -> dict[str, Any]:
    """Parse a JSON object body; anything else reads as empty."""
    try:
        body = await request.json()
    except ValueError:
        return {}
    return body if isinstance(body, dict) else {}


def create_api_router(
    store: SelectionStore,
    controller: ReconnectionController,
    fanout: EventFanout,
) -> APIRouter:
    """Create the ``/api`` router."""
    router = APIRouter(prefix="/api")

    def selection_response(message: str) -> dict[str, Any]:
        selected = store.all()
        return {
            "success": True,
            "message": message,
            "selectedChats": selected,
            "count": len(selected),
        }

    @router.get("/chats")
    async def list_chats() -> JSONResponse:
        if not controller.is_ready:
            return JSONResponse(
                {
                    "error": "WhatsApp client not ready",
                    "message": "Please wait for WhatsApp to connect",
                },
                status_code=503,
            )
        chats = await controller.refresh_chats()
        return JSONResponse([c.to_wire() for c in chats])

    @router.get("/selected")
    async def get_selected() -> dict[str, Any]:
        selected = store.all()
        return {"selectedChats": selected, "count": len(selected)}

    @router.post("/select")
    async def select_chat(request: Request) -> Any:
        chat_id = (await _json_body(request)).get("chatId")
        if not chat_id or not isinstance(chat_id, str):
            return _bad_request("chatId is required")
        store.add(chat_id)
        await fanout.broadcast_selection()
        return selection_response("Chat selected successfully")

    @router.post("/deselect")
    async def deselect_chat(request: Request) -> Any:
        chat_id = (await _json_body(request)).get("chatId")
        if not chat_id or not isinstance(chat_id, str):
            return _bad_request("chatId is required")
        store.remove(chat_id)
        await fanout.broadcast_selection()
        return selection_response("Chat deselected successfully")

    @router.put("/webhook")
    async def update_webhook(request: Request) -> Any:
        url = (await _json_body(request)).get("url")
        if not url or not isinstance(url, str):
            return _bad_request("url is required")
        store.set_endpoint(url)
        return {"success": True, "hasSlackWebhook": True}

    @router.get("/config")
    async def get_config() -> dict[str, Any]:
        return {
            "selectedChatsCount": len(store),
            "serverPort": store.server_port,
            "hasSlackWebhook": bool(store.get_endpoint()),
        }

    @router.get("/health")
    async def health() -> dict[str, Any]:
        return {
            "status": "healthy",
            "whatsappReady": controller.is_ready,
            "timestamp": datetime.now(UTC).isoformat(),
            "selectedChats": len(store),
        }

    @router.get("/session")
    async def get_session() -> dict[str, Any]:
        session = controller.session
        return {
            "state": session.state.value,
            "retryCount": session.retry_count,
            "lastFault": session.last_fault,
            "disconnectReason": session.disconnect_reason,
        }

    @router.post("/session/restart")
    async def restart_session() -> JSONResponse:
        logger.info("Session restart requested")
        controller.restart()
        return JSONResponse(
            {"success": True, "state": controller.state.value},
            status_code=202,
        )

    return router
