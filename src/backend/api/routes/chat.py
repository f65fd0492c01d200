"""
Chat endpoints.

``POST /api/chat`` streams newline-delimited JSON events for one run; the
client going away is the abort signal. ``/ws/chat/{chat_id}`` carries the
same events over a WebSocket, with explicit ``interrupt`` frames.
"""

from __future__ import annotations

import asyncio
import contextlib
import secrets

from collections.abc import AsyncIterator
from typing import Any

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import ValidationError

from api.dependencies import Chats, ChatServiceDep
from api.middleware.request_context import create_websocket_context, get_request_id
from api.services.chat_service import ChatService
from api.websocket.errors import close_with_error, send_ws_error
from core.cancellation import CancellationToken
from models.error_models import ErrorCode
from models.event_models import StreamEvent
from models.schemas.chat import ChatRequest, StoredChat, WSChatMessage, WSInterrupt
from utils.logger import logger
from utils.metrics import ws_connections_active, ws_messages_total

router = APIRouter()
ws_router = APIRouter()

#: Seconds a superseded WebSocket run gets to wind down before it is cancelled
PREVIOUS_RUN_EXIT_TIMEOUT = 5.0
KEEPALIVE_INTERVAL = 30


def new_chat_id() -> str:
    return f"chat_{secrets.token_hex(8)}"


async def _ndjson(events: AsyncIterator[StreamEvent], token: CancellationToken) -> AsyncIterator[str]:
    """Serialize events one per line. Closing the stream early cancels the run."""
    completed = False
    async with contextlib.aclosing(events):
        try:
            async for event in events:
                yield event.to_json() + "\n"
            completed = True
        finally:
            if not completed:
                token.cancel("Client disconnected")


@router.post(
    "/chat",
    summary="Stream a chat run",
    description="Run the tool loop for a conversation and stream its events as newline-delimited JSON.",
    responses={
        200: {"description": "Event stream", "content": {"application/x-ndjson": {}}},
        400: {
            "description": "Missing client id",
            "content": {"application/json": {"example": {"error": "Client ID is required"}}},
        },
    },
)
async def chat(body: ChatRequest, chat_service: ChatServiceDep) -> Any:
    if not body.user_id:
        return JSONResponse(status_code=400, content={"error": "Client ID is required"})

    chat_id = body.chat_id or new_chat_id()
    token = CancellationToken()
    events = chat_service.stream_chat(body, chat_id, token)

    return StreamingResponse(
        _ndjson(events, token),
        media_type="application/x-ndjson",
        headers={"X-Chat-ID": chat_id},
    )


@router.get("/chat/{chat_id}", response_model=StoredChat, summary="Get a saved conversation")
async def get_chat(chat_id: str, chats: Chats) -> StoredChat:
    stored = await chats.get_chat(chat_id)
    if stored is None:
        raise HTTPException(status_code=404, detail=f"Chat not found: {chat_id}")
    return stored


@ws_router.websocket("/chat/{chat_id}")
async def chat_websocket(websocket: WebSocket, chat_id: str) -> None:
    """WebSocket endpoint for chat streaming."""
    chat_service: ChatService = websocket.app.state.chat_service

    client_ip = websocket.client.host if websocket.client else None
    create_websocket_context(websocket.url.path, chat_id, client_ip=client_ip)

    await websocket.accept()
    ws_connections_active.inc()
    logger.info(f"WebSocket connected for chat {chat_id}", chat_id=chat_id)

    # Active run and its cancellation token for this connection
    active_task: asyncio.Task[None] | None = None
    active_token: CancellationToken | None = None

    try:
        keepalive_task = asyncio.create_task(_keepalive(websocket))
        try:
            async for data in websocket.iter_json():
                ws_messages_total.labels(direction="inbound").inc()
                msg_type = data.get("type") if isinstance(data, dict) else None

                if msg_type == "message":
                    try:
                        message = WSChatMessage.model_validate(data)
                    except ValidationError as e:
                        await send_ws_error(
                            websocket,
                            code=ErrorCode.WS_MESSAGE_INVALID,
                            message="Invalid message frame",
                            chat_id=chat_id,
                            details={"errors": e.errors(include_url=False, include_context=False)},
                        )
                        continue
                    if not message.user_id:
                        await send_ws_error(
                            websocket,
                            code=ErrorCode.WS_MESSAGE_INVALID,
                            message="Client ID is required",
                            chat_id=chat_id,
                        )
                        continue

                    # A new message supersedes the running one
                    if active_task and not active_task.done():
                        await _stop_run(active_task, active_token, "New message received", chat_id)

                    active_token = CancellationToken()
                    active_task = asyncio.create_task(
                        _handle_chat_message(message, chat_id, chat_service, websocket, active_token),
                        name=f"ws-chat-{chat_id}",
                    )

                elif msg_type == "interrupt":
                    try:
                        interrupt = WSInterrupt.model_validate(data)
                    except ValidationError:
                        interrupt = WSInterrupt()
                    if active_task and not active_task.done() and active_token is not None:
                        logger.info(f"Interrupt received for chat {chat_id}", chat_id=chat_id)
                        active_token.cancel(reason=interrupt.reason or "User interrupt")
                    else:
                        logger.info(f"No active run to interrupt for chat {chat_id}", chat_id=chat_id)

                else:
                    await send_ws_error(
                        websocket,
                        code=ErrorCode.WS_MESSAGE_INVALID,
                        message=f"Unknown message type: {msg_type}",
                        chat_id=chat_id,
                    )
        finally:
            keepalive_task.cancel()
            if active_task and not active_task.done():
                await _stop_run(active_task, active_token, "Connection closing", chat_id)
    except WebSocketDisconnect:
        pass  # Normal client disconnect
    except RuntimeError as e:
        # "WebSocket is not connected" when the client vanished mid-send
        if "not connected" not in str(e).lower():
            raise
    except Exception as e:
        logger.error(f"WebSocket error for chat {chat_id}: {e}", chat_id=chat_id, exc_info=True)
        await close_with_error(websocket, ErrorCode.INTERNAL_ERROR, "Internal server error", chat_id=chat_id)
    finally:
        ws_connections_active.dec()
        logger.info(f"WebSocket closed for chat {chat_id}", chat_id=chat_id)


async def _stop_run(
    task: asyncio.Task[None],
    token: CancellationToken | None,
    reason: str,
    chat_id: str,
) -> None:
    """Cancel a run cooperatively and wait briefly for it to exit."""
    if token is not None:
        token.cancel(reason=reason)
    try:
        await asyncio.wait_for(asyncio.shield(task), timeout=PREVIOUS_RUN_EXIT_TIMEOUT)
    except TimeoutError:
        logger.warning(f"Previous run didn't exit within timeout for {chat_id}", chat_id=chat_id)
        task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await task


async def _handle_chat_message(
    message: WSChatMessage,
    chat_id: str,
    chat_service: ChatService,
    websocket: WebSocket,
    cancellation_token: CancellationToken,
) -> None:
    """Run one chat and forward its events (runs as a background task)."""
    events = chat_service.stream_chat(message, chat_id, cancellation_token)
    try:
        async with contextlib.aclosing(events):
            async for event in events:
                if cancellation_token.is_cancelled:
                    break
                await websocket.send_json(event.to_dict())
                ws_messages_total.labels(direction="outbound").inc()
    except asyncio.CancelledError:
        cancellation_token.cancel("Run task cancelled")
        raise
    except Exception as e:
        cancellation_token.cancel("Run failed")
        logger.error(
            f"Chat processing error: {e}",
            chat_id=chat_id,
            request_id=get_request_id(),
            exc_info=True,
        )
        await send_ws_error(
            websocket,
            code=ErrorCode.INTERNAL_ERROR,
            message=f"Chat processing failed: {type(e).__name__}",
            chat_id=chat_id,
        )


async def _keepalive(websocket: WebSocket) -> None:
    """Send periodic ping frames."""
    while True:
        await asyncio.sleep(KEEPALIVE_INTERVAL)
        try:
            await websocket.send_json({"type": "ping"})
        except Exception:
            break
