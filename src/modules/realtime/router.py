"""
Realtime Module - SSE and WebSocket sessions

Both transports register a LiveSession with the shared SessionRegistry and
drain its queue to the client until the client goes away.

- GET /api/v1/realtime/stream      - Server-Sent Events (Authorization header)
- WS  /api/v1/realtime/ws?token=   - WebSocket (token in the query string)

Every message is a lifecycle event in wire form:
``{"type": "bid:accepted", "jobId": "...", "actorId": "...", "timestamp": "...", ...}``.
"""
import asyncio
import json
from datetime import datetime, timezone
from typing import Any, AsyncGenerator

from fastapi import APIRouter, Query, Request, WebSocket, WebSocketDisconnect, status
from fastapi.responses import StreamingResponse

from src.core.config import settings
from src.core.exceptions import UnauthorizedError
from src.core.logging import get_logger
from src.modules.auth.dependencies import AuthServiceDep, CurrentUser
from src.modules.auth.models import User
from src.modules.notifications.dependencies import SessionRegistryDep
from src.modules.notifications.sessions import LiveSession, SessionRegistry

logger = get_logger(__name__)

router = APIRouter(prefix="/realtime", tags=["Realtime"])


def _heartbeat() -> dict[str, Any]:
    return {"type": "heartbeat", "timestamp": datetime.now(timezone.utc).isoformat()}


async def _register(sessions: SessionRegistry, user: User, transport: str) -> LiveSession:
    return await sessions.register(
        user.id,
        transport,
        is_electrician=user.is_electrician,
        available=bool(user.is_available),
        category=user.service_category,
        city=user.city,
    )


async def _next_message(session: LiveSession) -> dict[str, Any]:
    """Next queued event, or a heartbeat when the queue stays empty."""
    try:
        message = await asyncio.wait_for(session.queue.get(), timeout=settings.sse_heartbeat_seconds)
    except asyncio.TimeoutError:
        return _heartbeat()
    session.queue.task_done()
    return message


async def event_generator(
    request: Request,
    sessions: SessionRegistry,
    session: LiveSession,
) -> AsyncGenerator[str, None]:
    """
    Generate SSE frames.

    Format: event: {type}\\ndata: {json}\\n\\n
    """
    try:
        yield f"event: connected\ndata: {json.dumps({'sessionId': session.id})}\n\n"
        while True:
            if await request.is_disconnected():
                logger.info("SSE client disconnected", user_id=str(session.user_id))
                break
            message = await _next_message(session)
            yield f"event: {message['type']}\ndata: {json.dumps(message, default=str)}\n\n"
    except asyncio.CancelledError:
        logger.info("SSE stream cancelled", user_id=str(session.user_id))
        raise
    finally:
        await sessions.unregister(session)


@router.get("/stream")
async def event_stream(
    request: Request,
    current_user: CurrentUser,
    sessions: SessionRegistryDep,
):
    """
    SSE stream of lifecycle events for the current user.

    Events:
    - `job:new`: a job in your category and city (available electricians only)
    - `bid:new`: someone bid on your job
    - `bid:accepted` / `bid:rejected`: the owner decided on your bid
    - `job:completed` / `job:cancelled`
    - `message:new`
    - `heartbeat`: connection keepalive

    Usage:
    ```javascript
    const source = new EventSource('/api/v1/realtime/stream', {
        headers: { 'Authorization': 'Bearer <token>' }
    });
    source.addEventListener('bid:accepted', (event) => {
        const data = JSON.parse(event.data);
        openConversation(data.conversationId);
    });
    ```
    """
    session = await _register(sessions, current_user, "sse")
    logger.info("SSE stream started", user_id=str(current_user.id))

    return StreamingResponse(
        event_generator(request, sessions, session),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # Disable nginx buffering
        },
    )


async def _pump(websocket: WebSocket, session: LiveSession) -> None:
    while True:
        await websocket.send_json(await _next_message(session))


@router.websocket("/ws")
async def websocket_session(
    websocket: WebSocket,
    sessions: SessionRegistryDep,
    auth_service: AuthServiceDep,
    token: str = Query(...),
):
    """
    WebSocket carrying the same events as the SSE stream.

    Incoming messages:
    - {"action": "ping"}
    - {"action": "availability", "available": true}
    """
    try:
        user = await auth_service.authenticate(token)
    except UnauthorizedError as exc:
        logger.warning("WebSocket rejected", reason=exc.message)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket.accept()
    session = await _register(sessions, user, "websocket")
    pump = asyncio.create_task(_pump(websocket, session))
    try:
        while True:
            data = await websocket.receive_json()
            action = data.get("action") if isinstance(data, dict) else None
            if action == "ping":
                session.offer({"type": "pong", "timestamp": datetime.now(timezone.utc).isoformat()})
            elif action == "availability" and user.is_electrician:
                await sessions.set_availability(user.id, bool(data.get("available")))
    except WebSocketDisconnect:
        logger.info("WebSocket disconnected", user_id=str(user.id))
    except ValueError:
        logger.warning("WebSocket sent malformed JSON", user_id=str(user.id))
        await websocket.close(code=status.WS_1003_UNSUPPORTED_DATA)
    finally:
        pump.cancel()
        await sessions.unregister(session)
