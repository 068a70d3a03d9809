import logging

from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from starlette.concurrency import run_in_threadpool

from app.core.errors import UnauthorizedError
from app.core.observability import log_event

router = APIRouter(tags=["realtime"])
logger = logging.getLogger("productivity.realtime")

UNAUTHORIZED_CLOSE_CODE = 4401


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket, token: str | None = Query(default=None)):
    services = websocket.app.state.services
    if not token:
        await websocket.close(code=UNAUTHORIZED_CLOSE_CODE, reason="Authentication token required")
        return
    try:
        claims = await run_in_threadpool(services.auth.verify_token, token)
    except UnauthorizedError as exc:
        log_event(logger, logging.INFO, "realtime_rejected", reason=exc.message)
        await websocket.close(code=UNAUTHORIZED_CLOSE_CODE, reason=exc.message)
        return

    hub = services.realtime
    connection = await hub.connect(websocket, claims)
    try:
        while True:
            raw = await websocket.receive_text()
            await hub.handle_message(connection, raw)
    except WebSocketDisconnect:
        pass
    finally:
        await hub.disconnect(connection)
