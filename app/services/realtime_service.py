"""WebSocket connection registry with room fan-out.

Each process keeps its own registry. With the Redis backplane enabled every
emit is published on a shared channel and each process delivers it to the
sockets it holds, so fan-out reaches clients connected to any worker.
"""

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

import redis.asyncio as aioredis
from fastapi import WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from starlette.concurrency import run_in_threadpool

from app.core.observability import log_event
from app.db.database import Database
from app.services.cache_service import BaseCache, drain_notifications, push_notification

logger = logging.getLogger("productivity.realtime")

BACKPLANE_CHANNEL = "realtime:events"
SUBSCRIBABLE_ROOMS = frozenset({"task", "order", "delivery", "conversation", "dashboard"})
SELF_ONLY_ROOMS = frozenset({"user", "notifications"})
ENTITY_ROOMS = {"task": "tasks", "order": "orders"}


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


def organization_room_key(organization_id: str, kind: str, target: str) -> str:
    # Delivery and conversation rooms are keyed per organization.
    return f"{kind}:{organization_id}:{target}"


@dataclass
class Connection:
    id: str
    websocket: WebSocket
    user_id: str
    role: str | None
    organization_id: str | None
    rooms: set[str] = field(default_factory=set)
    released: bool = False


class RealtimeHub:
    def __init__(
        self,
        cache: BaseCache,
        *,
        database: Database | None = None,
        redis_url: str | None = None,
        backplane: str = "memory",
    ):
        self.cache = cache
        self.database = database
        self._connections: dict[str, Connection] = {}
        self._users: dict[str, set[str]] = {}
        self._rooms: dict[str, set[str]] = {}
        self._backplane_enabled = backplane == "redis" and bool(redis_url)
        self._redis_url = redis_url
        self._redis: aioredis.Redis | None = None
        self._listener: asyncio.Task | None = None
        self.instance_id = uuid.uuid4().hex

    # -- lifecycle ----------------------------------------------------------

    async def start(self) -> None:
        if not self._backplane_enabled or self._listener is not None:
            return
        try:
            self._redis = aioredis.from_url(self._redis_url, decode_responses=True)
            pubsub = self._redis.pubsub(ignore_subscribe_messages=True)
            await pubsub.subscribe(BACKPLANE_CHANNEL)
        except (aioredis.RedisError, OSError) as exc:
            log_event(logger, logging.WARNING, "realtime_backplane_unavailable", error=str(exc))
            self._backplane_enabled = False
            self._redis = None
            return
        self._listener = asyncio.create_task(self._listen(pubsub))
        log_event(logger, logging.INFO, "realtime_backplane_started", channel=BACKPLANE_CHANNEL)

    async def _listen(self, pubsub) -> None:
        try:
            async for message in pubsub.listen():
                if not message or message.get("type") != "message":
                    continue
                try:
                    envelope = json.loads(message["data"])
                except (TypeError, ValueError):
                    continue
                await self._deliver_room(envelope["room"], envelope["message"])
        except asyncio.CancelledError:
            raise
        except aioredis.RedisError as exc:
            log_event(logger, logging.WARNING, "realtime_backplane_error", error=str(exc))
        finally:
            await pubsub.aclose()

    async def close(self) -> None:
        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
        for connection in list(self._connections.values()):
            try:
                await connection.websocket.close(code=1001)
            except RuntimeError:
                pass
            self._forget(connection)

    # -- registry -----------------------------------------------------------

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    def connected_users(self) -> list[str]:
        return sorted(self._users)

    async def is_user_online(self, user_id: str) -> bool:
        if self._users.get(user_id):
            return True
        if self._backplane_enabled:
            return bool(await run_in_threadpool(self.cache.get, f"realtime:online:{user_id}"))
        return False

    def _join(self, connection: Connection, room: str) -> None:
        connection.rooms.add(room)
        self._rooms.setdefault(room, set()).add(connection.id)

    def _leave(self, connection: Connection, room: str) -> None:
        connection.rooms.discard(room)
        members = self._rooms.get(room)
        if members is not None:
            members.discard(connection.id)
            if not members:
                del self._rooms[room]

    def _forget(self, connection: Connection) -> None:
        self._connections.pop(connection.id, None)
        for room in list(connection.rooms):
            self._leave(connection, room)
        user_connections = self._users.get(connection.user_id)
        if user_connections is not None:
            user_connections.discard(connection.id)
            if not user_connections:
                del self._users[connection.user_id]

    async def connect(self, websocket: WebSocket, claims: dict[str, Any]) -> Connection:
        await websocket.accept()
        connection = Connection(
            id=uuid.uuid4().hex,
            websocket=websocket,
            user_id=str(claims["sub"]),
            role=claims.get("role"),
            organization_id=claims.get("org"),
        )
        self._connections[connection.id] = connection
        self._users.setdefault(connection.user_id, set()).add(connection.id)
        self._join(connection, f"user:{connection.user_id}")
        self._join(connection, f"notifications:{connection.user_id}")
        if connection.role:
            self._join(connection, f"role:{connection.role}")
        if connection.organization_id:
            self._join(connection, f"organization:{connection.organization_id}")
        if self._backplane_enabled:
            await run_in_threadpool(self.cache.increment, f"realtime:online:{connection.user_id}", 1)

        log_event(logger, logging.INFO, "realtime_connected", user_id=connection.user_id)
        await self._send(
            connection,
            {
                "event": "connected",
                "data": {
                    "connectionId": connection.id,
                    "userId": connection.user_id,
                    "rooms": sorted(connection.rooms),
                    "timestamp": _timestamp(),
                },
            },
        )

        backlog = await run_in_threadpool(drain_notifications, self.cache, connection.user_id)
        if backlog:
            await self._send(
                connection,
                {"event": "notifications:backlog", "data": {"notifications": backlog, "timestamp": _timestamp()}},
            )
        return connection

    async def disconnect(self, connection: Connection) -> None:
        if connection.released:
            return
        connection.released = True
        self._forget(connection)
        if self._backplane_enabled:
            await run_in_threadpool(self.cache.increment, f"realtime:online:{connection.user_id}", -1)
        log_event(logger, logging.INFO, "realtime_disconnected", user_id=connection.user_id)

    # -- inbound messages ---------------------------------------------------

    async def _room_key(self, connection: Connection, room: str) -> str | None:
        """Resolve a client room name to the registry key, or ``None`` when refused."""
        kind, _, target = room.partition(":")
        if not target:
            return None
        if kind in SELF_ONLY_ROOMS:
            return room if target == connection.user_id else None
        organization_id = connection.organization_id
        if kind not in SUBSCRIBABLE_ROOMS or not organization_id:
            return None
        if kind == "dashboard":
            return room if target == organization_id else None
        if kind in ENTITY_ROOMS:
            if self.database is None:
                return None
            record = await run_in_threadpool(self.database.find_by_id, ENTITY_ROOMS[kind], target)
            if record is None or record.get("organization_id") != organization_id:
                return None
            return room
        return organization_room_key(organization_id, kind, target)

    async def handle_message(self, connection: Connection, raw: str) -> None:
        try:
            message = json.loads(raw)
        except ValueError:
            await self._error(connection, "Invalid JSON message")
            return
        if not isinstance(message, dict):
            await self._error(connection, "Message must be a JSON object")
            return

        action = message.get("action") or message.get("event")
        if action == "ping":
            await self._send(connection, {"event": "pong", "data": {"timestamp": _timestamp()}})
        elif action in {"subscribe", "unsubscribe"}:
            room = str(message.get("room") or "")
            key = await self._room_key(connection, room)
            if key is None and action == "unsubscribe" and room in connection.rooms:
                key = room
            if key is None:
                await self._error(connection, f"Cannot {action} to room '{room}'")
                return
            if action == "subscribe":
                self._join(connection, key)
            else:
                self._leave(connection, key)
            await self._send(connection, {"event": f"{action}d", "data": {"room": room, "timestamp": _timestamp()}})
        elif action == "chat:message":
            conversation_id = message.get("conversationId")
            content = message.get("content")
            if not conversation_id or not content:
                await self._error(connection, "conversationId and content are required")
                return
            if not connection.organization_id:
                await self._error(connection, "Organization context required")
                return
            await self.send_chat_message(
                connection.organization_id,
                str(conversation_id),
                {"content": str(content), "senderId": connection.user_id},
            )
        elif action == "chat:typing":
            conversation_id = message.get("conversationId")
            if not conversation_id:
                await self._error(connection, "conversationId is required")
                return
            if not connection.organization_id:
                await self._error(connection, "Organization context required")
                return
            await self.emit_to_room(
                organization_room_key(connection.organization_id, "conversation", str(conversation_id)),
                "chat:typing",
                {
                    "conversationId": str(conversation_id),
                    "userId": connection.user_id,
                    "isTyping": bool(message.get("isTyping", True)),
                },
            )
        else:
            await self._error(connection, f"Unknown action '{action}'")

    # -- outbound -----------------------------------------------------------

    async def _send(self, connection: Connection, message: dict[str, Any]) -> bool:
        try:
            await connection.websocket.send_json(message)
            return True
        except (WebSocketDisconnect, RuntimeError, OSError) as exc:
            log_event(
                logger,
                logging.WARNING,
                "realtime_send_failed",
                user_id=connection.user_id,
                error=str(exc),
            )
            self._forget(connection)
            return False

    async def _error(self, connection: Connection, message: str) -> None:
        await self._send(connection, {"event": "error", "data": {"message": message, "timestamp": _timestamp()}})

    async def _deliver_room(self, room: str, message: dict[str, Any]) -> int:
        delivered = 0
        for connection_id in list(self._rooms.get(room, ())):
            connection = self._connections.get(connection_id)
            if connection is not None and await self._send(connection, message):
                delivered += 1
        return delivered

    async def emit_to_room(self, room: str, event: str, data: dict[str, Any]) -> int:
        message = jsonable_encoder({"event": event, "data": {**data, "timestamp": _timestamp()}})
        if self._backplane_enabled and self._redis is not None:
            try:
                await self._redis.publish(
                    BACKPLANE_CHANNEL,
                    json.dumps({"room": room, "message": message, "origin": self.instance_id}),
                )
                return 0
            except aioredis.RedisError as exc:
                log_event(logger, logging.WARNING, "realtime_publish_failed", room=room, error=str(exc))
        return await self._deliver_room(room, message)

    async def emit_to_organization(self, organization_id: str, event: str, data: dict[str, Any]) -> int:
        return await self.emit_to_room(f"organization:{organization_id}", event, data)

    async def send_to_user(self, user_id: str, event: str, data: dict[str, Any]) -> int:
        if not await self.is_user_online(user_id):
            notification = jsonable_encoder({"event": event, "data": {**data, "timestamp": _timestamp()}})
            await run_in_threadpool(push_notification, self.cache, user_id, notification)
            return 0
        return await self.emit_to_room(f"user:{user_id}", event, data)

    async def send_task_update(self, task_id: str, payload: dict[str, Any]) -> int:
        return await self.emit_to_room(f"task:{task_id}", "task:update", {"taskId": task_id, **payload})

    async def send_order_update(self, order_id: str, payload: dict[str, Any]) -> int:
        return await self.emit_to_room(f"order:{order_id}", "order:update", {"orderId": order_id, **payload})

    async def send_delivery_update(self, organization_id: str, delivery_id: str, payload: dict[str, Any]) -> int:
        return await self.emit_to_room(
            organization_room_key(organization_id, "delivery", delivery_id),
            "delivery:update",
            {"deliveryId": delivery_id, **payload},
        )

    async def send_chat_message(self, organization_id: str, conversation_id: str, payload: dict[str, Any]) -> int:
        return await self.emit_to_room(
            organization_room_key(organization_id, "conversation", conversation_id),
            "chat:message",
            {"conversationId": conversation_id, **payload},
        )

    async def send_dashboard_update(self, organization_id: str, payload: dict[str, Any]) -> int:
        return await self.emit_to_room(
            f"dashboard:{organization_id}",
            "dashboard:update",
            {"organizationId": organization_id, **payload},
        )
