"""Authenticated chat WebSocket with in-process room fan-out.

Client frames are JSON objects with a ``type`` field:

    {"type": "join_room", "userId": 1, "roomId": "room_..."}
    {"type": "message", "roomId": "room_...", "userId": 1, "message": "hello"}
    {"type": "typing", "roomId": "room_...", "userId": 1, "isTyping": true}
    {"type": "leave_room"}
    {"type": "pong"}

Server frames are ``{"type": <event>, "data": {...}}`` where event is one of
``joined``, ``message``, ``user_joined``, ``user_left``, ``typing``, ``error``
or ``ping``. Chat messages arrive as two ``message`` frames, the user's own
text (``data.type == "user"``) followed by the reply (``data.type == "ai"``).
The sender is always the authenticated user; a ``userId`` in a client frame
is ignored.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass, field

from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

import database
from auth import user_from_token
from errors import AppError
from logging_config import room_id_var
from services.analytics import track_exchange
from services.chat import chat_service
from services.pipeline import get_pipeline

logger = logging.getLogger(__name__)

router = APIRouter()

HEARTBEAT_INTERVAL = 30  # seconds
PONG_TIMEOUT = 10  # seconds


@dataclass(eq=False)
class Connection:
    websocket: WebSocket
    user_id: int
    room_id: str | None = None
    closed: bool = False
    last_activity: float = field(default_factory=time.monotonic)

    async def send(self, event: str, data: dict | None = None) -> None:
        if self.closed or self.websocket.client_state != WebSocketState.CONNECTED:
            return
        await self.websocket.send_json({"type": event, "data": data or {}})
        self.last_activity = time.monotonic()


class RoomManager:
    """Tracks which connections sit in which room; only this class touches the map."""

    def __init__(self):
        self._rooms: dict[str, set[Connection]] = {}

    def join(self, conn: Connection, room_id: str) -> None:
        self.leave(conn)
        conn.room_id = room_id
        self._rooms.setdefault(room_id, set()).add(conn)

    def leave(self, conn: Connection) -> str | None:
        room_id = conn.room_id
        if room_id is None:
            return None
        members = self._rooms.get(room_id)
        if members is not None:
            members.discard(conn)
            if not members:
                del self._rooms[room_id]
        conn.room_id = None
        return room_id

    def members(self, room_id: str) -> list[Connection]:
        return list(self._rooms.get(room_id, ()))

    def room_count(self) -> int:
        return len(self._rooms)

    def connection_count(self) -> int:
        return sum(len(members) for members in self._rooms.values())

    async def broadcast(self, room_id: str, event: str, data: dict, exclude: Connection | None = None) -> None:
        for member in self.members(room_id):
            if member is exclude:
                continue
            try:
                await member.send(event, data)
            except Exception:
                logger.warning("Dropping frame to user %s in %s", member.user_id, room_id, exc_info=True)


rooms = RoomManager()


def _authenticate(token: str):
    db = database.SessionLocal()
    try:
        return user_from_token(token, db)
    except AppError:
        return None
    finally:
        db.close()


def _join_chat(user_id: int, room_id: str) -> None:
    """Register the join on a stored chat; rooms without history are created on first message."""
    db = database.SessionLocal()
    try:
        if chat_service.get_chat(db, room_id) is not None:
            chat_service.join_chat(db, user_id, room_id)
    finally:
        db.close()


async def _handle_join(conn: Connection, msg: dict) -> None:
    room_id = str(msg.get("roomId") or "").strip()
    if not room_id:
        await conn.send("error", {"message": "roomId is required"})
        return
    try:
        await asyncio.to_thread(_join_chat, conn.user_id, room_id)
    except AppError as exc:
        await conn.send("error", {"message": exc.message})
        return

    previous = rooms.leave(conn)
    if previous and previous != room_id:
        await rooms.broadcast(previous, "user_left", _presence(conn, previous))
    rooms.join(conn, room_id)
    room_id_var.set(room_id)
    await conn.send("joined", {"roomId": room_id})
    await rooms.broadcast(room_id, "user_joined", _presence(conn, room_id), exclude=conn)
    logger.info("User %s joined room %s", conn.user_id, room_id)


async def _handle_message(conn: Connection, msg: dict) -> None:
    text = str(msg.get("message") or "").strip()
    room_id = str(msg.get("roomId") or conn.room_id or "")
    if not text or not room_id:
        await conn.send("error", {"message": "message and roomId are required"})
        return
    if conn.room_id != room_id:
        await _handle_join(conn, {"roomId": room_id})
        if conn.room_id != room_id:
            return

    db = database.SessionLocal()
    try:
        result = await get_pipeline().process(
            text, conn.user_id, room_id, db=db, metadata={"platform": "websocket"}
        )
    except Exception:
        logger.exception("Error processing message in room %s", room_id)
        await conn.send("error", {"message": "Failed to process message"})
        return
    finally:
        db.close()

    now = _now_ms()
    await rooms.broadcast(
        room_id,
        "message",
        {
            "id": result.get("message_id"),
            "userId": conn.user_id,
            "roomId": room_id,
            "message": text,
            "response": result["response"],
            "timestamp": now,
            "type": "user",
        },
    )
    await rooms.broadcast(
        room_id,
        "message",
        {
            "id": f"ai_{now}",
            "userId": "ai",
            "roomId": room_id,
            "message": result["response"],
            "timestamp": now,
            "type": "ai",
            "intent": result["intent"],
            "confidence": result["confidence"],
        },
    )

    track_exchange(conn.user_id, room_id, text, result, {"platform": "websocket"})


async def _handle_typing(conn: Connection, msg: dict) -> None:
    room_id = str(msg.get("roomId") or conn.room_id or "")
    if not room_id:
        return
    await rooms.broadcast(
        room_id,
        "typing",
        {"userId": conn.user_id, "roomId": room_id, "isTyping": bool(msg.get("isTyping"))},
        exclude=conn,
    )


def _now_ms() -> int:
    return int(time.time() * 1000)


def _presence(conn: Connection, room_id: str) -> dict:
    return {"userId": conn.user_id, "roomId": room_id, "timestamp": _now_ms()}


@router.websocket("/ws/chat")
async def chat_ws(websocket: WebSocket, token: str = ""):
    user = _authenticate(token) if token else None
    if user is None:
        await websocket.close(code=1008, reason="Invalid or missing token")
        return

    await websocket.accept()
    conn = Connection(websocket=websocket, user_id=user.id)
    waiting_pong = False
    pong_deadline = 0.0

    async def _reader() -> None:
        nonlocal waiting_pong
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            conn.last_activity = time.monotonic()
            raw = message.get("text")
            if not raw:
                continue
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await conn.send("error", {"message": "Invalid JSON frame"})
                continue
            if not isinstance(msg, dict):
                await conn.send("error", {"message": "Invalid frame"})
                continue

            msg_type = msg.get("type")
            if msg_type == "join_room":
                await _handle_join(conn, msg)
            elif msg_type == "message":
                await _handle_message(conn, msg)
            elif msg_type == "typing":
                await _handle_typing(conn, msg)
            elif msg_type == "leave_room":
                left = rooms.leave(conn)
                if left:
                    await rooms.broadcast(left, "user_left", _presence(conn, left))
            elif msg_type == "pong":
                waiting_pong = False
            else:
                await conn.send("error", {"message": f"Unknown event: {msg_type}"})

    async def _heartbeat() -> None:
        """Send ping every HEARTBEAT_INTERVAL; close if no pong within PONG_TIMEOUT."""
        nonlocal waiting_pong, pong_deadline
        while True:
            await asyncio.sleep(1)
            now = time.monotonic()
            if waiting_pong and now > pong_deadline:
                logger.debug("Chat WS pong timeout for user %s, closing", conn.user_id)
                return
            if not waiting_pong and (now - conn.last_activity) >= HEARTBEAT_INTERVAL:
                await conn.send("ping")
                waiting_pong = True
                pong_deadline = now + PONG_TIMEOUT

    tasks: list[asyncio.Task] = []
    try:
        tasks = [
            asyncio.create_task(_reader(), name="chat-ws-reader"),
            asyncio.create_task(_heartbeat(), name="chat-ws-heartbeat"),
        ]
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for t in done:
            exc = t.exception()
            if exc and not isinstance(exc, WebSocketDisconnect):
                logger.warning("Chat WS task %s failed: %s", t.get_name(), exc)
    except WebSocketDisconnect:
        pass
    finally:
        conn.closed = True
        for t in tasks:
            if not t.done():
                t.cancel()
        left = rooms.leave(conn)
        if left:
            await rooms.broadcast(left, "user_left", _presence(conn, left))
        logger.info("User %s disconnected", conn.user_id)
        if websocket.client_state == WebSocketState.CONNECTED:
            try:
                await websocket.close()
            except RuntimeError:
                pass
