"""
Game Commander — WebSocket Console Stream
════════════════════════════════════════════
Live console of a running instance over WebSocket.

Protocol (JSON messages over WebSocket):
  Client → Server:
    {"type": "attach", "instance_id": "..."}
    {"type": "command", "instance_id": "...", "command": "say hello"}
    {"type": "detach"}

  Server → Client:
    {"type": "event", "event": "attached", "instance_id": "...", "history": [...]}
    {"type": "output", "instance_id": "...", "line": "...", "kind": "output", "timestamp": "..."}
    {"type": "command_done", "instance_id": "...", "exit_code": 0}
    {"type": "error", "error": "not_found", "message": "..."}

Console lines come from the supervisor's poller threads; they are handed to
the event loop with call_soon_threadsafe and drained by one sender task per
connection.
"""

import json
import asyncio
import logging
from typing import Callable, Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect

from .engine import get_manager
from .errors import CommanderError
from .models import ConsoleLine

logger = logging.getLogger(__name__)


class _Session:
    def __init__(self, ws: WebSocket):
        self.ws = ws
        self.loop = asyncio.get_running_loop()
        self.queue: "asyncio.Queue[dict]" = asyncio.Queue()
        self.instance_id: Optional[str] = None
        self.unsubscribe: Optional[Callable[[], None]] = None

    def on_line(self, record: ConsoleLine):
        # Called on a poller thread
        msg = {"type": "output", **record.model_dump()}
        self.loop.call_soon_threadsafe(self.queue.put_nowait, msg)


_sessions: Dict[WebSocket, _Session] = {}


# ── WebSocket Handler ─────────────────────────────────────

async def ws_handler(websocket: WebSocket):
    """Main WebSocket handler for console connections."""
    await websocket.accept()
    session = _Session(websocket)
    _sessions[websocket] = session
    sender = asyncio.create_task(_pump(session))
    logger.info(f"[WS] Client connected ({len(_sessions)} total)")

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                await _send(websocket, {"type": "error", "error": "invalid_spec", "message": "Invalid JSON"})
                continue

            msg_type = msg.get("type", "")
            instance_id = msg.get("instance_id", "") or session.instance_id or ""

            if msg_type == "attach":
                await _handle_attach(session, instance_id)
            elif msg_type == "command":
                await _handle_command(session, instance_id, msg.get("command", ""))
            elif msg_type == "detach":
                _handle_detach(session)
            else:
                await _send(websocket, {"type": "error", "error": "invalid_spec",
                                        "message": f"Unknown type: {msg_type}"})

    except WebSocketDisconnect:
        logger.info("[WS] Client disconnected")
    finally:
        _handle_detach(session)
        sender.cancel()
        _sessions.pop(websocket, None)


# ── Attach / Detach ───────────────────────────────────────

async def _handle_attach(session: _Session, instance_id: str):
    if not instance_id:
        await _send(session.ws, {"type": "error", "error": "invalid_spec", "message": "instance_id required"})
        return

    _handle_detach(session)
    try:
        history, unsubscribe = await asyncio.to_thread(
            get_manager().attach_console, instance_id, session.on_line
        )
    except CommanderError as e:
        await _send(session.ws, {"type": "error", **e.to_dict()})
        return

    session.instance_id = instance_id
    session.unsubscribe = unsubscribe
    logger.info(f"[WS] Attached to {instance_id[:8]}")
    await _send(session.ws, {
        "type": "event",
        "event": "attached",
        "instance_id": instance_id,
        "history": [h.model_dump() for h in history],
    })


def _handle_detach(session: _Session):
    """Unsubscribe only; the poller belongs to the instance, not the client."""
    if session.unsubscribe is not None:
        session.unsubscribe()
        logger.info(f"[WS] Detached from {session.instance_id[:8]}")
    session.unsubscribe = None
    session.instance_id = None


# ── Commands ──────────────────────────────────────────────

async def _handle_command(session: _Session, instance_id: str, command: str):
    if not instance_id or not command:
        await _send(session.ws, {"type": "error", "error": "invalid_spec",
                                 "message": "instance_id and command required"})
        return
    try:
        result = await asyncio.to_thread(get_manager().send_command, instance_id, command)
    except CommanderError as e:
        await _send(session.ws, {"type": "error", **e.to_dict()})
        return
    await _send(session.ws, {
        "type": "command_done",
        "instance_id": instance_id,
        "exit_code": result.exit_code,
    })


# ── Helper ────────────────────────────────────────────────

async def _pump(session: _Session):
    while True:
        msg = await session.queue.get()
        await _send(session.ws, msg)


async def _send(ws: WebSocket, data: dict):
    """Send JSON message to a WebSocket client."""
    try:
        await ws.send_text(json.dumps(data))
    except (RuntimeError, WebSocketDisconnect) as e:
        logger.debug(f"[WS] Send failed: {e}")
