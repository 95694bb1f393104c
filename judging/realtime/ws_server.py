"""
Judging WebSocket endpoint

URL: /ws/judging?token={jwt}

The token is verified before the socket is accepted; a missing or invalid
token closes the handshake with 1008.

Client frames:
- {"event": "join-session", "data": {"sessionId": 42}}
- {"event": "leave-session", "data": {"sessionId": 42}}
- {"event": "submit-rating", "data": {"sessionId": 42, "rating": 70}}
- {"event": "ping"}

Server frames:
- {"event": "consensus-update", "topic": "session:42", "data": {...}}
- {"event": "session-ended", "topic": "session:42", "data": {...}}
- {"event": "pong", "data": {"timestamp": ...}}
- {"event": "error", "data": {"error": ...}} for malformed frames only

A submit-rating that does not qualify (not an active judge, session not
live, non-numeric rating) is dropped without any reply.
"""
import json
import logging
from typing import Any, Dict, Optional

from fastapi import Query, WebSocket, WebSocketDisconnect

from judging.core.timeutil import utcnow
from judging.errors import UnauthorizedError
from judging.security import Identity
from judging.services.rating_service import record_rating
from .connection_manager import ConnectionManager
from .topics import (
    CLIENT_EVENTS, CONSENSUS_UPDATE, ERROR, JOIN_SESSION, LEAVE_SESSION,
    PING, PONG, SUBMIT_RATING, Topic
)

logger = logging.getLogger(__name__)


def _session_id(data: Any) -> Optional[int]:
    """sessionId from {"sessionId": n} or a bare id."""
    if isinstance(data, dict):
        data = data.get("sessionId")
    if isinstance(data, bool):
        return None
    try:
        return int(data)
    except (TypeError, ValueError):
        return None


def _error_frame(message: str) -> Dict[str, Any]:
    return {"event": ERROR, "data": {"error": message}}


async def handle_submit_rating(
    websocket: WebSocket,
    manager: ConnectionManager,
    identity: Identity,
    data: Any
) -> None:
    if not isinstance(data, dict):
        return
    session_id = _session_id(data)
    if session_id is None:
        return

    database = websocket.app.state.db
    async with database.session() as db:
        recorded = await record_rating(db, session_id, identity, data.get("rating"))

    if recorded is None:
        return

    await manager.publish(Topic.session(session_id), CONSENSUS_UPDATE, {
        "sessionId": session_id,
        "consensus": recorded.consensus.as_float(),
        "judgeCount": recorded.consensus.judge_count,
        "timestamp": recorded.snapshot.timestamp.isoformat(),
    })


async def judging_websocket(websocket: WebSocket, token: Optional[str] = Query(None)):
    verifier = websocket.app.state.token_verifier
    try:
        identity = verifier.verify(token)
    except UnauthorizedError as e:
        logger.info(f"WebSocket handshake rejected: {e.message}")
        await websocket.close(code=1008, reason=e.message)
        return

    manager: ConnectionManager = websocket.app.state.connection_manager
    await manager.connect(websocket, identity)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                manager.send_to(websocket, _error_frame("Invalid JSON"))
                continue

            if not isinstance(frame, dict) or frame.get("event") not in CLIENT_EVENTS:
                manager.send_to(websocket, _error_frame(
                    f"Unknown event. Allowed: {sorted(CLIENT_EVENTS)}"
                ))
                continue

            event = frame["event"]
            data = frame.get("data")

            if event == PING:
                manager.send_to(websocket, {"event": PONG, "data": {"timestamp": utcnow().isoformat()}})

            elif event in (JOIN_SESSION, LEAVE_SESSION):
                session_id = _session_id(data)
                if session_id is None:
                    manager.send_to(websocket, _error_frame("sessionId is required"))
                    continue
                if event == JOIN_SESSION:
                    manager.join(websocket, Topic.session(session_id))
                else:
                    manager.leave(websocket, Topic.session(session_id))

            elif event == SUBMIT_RATING:
                try:
                    await handle_submit_rating(websocket, manager, identity, data)
                except Exception:
                    logger.exception(f"Rating submission failed for {identity.role}:{identity.user_id}")

    except WebSocketDisconnect:
        pass
    finally:
        await manager.disconnect(websocket)
