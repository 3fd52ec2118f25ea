"""
Message Bridge over WebSocket.

A UI layer connects to ``/ws/uploads``, sends bridge commands as JSON text
frames and receives the events of its own uploads as JSON.

Upload ids are scoped to the connection: two clients may use the same id
without seeing or cancelling each other's uploads. Files must be sent
inline as base64 ``file.content``; paths on the server are refused.
"""

import json
import logging
import uuid
from typing import Any, Dict, Optional, Set

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ....core.domain.messages import BridgeEvent, CommandKind
from ....core.interfaces.messaging import IMessageBridge

router = APIRouter()
logger = logging.getLogger(__name__)

_connections: Set[WebSocket] = set()

_SESSION_KINDS = {CommandKind.ENCODE.value, CommandKind.UPLOAD.value, CommandKind.CANCEL.value}


def connection_count() -> int:
    return len(_connections)


def _has_id(value: Any) -> bool:
    return value is not None and value != ""


def scope_message(message: Dict[str, Any], scope: str) -> Dict[str, Any]:
    """Prefix the upload ids of a wire message with a connection scope."""
    scoped = dict(message)
    if _has_id(scoped.get("uploadId")):
        scoped["uploadId"] = f"{scope}{scoped['uploadId']}"

    nested = scoped.get("data")
    if isinstance(nested, dict) and _has_id(nested.get("uploadId")):
        scoped["data"] = {**nested, "uploadId": f"{scope}{nested['uploadId']}"}

    return scoped


def unscope_event(event: BridgeEvent, scope: str) -> Optional[Dict[str, Any]]:
    """Wire form of an event for the connection owning ``scope``, else None."""
    if event.upload_id is None or not event.upload_id.startswith(scope):
        return None

    payload = event.to_dict()
    payload["uploadId"] = event.upload_id[len(scope):]

    data = payload["data"]
    if isinstance(data, dict) and isinstance(data.get("error"), str):
        payload["data"] = {**data, "error": data["error"].replace(scope, "")}

    return payload


def _missing_upload_id(message: Dict[str, Any]) -> bool:
    if message.get("kind", message.get("message")) not in _SESSION_KINDS:
        return False
    nested = message.get("data")
    if isinstance(nested, dict) and _has_id(nested.get("uploadId")):
        return False
    return not _has_id(message.get("uploadId"))


@router.websocket("/uploads")
async def bridge_endpoint(websocket: WebSocket) -> None:
    """Relay commands into the message bridge and its events back out."""
    container = getattr(websocket.app.state, "container", None)
    bridge = container.try_resolve(IMessageBridge) if container is not None else None  # type: ignore[type-abstract]
    if bridge is None:
        await websocket.close(code=1011, reason="Message bridge unavailable")
        return

    await websocket.accept()
    _connections.add(websocket)
    scope = f"{uuid.uuid4().hex}:"
    logger.info(f"Bridge client connected ({len(_connections)} connected)")

    async def forward(event: BridgeEvent) -> None:
        payload = unscope_event(event, scope)
        if payload is not None:
            await websocket.send_json(payload)

    subscription_id = await bridge.subscribe(forward)

    try:
        while True:
            text = await websocket.receive_text()

            try:
                message = json.loads(text)
            except json.JSONDecodeError as e:
                await websocket.send_json(
                    BridgeEvent.rejected(None, f"Invalid JSON: {e}").to_dict())
                continue

            if not isinstance(message, dict):
                await websocket.send_json(
                    BridgeEvent.rejected(None, "Bridge message must be a JSON object").to_dict())
                continue

            if _missing_upload_id(message):
                await websocket.send_json(
                    BridgeEvent.rejected(None, "Missing required field 'uploadId'").to_dict())
                continue

            try:
                await bridge.send(scope_message(message, scope))
            except Exception as e:
                logger.error(f"Bridge command failed: {e}")
                await websocket.send_json(
                    BridgeEvent.rejected(message.get("uploadId"), str(e).replace(scope, "")).to_dict())

    except WebSocketDisconnect:
        pass

    finally:
        await bridge.unsubscribe(subscription_id)
        _connections.discard(websocket)
        logger.info(f"Bridge client disconnected ({len(_connections)} connected)")
