"""Real-time fan-out over Socket.IO.

Each authenticated socket joins exactly one room, ``tenant:<company_id>``,
where the company id comes from the verified JWT. Events are fire-and-forget:
nothing is buffered for clients that are offline or reconnecting.
"""

import logging
from typing import Any, Dict, Optional
from urllib.parse import parse_qs

import socketio
from socketio import exceptions as sio_exceptions
from fastapi import HTTPException

from whatsapp_crm.config import settings
from whatsapp_crm.utils.auth import decode_access_token
from whatsapp_crm.utils.helpers import serialize_doc

logger = logging.getLogger(__name__)

MESSAGE_CREATED = "message.created"
TICKET_UPDATED = "ticket.updated"
TICKET_MOVED = "ticket.moved"
USER_ONLINE = "user.online"

sio = socketio.AsyncServer(
    async_mode="asgi",
    cors_allowed_origins=settings.CORS_ORIGINS if settings.CORS_ORIGINS != ["*"] else "*",
)

socket_app = socketio.ASGIApp(sio, socketio_path="socket.io")

# company_id -> {sid: user_id}
active_connections: Dict[str, Dict[str, Optional[str]]] = {}
# sid -> company_id, so disconnect never trusts anything the client sends
_sid_company: Dict[str, str] = {}


def room_for(company_id: Any) -> str:
    return f"tenant:{company_id}"


def _extract_token(environ: dict, auth: Optional[dict]) -> Optional[str]:
    if isinstance(auth, dict) and auth.get("token"):
        return auth["token"]
    query = parse_qs(environ.get("QUERY_STRING", ""))
    tokens = query.get("token")
    return tokens[0] if tokens else None


@sio.event
async def connect(sid, environ, auth=None):
    token = _extract_token(environ or {}, auth)
    if not token:
        logger.warning("Socket %s refused: no token", sid)
        raise sio_exceptions.ConnectionRefusedError("authentication required")
    try:
        token_data = decode_access_token(token)
    except HTTPException:
        logger.warning("Socket %s refused: invalid token", sid)
        raise sio_exceptions.ConnectionRefusedError("invalid token")
    company_id = str(token_data.company_id)
    await sio.enter_room(sid, room_for(company_id))

    sessions = active_connections.setdefault(company_id, {})
    first_for_user = token_data.user_id is not None and token_data.user_id not in sessions.values()
    sessions[sid] = token_data.user_id
    _sid_company[sid] = company_id
    logger.info("[c:%s] Socket %s joined (user=%s)", company_id, sid, token_data.user_id)

    if first_for_user:
        await emit_user_online(company_id, token_data.user_id, True)


@sio.event
async def disconnect(sid, *args):
    company_id = _sid_company.pop(sid, None)
    if company_id is None:
        return
    sessions = active_connections.get(company_id, {})
    user_id = sessions.pop(sid, None)
    if not sessions:
        active_connections.pop(company_id, None)
    logger.info("[c:%s] Socket %s left", company_id, sid)

    if user_id is not None and user_id not in sessions.values():
        await emit_user_online(company_id, user_id, False)


async def _emit(event: str, company_id: Any, payload: Any) -> None:
    try:
        await sio.emit(event, serialize_doc(payload), room=room_for(company_id))
    except Exception:
        logger.exception("[c:%s] Failed to emit %s", company_id, event)


async def emit_message_created(company_id, message: dict) -> None:
    await _emit(MESSAGE_CREATED, company_id, message)


async def emit_ticket_updated(company_id, ticket_id, ticket: Optional[dict] = None) -> None:
    payload = {"ticket_id": ticket_id}
    if ticket is not None:
        payload["ticket"] = ticket
    await _emit(TICKET_UPDATED, company_id, payload)


async def emit_ticket_moved(company_id, ticket_id, funnel_step_id) -> None:
    await _emit(TICKET_MOVED, company_id, {"ticket_id": ticket_id, "funnel_step_id": funnel_step_id})


async def emit_user_online(company_id, user_id, online: bool) -> None:
    await _emit(USER_ONLINE, company_id, {"user_id": user_id, "online": online})


def get_connection_stats():
    return {
        "total_connections": sum(len(sids) for sids in active_connections.values()),
        "tenants_connected": len(active_connections),
    }
