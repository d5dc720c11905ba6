import logging
from typing import Any, Dict, Optional

from whatsapp_crm.models.schemas import ConnectionUpdatePayload, MessagesUpsertPayload
from whatsapp_crm.services import channel_accounts
from whatsapp_crm.services.contacts import resolve_contact
from whatsapp_crm.services.messages import create_inbound
from whatsapp_crm.services.tickets import get_or_create_ticket
from whatsapp_crm.utils.helpers import phone_from_jid

logger = logging.getLogger(__name__)

# Order matters: the first non-empty source wins
_CAPTION_SOURCES = ("imageMessage", "videoMessage", "documentMessage")


def extract_text(message: Optional[Dict[str, Any]]) -> str:
    if not message:
        return ""
    if isinstance(message.get("conversation"), str):
        return message["conversation"]
    extended = message.get("extendedTextMessage") or {}
    if extended.get("text"):
        return extended["text"]
    for source in _CAPTION_SOURCES:
        caption = (message.get(source) or {}).get("caption")
        if caption:
            return caption
    return ""


def parse_incoming(payload: MessagesUpsertPayload) -> Optional[Dict[str, Any]]:
    """Reduce a provider payload to the fields the pipeline needs.

    Returns None for events that must not reach the pipeline: no instance,
    no message id, our own outbound echoes, no text, or no sender.
    """
    # Evolution v2 wraps the event in {"event", "instance", "data": {...}}
    body: Dict[str, Any] = payload.data or payload.model_dump(exclude={"data"})
    instance = payload.instance or payload.instanceName or body.get("instance")
    if not instance:
        logger.warning("messages-upsert without instance name, dropping")
        return None

    key = body.get("key") or {}
    if not key.get("id") or key.get("fromMe"):
        return None

    content = extract_text(body.get("message"))
    if not content.strip():
        return None

    phone = phone_from_jid(key.get("remoteJid"))
    if not phone:
        return None

    return {
        "session_name": instance,
        "external_id": key["id"],
        "phone": phone,
        "push_name": body.get("pushName"),
        "content": content,
    }


async def handle_incoming_message(
    session_name: str,
    external_id: str,
    phone: str,
    push_name: Optional[str],
    content: str,
) -> Optional[dict]:
    account = await channel_accounts.find_by_session_name(session_name)
    if not account:
        logger.warning("[s:%s] WhatsApp account not found, dropping message %s", session_name, external_id)
        return None

    if not content or not content.strip():
        logger.info("[s:%s] Empty message %s, dropping", session_name, external_id)
        return None

    company_id = account["company_id"]
    contact = await resolve_contact(company_id, phone, name=push_name)
    ticket = await get_or_create_ticket(company_id, contact["_id"], account["_id"])
    message = await create_inbound(company_id, ticket["_id"], external_id, content)

    logger.info("[c:%s, t:%s, m:%s] Incoming message from %s", company_id, ticket["_id"], message["_id"], phone)
    return message


async def handle_connection_update(session_name: str, state: str) -> None:
    updated = await channel_accounts.update_connection_status(session_name, state)
    if updated:
        logger.info("[s:%s] Connection update -> %s", session_name, state.upper())
    else:
        logger.info("[s:%s] Connection update for unknown session ignored", session_name)


def parse_connection_update(payload: ConnectionUpdatePayload) -> Optional[Dict[str, str]]:
    data = payload.data or {}
    instance = payload.instance or data.get("instance")
    state = payload.state or data.get("state")
    if not instance or not state:
        return None
    return {"session_name": instance, "state": state}
