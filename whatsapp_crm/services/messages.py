import logging
from typing import Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from whatsapp_crm.db.mongo_connection import get_db
from whatsapp_crm.models.schemas import MessageStatus
from whatsapp_crm.realtime import gateway
from whatsapp_crm.services import dispatch_queue
from whatsapp_crm.services.errors import NotFoundError
from whatsapp_crm.services.tickets import find_ticket, touch_ticket
from whatsapp_crm.utils.helpers import to_object_id, utcnow

logger = logging.getLogger(__name__)


async def find_by_external_id(company_id, external_id: str):
    return await get_db().messages.find_one({"company_id": company_id, "external_id": external_id})


async def _announce(company_id, message: dict) -> None:
    await gateway.emit_message_created(company_id, message)
    await gateway.emit_ticket_updated(company_id, message["ticket_id"])


async def create_inbound(
    company_id,
    ticket_id,
    external_id: str,
    content: str,
    media_url: Optional[str] = None,
    media_type: Optional[str] = None,
):
    """Persist a provider message once per (company_id, external_id).

    A redelivered webhook gets the stored message back and triggers no writes
    and no events.
    """
    existing = await find_by_external_id(company_id, external_id)
    if existing:
        logger.info("[c:%s, m:%s] Duplicate delivery of %s ignored", company_id, existing["_id"], external_id)
        return existing

    msg_doc = {
        "company_id": company_id,
        "ticket_id": ticket_id,
        "external_id": external_id,
        "content": content,
        "from_me": False,
        "media_url": media_url,
        "media_type": media_type,
        "status": MessageStatus.RECEIVED.value,
        "created_at": utcnow(),
        "deleted_at": None,
    }
    try:
        await get_db().messages.insert_one(msg_doc)
    except DuplicateKeyError:
        # Concurrent redelivery won the insert
        existing = await find_by_external_id(company_id, external_id)
        if existing is None:
            raise
        return existing

    await touch_ticket(company_id, ticket_id)
    await _announce(company_id, msg_doc)
    return msg_doc


async def create_outbound(
    company_id,
    ticket_id,
    content: str,
    sender_id=None,
    media_url: Optional[str] = None,
    media_type: Optional[str] = None,
):
    """Store a PENDING message and queue it for delivery. Returns before the provider is called."""
    ticket = await find_ticket(company_id, ticket_id)
    db = get_db()
    account = await db.channel_accounts.find_one({"_id": ticket["channel_account_id"]})
    contact = await db.contacts.find_one({"_id": ticket["contact_id"]})
    if not account or not contact:
        raise NotFoundError("Ticket channel account or contact not found")

    msg_doc = {
        "company_id": company_id,
        "ticket_id": ticket["_id"],
        "content": content,
        "from_me": True,
        "media_url": media_url,
        "media_type": media_type,
        "status": MessageStatus.PENDING.value,
        "sender_id": to_object_id(sender_id) if sender_id else None,
        "created_at": utcnow(),
        "deleted_at": None,
    }
    await db.messages.insert_one(msg_doc)
    await touch_ticket(company_id, ticket["_id"])

    await dispatch_queue.enqueue(
        dispatch_queue.SEND_MESSAGE_JOB,
        {
            "message_id": msg_doc["_id"],
            "company_id": company_id,
            "session_name": account["session_name"],
            "phone": contact["phone"],
            "content": content,
            "media_url": media_url,
            "media_type": media_type,
        },
    )
    logger.info("[c:%s, t:%s, m:%s] Outbound message queued", company_id, ticket["_id"], msg_doc["_id"])

    await _announce(company_id, msg_doc)
    return msg_doc


async def mark_status(company_id, message_id, status: MessageStatus):
    """Used by the dispatch worker. A message that no longer exists is treated as handled."""
    message = await get_db().messages.find_one_and_update(
        {"_id": message_id, "company_id": company_id},
        {"$set": {"status": status.value}},
        return_document=ReturnDocument.AFTER,
    )
    if message is None:
        logger.info("[c:%s, m:%s] Message gone, status %s dropped", company_id, message_id, status.value)
        return None
    await gateway.emit_ticket_updated(company_id, message["ticket_id"])
    return message


async def mark_as_read(company_id, message_id):
    oid = to_object_id(message_id)
    if oid is None:
        raise NotFoundError("Message not found")
    res = await get_db().messages.update_one(
        {"_id": oid, "company_id": company_id, "deleted_at": None},
        {"$set": {"status": MessageStatus.READ.value}},
    )
    if res.matched_count == 0:
        raise NotFoundError("Message not found")
    return {"success": True}


async def list_ticket_messages(company_id, ticket_id, limit: int = 500, skip: int = 0):
    ticket = await find_ticket(company_id, ticket_id)
    cursor = (
        get_db().messages.find({"company_id": company_id, "ticket_id": ticket["_id"], "deleted_at": None})
        .sort("created_at", 1)
        .skip(skip)
        .limit(limit)
    )
    return await cursor.to_list(length=limit)
