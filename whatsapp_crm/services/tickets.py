import logging

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from whatsapp_crm.db.mongo_connection import get_db
from whatsapp_crm.realtime import gateway
from whatsapp_crm.services.errors import NotFoundError, ValidationError
from whatsapp_crm.services.funnels import first_step_of_default_funnel, find_step_for_company
from whatsapp_crm.utils.helpers import to_object_id, utcnow

logger = logging.getLogger(__name__)


async def _find_live_ticket(company_id, contact_id, channel_account_id):
    return await get_db().tickets.find_one({
        "company_id": company_id,
        "contact_id": contact_id,
        "channel_account_id": channel_account_id,
        "deleted_at": None,
    })


async def get_or_create_ticket(company_id, contact_id, channel_account_id):
    """Return the live ticket for the contact on this channel account, creating it
    on the first step of the default funnel when there is none."""
    ticket = await _find_live_ticket(company_id, contact_id, channel_account_id)
    if ticket:
        return ticket

    step = await first_step_of_default_funnel(company_id)
    now = utcnow()
    ticket = {
        "company_id": company_id,
        "contact_id": contact_id,
        "channel_account_id": channel_account_id,
        "funnel_step_id": step["_id"],
        "assigned_user_id": None,
        "last_message_at": now,
        "created_at": now,
        "updated_at": now,
        "deleted_at": None,
    }
    try:
        await get_db().tickets.insert_one(ticket)
    except DuplicateKeyError:
        logger.info("[c:%s] Ticket for contact %s created concurrently, re-reading", company_id, contact_id)
        existing = await _find_live_ticket(company_id, contact_id, channel_account_id)
        if existing is None:
            raise
        return existing

    logger.info("[c:%s, t:%s] Created ticket on step %s", company_id, ticket["_id"], step.get("name"))
    return ticket


async def find_ticket(company_id, ticket_id):
    oid = to_object_id(ticket_id)
    ticket = await get_db().tickets.find_one({"_id": oid, "company_id": company_id, "deleted_at": None}) if oid else None
    if not ticket:
        raise NotFoundError("Ticket not found")
    return ticket


async def with_relations(ticket: dict) -> dict:
    """Attach contact and funnel step documents for API responses and events."""
    db = get_db()
    expanded = dict(ticket)
    expanded["contact"] = await db.contacts.find_one({"_id": ticket["contact_id"]})
    expanded["funnel_step"] = await db.funnel_steps.find_one({"_id": ticket["funnel_step_id"]})
    return expanded


async def list_tickets(company_id, limit: int = 200, skip: int = 0):
    cursor = (
        get_db().tickets.find({"company_id": company_id, "deleted_at": None})
        .sort("last_message_at", -1)
        .skip(skip)
        .limit(limit)
    )
    tickets = await cursor.to_list(length=limit)
    return [await with_relations(t) for t in tickets]


async def touch_ticket(company_id, ticket_id) -> None:
    now = utcnow()
    await get_db().tickets.update_one(
        {"_id": ticket_id, "company_id": company_id},
        {"$set": {"last_message_at": now, "updated_at": now}},
    )


async def move_to_step(company_id, ticket_id, funnel_step_id):
    ticket = await find_ticket(company_id, ticket_id)
    step = await find_step_for_company(company_id, funnel_step_id)
    if not step:
        raise ValidationError("Invalid funnel step")

    updated = await get_db().tickets.find_one_and_update(
        {"_id": ticket["_id"], "company_id": company_id},
        {"$set": {"funnel_step_id": step["_id"], "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    updated = await with_relations(updated)
    logger.info("[c:%s, t:%s] Moved to step %s", company_id, ticket["_id"], step["_id"])

    await gateway.emit_ticket_moved(company_id, ticket["_id"], step["_id"])
    await gateway.emit_ticket_updated(company_id, ticket["_id"], updated)
    return updated


async def assign_ticket(company_id, ticket_id, user_id=None):
    ticket = await find_ticket(company_id, ticket_id)
    assignee = None
    if user_id:
        oid = to_object_id(user_id)
        user = await get_db().users.find_one({"_id": oid, "company_id": company_id, "deleted_at": None}) if oid else None
        if not user:
            raise ValidationError("User not found")
        assignee = user["_id"]

    updated = await get_db().tickets.find_one_and_update(
        {"_id": ticket["_id"], "company_id": company_id},
        {"$set": {"assigned_user_id": assignee, "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    updated = await with_relations(updated)
    await gateway.emit_ticket_updated(company_id, ticket["_id"], updated)
    return updated
