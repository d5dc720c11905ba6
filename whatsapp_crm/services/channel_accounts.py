import logging
from typing import Optional

from pymongo.errors import DuplicateKeyError

from whatsapp_crm.db.mongo_connection import get_db
from whatsapp_crm.models.schemas import ConnectionStatus
from whatsapp_crm.services.errors import ConflictError, NotFoundError
from whatsapp_crm.utils.helpers import to_object_id, utcnow

logger = logging.getLogger(__name__)


async def find_by_session_name(session_name: str):
    """Webhooks only know the provider session, not the tenant."""
    return await get_db().channel_accounts.find_one({"session_name": session_name, "deleted_at": None})


async def list_accounts(company_id):
    cursor = get_db().channel_accounts.find({"company_id": company_id, "deleted_at": None}).sort("created_at", -1)
    return await cursor.to_list(length=None)


async def find_account(company_id, account_id):
    oid = to_object_id(account_id)
    account = await get_db().channel_accounts.find_one({"_id": oid, "company_id": company_id, "deleted_at": None}) if oid else None
    if not account:
        raise NotFoundError("WhatsApp account not found")
    return account


async def create_account(company_id, session_name: str, phone_number: Optional[str] = None):
    existing = await get_db().channel_accounts.find_one({"session_name": session_name, "deleted_at": None})
    if existing:
        raise ConflictError("An account with this session name already exists")

    now = utcnow()
    doc = {
        "company_id": company_id,
        "session_name": session_name,
        "status": ConnectionStatus.DISCONNECTED.value,
        "phone_number": phone_number,
        "created_at": now,
        "updated_at": now,
        "deleted_at": None,
    }
    try:
        await get_db().channel_accounts.insert_one(doc)
    except DuplicateKeyError:
        raise ConflictError("An account with this session name already exists")
    logger.info("[c:%s] Registered WhatsApp session %s", company_id, session_name)
    return doc


async def update_connection_status(session_name: str, state: str) -> int:
    """Blind overwrite: the provider sends no ordering token, so the latest delivery wins."""
    res = await get_db().channel_accounts.update_many(
        {"session_name": session_name, "deleted_at": None},
        {"$set": {"status": state.upper(), "updated_at": utcnow()}},
    )
    return res.matched_count
