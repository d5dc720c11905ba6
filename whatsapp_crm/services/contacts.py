import logging
from typing import Optional

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

from whatsapp_crm.db.mongo_connection import get_db
from whatsapp_crm.services.errors import NotFoundError
from whatsapp_crm.utils.helpers import to_object_id, utcnow

logger = logging.getLogger(__name__)


async def find_contact(company_id, contact_id):
    oid = to_object_id(contact_id)
    contact = await get_db().contacts.find_one({"_id": oid, "company_id": company_id, "deleted_at": None}) if oid else None
    if not contact:
        raise NotFoundError("Contact not found")
    return contact


async def find_contact_by_phone(company_id, phone: str):
    return await get_db().contacts.find_one({"company_id": company_id, "phone": phone, "deleted_at": None})


async def resolve_contact(company_id, phone: str, name: Optional[str] = None, profile_pic: Optional[str] = None):
    """Find or create the contact for (company_id, phone).

    Provider data only fills fields that are still empty; names edited by an
    agent are never overwritten by a later pushName.
    """
    contact = await find_contact_by_phone(company_id, phone)
    if contact is None:
        now = utcnow()
        doc = {
            "company_id": company_id,
            "phone": phone,
            "name": name or phone,
            "profile_pic": profile_pic,
            "created_at": now,
            "updated_at": now,
            "deleted_at": None,
        }
        try:
            res = await get_db().contacts.insert_one(doc)
            logger.info("[c:%s] Created contact %s for %s", company_id, res.inserted_id, phone)
            return doc
        except DuplicateKeyError:
            # Another delivery created it between our read and insert
            logger.info("[c:%s] Contact %s created concurrently, re-reading", company_id, phone)
            contact = await find_contact_by_phone(company_id, phone)
            if contact is None:
                raise

    patch = {}
    # A name equal to the phone is the placeholder set at creation
    if name and contact.get("name") in (None, "", contact.get("phone")):
        patch["name"] = name
    if profile_pic and not contact.get("profile_pic"):
        patch["profile_pic"] = profile_pic
    if not patch:
        return contact

    patch["updated_at"] = utcnow()
    return await get_db().contacts.find_one_and_update(
        {"_id": contact["_id"]},
        {"$set": patch},
        return_document=ReturnDocument.AFTER,
    )
