import logging
from typing import Optional

import motor.motor_asyncio

from whatsapp_crm.config import settings

logger = logging.getLogger(__name__)

_client: Optional[motor.motor_asyncio.AsyncIOMotorClient] = None
_db = None


def init_db(client=None, db_name: Optional[str] = None):
    """Bind the module to a Motor client. Tests pass an in-memory client here."""
    global _client, _db
    _client = client or motor.motor_asyncio.AsyncIOMotorClient(settings.MONGO_URI)
    _db = _client[db_name or settings.DB_NAME]
    return _db


def get_db():
    if _db is None:
        init_db()
    return _db


def close_db() -> None:
    global _client, _db
    if _client is not None:
        _client.close()
    _client = None
    _db = None


async def ensure_indexes() -> None:
    """Create required indexes for the collections. Safe to call on startup (idempotent).

    The unique indexes below are what make the find-or-create paths safe under
    concurrent webhook delivery: ``deleted_at`` is part of the key so only one
    live row (``deleted_at: None``) can exist per natural key while tombstoned
    rows stay out of the way.
    """
    db = get_db()
    try:
        await db.companies.create_index("slug", unique=True)

        await db.users.create_index([("company_id", 1), ("email", 1)])

        await db.contacts.create_index(
            [("company_id", 1), ("phone", 1), ("deleted_at", 1)], unique=True
        )

        await db.channel_accounts.create_index(
            [("company_id", 1), ("session_name", 1), ("deleted_at", 1)], unique=True
        )
        await db.channel_accounts.create_index("session_name")

        await db.funnels.create_index([("company_id", 1), ("is_default", 1)])
        await db.funnel_steps.create_index([("funnel_id", 1), ("order", 1)])

        await db.tickets.create_index(
            [("company_id", 1), ("contact_id", 1), ("channel_account_id", 1), ("deleted_at", 1)],
            unique=True,
        )
        await db.tickets.create_index([("company_id", 1), ("last_message_at", -1)])

        await db.messages.create_index([("company_id", 1), ("ticket_id", 1), ("created_at", 1)])
        # Dedup key for provider messages; locally created messages carry no external_id
        await db.messages.create_index(
            [("company_id", 1), ("external_id", 1)],
            unique=True,
            partialFilterExpression={"external_id": {"$exists": True}},
        )

        await db.dispatch_jobs.create_index([("status", 1), ("run_at", 1)])

        logger.info("MongoDB indexes ensured")
    except Exception:
        logger.exception("Failed to ensure MongoDB indexes")
        raise
