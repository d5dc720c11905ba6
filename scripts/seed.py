"""Seed a demo tenant: company, agents, one WhatsApp session and the default funnel.

Safe to run repeatedly. Usage, from the repository root: python -m scripts.seed
"""

import asyncio
import logging

from pymongo import ReturnDocument

from whatsapp_crm.db.mongo_connection import ensure_indexes, get_db
from whatsapp_crm.models.schemas import ConnectionStatus
from whatsapp_crm.utils.auth import create_access_token
from whatsapp_crm.utils.helpers import utcnow

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("seed")

STEPS = [
    ("Novo", "#3b82f6"),
    ("Qualificando", "#f59e0b"),
    ("Proposta", "#8b5cf6"),
    ("Fechado", "#10b981"),
]


async def _upsert(collection, query: dict, doc: dict):
    return await collection.find_one_and_update(
        query,
        {"$setOnInsert": {**doc, "created_at": utcnow()}},
        upsert=True,
        return_document=ReturnDocument.AFTER,
    )


async def seed():
    db = get_db()
    await ensure_indexes()

    company = await _upsert(db.companies, {"slug": "demo"}, {"name": "Empresa Demo"})
    company_id = company["_id"]

    owner = await _upsert(db.users, {"company_id": company_id, "email": "owner@demo.com"},
                          {"name": "Carlos Souza", "role": "OWNER", "deleted_at": None})
    await _upsert(db.users, {"company_id": company_id, "email": "ana@demo.com"},
                  {"name": "Ana Silva", "role": "AGENT", "deleted_at": None})

    await _upsert(db.channel_accounts, {"company_id": company_id, "session_name": "Sessao_01", "deleted_at": None},
                  {"status": ConnectionStatus.DISCONNECTED.value, "phone_number": "5511999990000"})

    funnel = await _upsert(db.funnels, {"company_id": company_id, "is_default": True, "deleted_at": None},
                           {"name": "Vendas"})
    for order, (name, color) in enumerate(STEPS):
        await _upsert(db.funnel_steps, {"funnel_id": funnel["_id"], "name": name, "deleted_at": None},
                      {"order": order, "color": color})

    token = create_access_token({"sub": str(owner["_id"]), "company_id": str(company_id)})
    logger.info("Seeded company demo (%s)", company_id)
    logger.info("Owner token: %s", token)


if __name__ == "__main__":
    asyncio.run(seed())
