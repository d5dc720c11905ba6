import os
import uuid
from unittest.mock import AsyncMock

os.environ.setdefault("JWT_SECRET_KEY", "test-secret")
os.environ.setdefault("DISPATCH_WORKER_ENABLED", "false")
os.environ.setdefault("MESSAGING_PROVIDER", "evolution")

import pytest
from mongomock_motor import AsyncMongoMockClient

from whatsapp_crm.db import mongo_connection
from whatsapp_crm.realtime import gateway
from whatsapp_crm.utils.auth import create_access_token
from whatsapp_crm.utils.helpers import utcnow


@pytest.fixture
async def db():
    database = mongo_connection.init_db(AsyncMongoMockClient(), f"whatsapp_crm_test_{uuid.uuid4().hex}")
    await mongo_connection.ensure_indexes()
    return database


@pytest.fixture
def emitted(monkeypatch):
    """Capture Socket.IO emits as (event, payload, room) tuples."""
    emit = AsyncMock()
    monkeypatch.setattr(gateway.sio, "emit", emit)

    def events():
        return [(c.args[0], c.args[1], c.kwargs.get("room")) for c in emit.call_args_list]

    emit.events = events
    return emit


async def make_tenant(db, slug="demo", session_name="acct1", steps=("Novo", "Qualificando")):
    now = utcnow()
    company_id = (await db.companies.insert_one({"slug": slug, "name": slug.title(), "created_at": now})).inserted_id
    account_id = (await db.channel_accounts.insert_one({
        "company_id": company_id,
        "session_name": session_name,
        "status": "DISCONNECTED",
        "phone_number": "5511999990000",
        "created_at": now,
        "deleted_at": None,
    })).inserted_id
    funnel_id = (await db.funnels.insert_one({
        "company_id": company_id, "name": "Vendas", "is_default": True, "deleted_at": None,
    })).inserted_id

    step_ids = {}
    # Inserted in reverse so lookups cannot rely on insertion order
    for order, name in reversed(list(enumerate(steps))):
        step_ids[name] = (await db.funnel_steps.insert_one({
            "funnel_id": funnel_id, "name": name, "order": order, "deleted_at": None,
        })).inserted_id

    user_id = (await db.users.insert_one({
        "company_id": company_id, "name": "Ana Silva", "email": f"ana@{slug}.com", "deleted_at": None,
    })).inserted_id

    return {
        "company_id": company_id,
        "account_id": account_id,
        "funnel_id": funnel_id,
        "step_ids": step_ids,
        "user_id": user_id,
        "session_name": session_name,
    }


@pytest.fixture
async def tenant(db):
    return await make_tenant(db)


@pytest.fixture
async def other_tenant(db):
    return await make_tenant(db, slug="other", session_name="acct2", steps=("Entrada",))


@pytest.fixture
def auth_headers(tenant):
    token = create_access_token({"sub": str(tenant["user_id"]), "company_id": str(tenant["company_id"])})
    return {"Authorization": f"Bearer {token}"}
