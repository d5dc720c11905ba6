import pytest
from bson import ObjectId

from whatsapp_crm.realtime.gateway import TICKET_MOVED, TICKET_UPDATED
from whatsapp_crm.services import tickets
from whatsapp_crm.services.contacts import resolve_contact
from whatsapp_crm.services.errors import ConfigurationError, NotFoundError, ValidationError
from whatsapp_crm.services.tickets import assign_ticket, get_or_create_ticket, move_to_step


@pytest.fixture
async def contact(db, tenant):
    return await resolve_contact(tenant["company_id"], "5511999", name="Maria")


@pytest.mark.asyncio
async def test_get_or_create_is_stable(db, tenant, contact):
    first = await get_or_create_ticket(tenant["company_id"], contact["_id"], tenant["account_id"])
    second = await get_or_create_ticket(tenant["company_id"], contact["_id"], tenant["account_id"])

    assert first["_id"] == second["_id"]
    assert await db.tickets.count_documents({}) == 1


@pytest.mark.asyncio
async def test_new_ticket_lands_on_lowest_order_step(db, tenant, contact):
    ticket = await get_or_create_ticket(tenant["company_id"], contact["_id"], tenant["account_id"])

    assert ticket["funnel_step_id"] == tenant["step_ids"]["Novo"]
    assert ticket["assigned_user_id"] is None
    assert ticket["last_message_at"] == ticket["created_at"]


@pytest.mark.asyncio
async def test_one_ticket_per_channel_account(db, tenant, contact):
    second_account = (await db.channel_accounts.insert_one({
        "company_id": tenant["company_id"], "session_name": "acct-b", "status": "CONNECTED", "deleted_at": None,
    })).inserted_id

    a = await get_or_create_ticket(tenant["company_id"], contact["_id"], tenant["account_id"])
    b = await get_or_create_ticket(tenant["company_id"], contact["_id"], second_account)

    assert a["_id"] != b["_id"]


@pytest.mark.asyncio
async def test_missing_default_funnel_is_configuration_error(db, tenant, contact):
    await db.funnels.update_many({}, {"$set": {"is_default": False}})

    with pytest.raises(ConfigurationError):
        await get_or_create_ticket(tenant["company_id"], contact["_id"], tenant["account_id"])
    assert await db.tickets.count_documents({}) == 0


@pytest.mark.asyncio
async def test_default_funnel_without_steps_is_configuration_error(db, tenant, contact):
    await db.funnel_steps.delete_many({"funnel_id": tenant["funnel_id"]})

    with pytest.raises(ConfigurationError):
        await get_or_create_ticket(tenant["company_id"], contact["_id"], tenant["account_id"])


@pytest.mark.asyncio
async def test_deleted_ticket_is_not_reused(db, tenant, contact):
    old = await get_or_create_ticket(tenant["company_id"], contact["_id"], tenant["account_id"])
    await db.tickets.update_one({"_id": old["_id"]}, {"$set": {"deleted_at": old["created_at"]}})

    fresh = await get_or_create_ticket(tenant["company_id"], contact["_id"], tenant["account_id"])

    assert fresh["_id"] != old["_id"]


@pytest.mark.asyncio
async def test_concurrent_create_returns_winner(db, tenant, contact, monkeypatch):
    winner = await get_or_create_ticket(tenant["company_id"], contact["_id"], tenant["account_id"])

    real_lookup = tickets._find_live_ticket
    calls = []

    async def stale_lookup(*args):
        calls.append(args)
        if len(calls) == 1:
            return None
        return await real_lookup(*args)

    monkeypatch.setattr(tickets, "_find_live_ticket", stale_lookup)

    loser = await get_or_create_ticket(tenant["company_id"], contact["_id"], tenant["account_id"])

    assert loser["_id"] == winner["_id"]
    assert await db.tickets.count_documents({}) == 1


@pytest.mark.asyncio
async def test_move_to_step_emits_moved_and_updated(db, tenant, contact, emitted):
    ticket = await get_or_create_ticket(tenant["company_id"], contact["_id"], tenant["account_id"])
    target = tenant["step_ids"]["Qualificando"]

    updated = await move_to_step(tenant["company_id"], str(ticket["_id"]), str(target))

    assert updated["funnel_step_id"] == target
    assert updated["funnel_step"]["name"] == "Qualificando"
    events = emitted.events()
    room = f"tenant:{tenant['company_id']}"
    assert (TICKET_MOVED, {"ticket_id": str(ticket["_id"]), "funnel_step_id": str(target)}, room) in events
    updated_events = [e for e in events if e[0] == TICKET_UPDATED]
    assert updated_events[0][1]["ticket"]["funnel_step_id"] == str(target)


@pytest.mark.asyncio
async def test_move_to_other_tenants_step_is_rejected(db, tenant, other_tenant, contact, emitted):
    ticket = await get_or_create_ticket(tenant["company_id"], contact["_id"], tenant["account_id"])
    foreign_step = other_tenant["step_ids"]["Entrada"]

    with pytest.raises(ValidationError):
        await move_to_step(tenant["company_id"], ticket["_id"], str(foreign_step))

    stored = await db.tickets.find_one({"_id": ticket["_id"]})
    assert stored["funnel_step_id"] == tenant["step_ids"]["Novo"]
    assert emitted.events() == []


@pytest.mark.asyncio
async def test_move_unknown_ticket_is_not_found(db, tenant):
    with pytest.raises(NotFoundError):
        await move_to_step(tenant["company_id"], str(ObjectId()), str(tenant["step_ids"]["Novo"]))


@pytest.mark.asyncio
async def test_assign_validates_user_tenant(db, tenant, other_tenant, contact, emitted):
    ticket = await get_or_create_ticket(tenant["company_id"], contact["_id"], tenant["account_id"])

    with pytest.raises(ValidationError):
        await assign_ticket(tenant["company_id"], ticket["_id"], str(other_tenant["user_id"]))

    assigned = await assign_ticket(tenant["company_id"], ticket["_id"], str(tenant["user_id"]))
    assert assigned["assigned_user_id"] == tenant["user_id"]

    unassigned = await assign_ticket(tenant["company_id"], ticket["_id"], None)
    assert unassigned["assigned_user_id"] is None
