import httpx
import pytest
from bson import ObjectId

from whatsapp_crm.main import app
from whatsapp_crm.services.contacts import resolve_contact
from whatsapp_crm.services.tickets import get_or_create_ticket
from whatsapp_crm.utils.auth import create_access_token


@pytest.fixture
async def client():
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as c:
        yield c


@pytest.fixture
async def ticket(db, tenant):
    contact = await resolve_contact(tenant["company_id"], "5511999", name="Maria")
    return await get_or_create_ticket(tenant["company_id"], contact["_id"], tenant["account_id"])


@pytest.mark.asyncio
async def test_requests_without_token_are_rejected(db, client):
    resp = await client.get("/tickets/")

    assert resp.status_code in (401, 403)


@pytest.mark.asyncio
async def test_send_returns_pending_message(db, tenant, ticket, auth_headers, emitted, client):
    resp = await client.post(f"/messages/ticket/{ticket['_id']}/send", json={"content": "Olá!"}, headers=auth_headers)

    assert resp.status_code == 201
    body = resp.json()
    assert body["status"] == "PENDING"
    assert body["from_me"] is True
    assert body["ticket_id"] == str(ticket["_id"])
    assert body["sender_id"] == str(tenant["user_id"])
    assert await db.dispatch_jobs.count_documents({}) == 1


@pytest.mark.asyncio
async def test_send_blank_content_is_rejected(db, tenant, ticket, auth_headers, client):
    resp = await client.post(f"/messages/ticket/{ticket['_id']}/send", json={"content": "  "}, headers=auth_headers)

    assert resp.status_code == 422
    assert await db.messages.count_documents({}) == 0


@pytest.mark.asyncio
async def test_unknown_ticket_is_404(db, tenant, auth_headers, client):
    resp = await client.get(f"/tickets/{ObjectId()}", headers=auth_headers)

    assert resp.status_code == 404
    assert resp.json() == {"message": "Ticket not found"}


@pytest.mark.asyncio
async def test_ticket_detail_includes_relations(db, tenant, ticket, auth_headers, client):
    resp = await client.get(f"/tickets/{ticket['_id']}", headers=auth_headers)

    assert resp.status_code == 200
    body = resp.json()
    assert body["contact"]["name"] == "Maria"
    assert body["funnel_step"]["name"] == "Novo"


@pytest.mark.asyncio
async def test_ticket_list_is_tenant_scoped(db, tenant, other_tenant, ticket, auth_headers, client):
    contact = await resolve_contact(other_tenant["company_id"], "5521888")
    await get_or_create_ticket(other_tenant["company_id"], contact["_id"], other_tenant["account_id"])

    resp = await client.get("/tickets/", headers=auth_headers)

    assert [t["id"] for t in resp.json()] == [str(ticket["_id"])]


@pytest.mark.asyncio
async def test_move_to_foreign_step_is_400(db, tenant, other_tenant, ticket, auth_headers, emitted, client):
    foreign_step = other_tenant["step_ids"]["Entrada"]

    resp = await client.patch(
        f"/tickets/{ticket['_id']}/move", json={"funnel_step_id": str(foreign_step)}, headers=auth_headers
    )

    assert resp.status_code == 400
    assert resp.json() == {"message": "Invalid funnel step"}


@pytest.mark.asyncio
async def test_move_ticket(db, tenant, ticket, auth_headers, emitted, client):
    target = tenant["step_ids"]["Qualificando"]

    resp = await client.patch(f"/tickets/{ticket['_id']}/move", json={"funnel_step_id": str(target)}, headers=auth_headers)

    assert resp.status_code == 200
    assert resp.json()["funnel_step_id"] == str(target)


@pytest.mark.asyncio
async def test_list_ticket_messages(db, tenant, ticket, auth_headers, emitted, client):
    await client.post(f"/messages/ticket/{ticket['_id']}/send", json={"content": "Olá!"}, headers=auth_headers)

    resp = await client.get(f"/messages/ticket/{ticket['_id']}", headers=auth_headers)

    assert resp.status_code == 200
    assert [m["content"] for m in resp.json()] == ["Olá!"]


@pytest.mark.asyncio
async def test_mark_unknown_message_read_is_404(db, tenant, auth_headers, client):
    resp = await client.post(f"/messages/{ObjectId()}/read", headers=auth_headers)

    assert resp.status_code == 404


@pytest.mark.asyncio
async def test_create_account_and_conflict(db, tenant, other_tenant, auth_headers, client):
    resp = await client.post("/whatsapp/accounts", json={"session_name": "acct-new"}, headers=auth_headers)
    assert resp.status_code == 201
    assert resp.json()["status"] == "DISCONNECTED"

    resp = await client.post("/whatsapp/accounts", json={"session_name": "acct2"}, headers=auth_headers)
    assert resp.status_code == 409

    resp = await client.get("/whatsapp/accounts", headers=auth_headers)
    assert sorted(a["session_name"] for a in resp.json()) == ["acct-new", "acct1"]


@pytest.mark.asyncio
async def test_token_with_non_object_id_company_is_rejected(db, tenant, client):
    token = create_access_token({"sub": str(tenant["user_id"]), "company_id": "acme"})
    headers = {"Authorization": f"Bearer {token}"}

    resp = await client.post("/whatsapp/accounts", json={"session_name": "acme-secret"}, headers=headers)
    assert resp.status_code == 401

    resp = await client.get("/whatsapp/accounts", headers=headers)
    assert resp.status_code == 401
    assert await db.channel_accounts.count_documents({"company_id": None}) == 0


@pytest.mark.asyncio
@pytest.mark.parametrize("session_name", ["bad\nsession", "trailing\n", "a/b", "", "   "])
async def test_create_account_rejects_unsafe_session_names(db, tenant, auth_headers, client, session_name):
    resp = await client.post("/whatsapp/accounts", json={"session_name": session_name}, headers=auth_headers)

    assert resp.status_code == 422
    assert await db.channel_accounts.count_documents({}) == 1
