from fastapi import APIRouter, Depends, Query

from whatsapp_crm.models.schemas import AssignTicketRequest, MoveTicketRequest
from whatsapp_crm.services import tickets as ticket_service
from whatsapp_crm.utils.auth import get_current_user, TokenData
from whatsapp_crm.utils.helpers import serialize_doc

tickets_router = APIRouter(prefix="/tickets", tags=["Tickets"])


@tickets_router.get("/")
async def get_tickets(
    current_user: TokenData = Depends(get_current_user),
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    company_id = current_user.company_id
    tickets = await ticket_service.list_tickets(company_id, limit=limit, skip=offset)
    return serialize_doc(tickets)


@tickets_router.get("/{ticket_id}")
async def get_ticket(ticket_id: str, current_user: TokenData = Depends(get_current_user)):
    ticket = await ticket_service.find_ticket(current_user.company_id, ticket_id)
    return serialize_doc(await ticket_service.with_relations(ticket))


@tickets_router.patch("/{ticket_id}/move")
async def move_ticket(ticket_id: str, request: MoveTicketRequest, current_user: TokenData = Depends(get_current_user)):
    updated = await ticket_service.move_to_step(current_user.company_id, ticket_id, request.funnel_step_id)
    return serialize_doc(updated)


@tickets_router.patch("/{ticket_id}/assign")
async def assign_ticket(ticket_id: str, request: AssignTicketRequest, current_user: TokenData = Depends(get_current_user)):
    updated = await ticket_service.assign_ticket(current_user.company_id, ticket_id, request.user_id)
    return serialize_doc(updated)
