from fastapi import APIRouter, Depends, Query, status

from whatsapp_crm.models.schemas import SendMessageRequest
from whatsapp_crm.services import messages as message_service
from whatsapp_crm.utils.auth import get_current_user, TokenData
from whatsapp_crm.utils.helpers import serialize_doc

messages_router = APIRouter(prefix="/messages", tags=["Messages"])


@messages_router.get("/ticket/{ticket_id}")
async def list_messages(
    ticket_id: str,
    current_user: TokenData = Depends(get_current_user),
    limit: int = Query(500, ge=1, le=1000),
    offset: int = Query(0, ge=0),
):
    company_id = current_user.company_id
    docs = await message_service.list_ticket_messages(company_id, ticket_id, limit=limit, skip=offset)
    return serialize_doc(docs)


@messages_router.post("/ticket/{ticket_id}/send", status_code=status.HTTP_201_CREATED)
async def send_message(
    ticket_id: str,
    request: SendMessageRequest,
    current_user: TokenData = Depends(get_current_user),
):
    message = await message_service.create_outbound(
        current_user.company_id,
        ticket_id,
        request.content,
        sender_id=current_user.user_id,
        media_url=request.media_url,
        media_type=request.media_type,
    )
    return serialize_doc(message)


@messages_router.post("/{message_id}/read")
async def mark_as_read(message_id: str, current_user: TokenData = Depends(get_current_user)):
    return await message_service.mark_as_read(current_user.company_id, message_id)
