from fastapi import APIRouter, Depends, status

from whatsapp_crm.models.schemas import ChannelAccountCreateRequest
from whatsapp_crm.services import channel_accounts
from whatsapp_crm.utils.auth import get_current_user, TokenData
from whatsapp_crm.utils.helpers import serialize_doc

accounts_router = APIRouter(prefix="/whatsapp", tags=["WhatsApp"])


@accounts_router.get("/accounts")
async def list_accounts(current_user: TokenData = Depends(get_current_user)):
    accounts = await channel_accounts.list_accounts(current_user.company_id)
    return serialize_doc(accounts)


@accounts_router.post("/accounts", status_code=status.HTTP_201_CREATED)
async def create_account(request: ChannelAccountCreateRequest, current_user: TokenData = Depends(get_current_user)):
    account = await channel_accounts.create_account(
        current_user.company_id, request.session_name, request.phone_number
    )
    return serialize_doc(account)


@accounts_router.get("/accounts/{account_id}")
async def get_account(account_id: str, current_user: TokenData = Depends(get_current_user)):
    account = await channel_accounts.find_account(current_user.company_id, account_id)
    return serialize_doc(account)
