from fastapi import APIRouter
import logging

from whatsapp_crm.models.schemas import ConnectionUpdatePayload, MessagesUpsertPayload
from whatsapp_crm.services.webhook import (
    handle_connection_update,
    handle_incoming_message,
    parse_connection_update,
    parse_incoming,
)

logger = logging.getLogger(__name__)

webhook_router = APIRouter(prefix="/webhook", tags=["Webhook"])

# The provider retries anything that is not a 2xx. Failures here would never
# succeed on redelivery, so every outcome is acknowledged.
RECEIVED = {"received": True}


@webhook_router.post("/messages-upsert")
async def messages_upsert(body: MessagesUpsertPayload):
    try:
        incoming = parse_incoming(body)
        if incoming:
            await handle_incoming_message(**incoming)
    except Exception:
        logger.exception("messages-upsert processing failed")
    return RECEIVED


@webhook_router.post("/connection-update")
async def connection_update(body: ConnectionUpdatePayload):
    try:
        update = parse_connection_update(body)
        if update:
            await handle_connection_update(**update)
    except Exception:
        logger.exception("connection-update processing failed")
    return RECEIVED
