import re
from enum import Enum
from pydantic import BaseModel, field_validator
from typing import Optional, Dict, Any


class MessageStatus(str, Enum):
    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"
    RECEIVED = "RECEIVED"
    READ = "READ"


class ConnectionStatus(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"


# Request bodies

class SendMessageRequest(BaseModel):
    content: str
    media_url: Optional[str] = None
    media_type: Optional[str] = None

    @field_validator("content")
    @classmethod
    def content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("content must not be empty")
        return value


class MoveTicketRequest(BaseModel):
    funnel_step_id: str


class AssignTicketRequest(BaseModel):
    user_id: Optional[str] = None


# Session names end up in provider URL paths
SESSION_NAME_RE = re.compile(r"[A-Za-z0-9_.-]{1,64}")


class ChannelAccountCreateRequest(BaseModel):
    session_name: str
    phone_number: Optional[str] = None

    @field_validator("session_name")
    @classmethod
    def session_name_is_path_safe(cls, value: str) -> str:
        if not SESSION_NAME_RE.fullmatch(value):
            raise ValueError("session_name may only contain letters, digits, '_', '.' and '-'")
        return value


# Provider webhook payloads (Evolution API). Unknown fields are kept so the
# boundary can read either the flat or the {"data": {...}} envelope.

class ProviderMessageKey(BaseModel):
    remoteJid: Optional[str] = None
    fromMe: bool = False
    id: Optional[str] = None


class MessagesUpsertPayload(BaseModel):
    instance: Optional[str] = None
    instanceName: Optional[str] = None
    key: Optional[ProviderMessageKey] = None
    pushName: Optional[str] = None
    message: Optional[Dict[str, Any]] = None
    messageType: Optional[str] = None
    data: Optional[Dict[str, Any]] = None

    model_config = {"extra": "allow"}


class ConnectionUpdatePayload(BaseModel):
    instance: Optional[str] = None
    state: Optional[str] = None
    data: Optional[Dict[str, Any]] = None

    model_config = {"extra": "allow"}
