"""Messaging provider variants.

The dispatch worker only needs ``await provider.send(SendRequest) -> dict``.
Which variant is used is decided once, at process start, from
``MESSAGING_PROVIDER``.
"""

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Protocol

import httpx

from whatsapp_crm.config import settings
from whatsapp_crm.services.errors import DispatchError
from whatsapp_crm.utils.helpers import JID_SUFFIX

logger = logging.getLogger(__name__)


@dataclass
class SendRequest:
    session_name: str
    destination: str  # provider address, "<digits>@s.whatsapp.net"
    text: str
    media_url: Optional[str] = None
    media_type: Optional[str] = None

    @property
    def number(self) -> str:
        return self.destination.replace(JID_SUFFIX, "")


class MessagingProvider(Protocol):
    async def send(self, request: SendRequest) -> Dict[str, Any]:
        ...


def _mask_token(token: Optional[str]) -> str:
    if not token:
        return "<no-token>"
    if len(token) <= 10:
        return token[:4] + "..."
    return token[:8] + "..." + token[-4:]


async def _post(client: httpx.AsyncClient, url: str, payload: Dict[str, Any], headers: Dict[str, str]) -> Dict[str, Any]:
    try:
        resp = await client.post(url, json=payload, headers=headers)
    except httpx.TimeoutException as e:
        raise DispatchError(f"Provider timeout: {e!r}")
    except httpx.HTTPError as e:
        raise DispatchError(f"Provider transport error: {e!r}")
    except httpx.InvalidURL as e:
        raise DispatchError(f"Invalid provider URL: {e!r}")

    try:
        content = resp.json()
    except ValueError:
        content = {"raw": resp.text}

    if 200 <= resp.status_code < 300:
        logger.info("Provider send success status=%s", resp.status_code)
        return content
    logger.error("Provider send error status=%s body=%s", resp.status_code, content)
    raise DispatchError(f"Provider error: {resp.status_code}", status_code=resp.status_code, body=content)


class EvolutionProvider:
    """Evolution API: one instance per WhatsApp session."""

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self.transport = transport

    async def send(self, request: SendRequest) -> Dict[str, Any]:
        url = f"{self.base_url}/message/sendText/{request.session_name}"
        payload: Dict[str, Any] = {"number": request.number, "text": request.text}
        if request.media_url and request.media_type:
            payload["medias"] = [{"mediatype": request.media_type, "media": request.media_url}]

        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key

        logger.info("Evolution send -> session=%s apikey=%s to=%s", request.session_name, _mask_token(self.api_key), request.number)
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            return await _post(client, url, payload, headers)


class CloudApiProvider:
    """WhatsApp Cloud (Graph) API. The session name is the phone_number_id."""

    def __init__(self, api_url: str, access_token: Optional[str], timeout: float = 10.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_url = api_url.rstrip("/")
        self.access_token = access_token
        self.timeout = timeout
        self.transport = transport

    async def send(self, request: SendRequest) -> Dict[str, Any]:
        if not self.access_token:
            raise DispatchError("Missing WhatsApp access token")

        url = f"{self.api_url}/{request.session_name}/messages"
        payload: Dict[str, Any] = {"messaging_product": "whatsapp", "to": request.number}
        if request.media_url and request.media_type:
            payload["type"] = request.media_type
            payload[request.media_type] = {"link": request.media_url, "caption": request.text}
        else:
            payload["type"] = "text"
            payload["text"] = {"body": request.text}
        headers = {"Authorization": f"Bearer {self.access_token}", "Content-Type": "application/json"}

        logger.info("WhatsApp send -> phone_number_id=%s token=%s to=%s", request.session_name, _mask_token(self.access_token), request.number)
        async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
            return await _post(client, url, payload, headers)


def build_provider(name: Optional[str] = None) -> MessagingProvider:
    name = (name or settings.MESSAGING_PROVIDER).lower()
    if name == "evolution":
        return EvolutionProvider(settings.EVOLUTION_API_URL, settings.EVOLUTION_API_KEY, settings.PROVIDER_TIMEOUT_SECONDS)
    if name == "cloud":
        return CloudApiProvider(settings.WHATSAPP_API_URL, settings.WHATSAPP_TOKEN, settings.PROVIDER_TIMEOUT_SECONDS)
    raise ValueError(f"Unknown MESSAGING_PROVIDER: {name}")
