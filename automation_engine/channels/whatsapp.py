"""WhatsApp Business Cloud API delivery."""

import logging
import re
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from automation_engine.core.exceptions import ChannelDeliveryError
from automation_engine.core.models import WhatsAppChannelConfig

logger = logging.getLogger(__name__)

GRAPH_API_URL = "https://graph.facebook.com/{version}/{phone_number_id}/messages"

_PHONE_NOISE = re.compile(r"[\s\-().]")


def normalize_phone_number(phone: str) -> str:
    """
    Normalise a phone number to ``+<country><number>``.

    Spaces, dashes, parentheses and dots are removed, a leading ``00`` is
    read as an international prefix, and a ``+`` is ensured.
    """
    cleaned = _PHONE_NOISE.sub("", str(phone))
    if cleaned.startswith("+"):
        return cleaned
    if cleaned.startswith("00"):
        cleaned = cleaned[2:]
    return f"+{cleaned}"


class WhatsAppSender(ABC):
    """Delivers WhatsApp text messages."""

    @abstractmethod
    async def send(self, config: WhatsAppChannelConfig, to: str, body: str) -> Optional[str]:
        """
        Send a text message.

        Returns:
            Provider message id, if any

        Raises:
            ChannelDeliveryError: If the API rejects the request
        """
        pass


class GraphWhatsAppSender(WhatsAppSender):
    """Sender for the WhatsApp Business Graph API."""

    def __init__(self, client: httpx.AsyncClient, timeout: float = 10.0):
        self.client = client
        self.timeout = timeout

    async def send(self, config: WhatsAppChannelConfig, to: str, body: str) -> Optional[str]:
        url = GRAPH_API_URL.format(
            version=config.api_version,
            phone_number_id=config.phone_number_id,
        )
        payload = {
            "messaging_product": "whatsapp",
            "recipient_type": "individual",
            "to": normalize_phone_number(to),
            "type": "text",
            "text": {"preview_url": True, "body": body},
        }

        response = await self.client.post(
            url,
            json=payload,
            headers={"Authorization": f"Bearer {config.access_token}"},
            timeout=self.timeout,
        )
        if response.status_code >= 400:
            raise ChannelDeliveryError("whatsapp", response.text, status_code=response.status_code)

        try:
            data = response.json()
        except ValueError:
            data = None
        messages = data.get("messages") if isinstance(data, dict) else None
        first = messages[0] if isinstance(messages, list) and messages else None
        message_id = first.get("id") if isinstance(first, dict) else None
        logger.info(f"Sent WhatsApp message {message_id} to {payload['to']}")
        return message_id
