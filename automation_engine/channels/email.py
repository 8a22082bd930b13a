"""E-mail delivery through SendGrid or Mailgun over HTTP."""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

import httpx

from automation_engine.core.exceptions import ChannelDeliveryError
from automation_engine.core.models import EmailChannelConfig

logger = logging.getLogger(__name__)

SENDGRID_URL = "https://api.sendgrid.com/v3/mail/send"
MAILGUN_URL = "https://api.mailgun.net/v3/{domain}/messages"


@dataclass
class EmailMessage:
    """A rendered e-mail ready for delivery."""

    to: list[str]
    subject: str
    html: str
    text: Optional[str] = None
    cc: list[str] = field(default_factory=list)
    reply_to: Optional[str] = None


class EmailSender(ABC):
    """Delivers e-mail with a tenant's channel configuration."""

    @abstractmethod
    async def send(self, config: EmailChannelConfig, message: EmailMessage) -> Optional[str]:
        """
        Send a message.

        Returns:
            Provider message id, if the provider returns one

        Raises:
            ChannelDeliveryError: If the provider rejects the request
        """
        pass


class HttpEmailSender(EmailSender):
    """SendGrid / Mailgun sender backed by a shared httpx client."""

    def __init__(self, client: httpx.AsyncClient, timeout: float = 10.0):
        self.client = client
        self.timeout = timeout

    async def send(self, config: EmailChannelConfig, message: EmailMessage) -> Optional[str]:
        if config.provider == "sendgrid":
            return await self._send_sendgrid(config, message)
        return await self._send_mailgun(config, message)

    async def _send_sendgrid(self, config: EmailChannelConfig, message: EmailMessage) -> Optional[str]:
        personalization: dict = {"to": [{"email": address} for address in message.to]}
        if message.cc:
            personalization["cc"] = [{"email": address} for address in message.cc]

        content = []
        if message.text:
            content.append({"type": "text/plain", "value": message.text})
        content.append({"type": "text/html", "value": message.html})

        payload: dict = {
            "personalizations": [personalization],
            "from": {"email": config.from_email, "name": config.from_name or config.from_email},
            "subject": message.subject,
            "content": content,
        }
        if message.reply_to:
            payload["reply_to"] = {"email": message.reply_to}

        response = await self.client.post(
            SENDGRID_URL,
            json=payload,
            headers={"Authorization": f"Bearer {config.api_key}"},
            timeout=self.timeout,
        )
        if response.status_code >= 400:
            raise ChannelDeliveryError("email", response.text, status_code=response.status_code)

        logger.info(f"Sent e-mail via SendGrid to {message.to}")
        return response.headers.get("x-message-id")

    async def _send_mailgun(self, config: EmailChannelConfig, message: EmailMessage) -> Optional[str]:
        sender = f"{config.from_name} <{config.from_email}>" if config.from_name else config.from_email
        data = {
            "from": sender,
            "to": ", ".join(message.to),
            "subject": message.subject,
            "html": message.html,
        }
        if message.text:
            data["text"] = message.text
        if message.cc:
            data["cc"] = ", ".join(message.cc)
        if message.reply_to:
            data["h:Reply-To"] = message.reply_to

        response = await self.client.post(
            MAILGUN_URL.format(domain=config.domain),
            data=data,
            auth=("api", config.api_key),
            timeout=self.timeout,
        )
        if response.status_code >= 400:
            raise ChannelDeliveryError("email", response.text, status_code=response.status_code)

        logger.info(f"Sent e-mail via Mailgun to {message.to}")
        try:
            data = response.json()
        except ValueError:
            return None
        return data.get("id") if isinstance(data, dict) else None
