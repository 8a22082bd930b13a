"""Environment-level channel configuration used when a user has none stored."""

import logging

from automation_engine.config.settings import ChannelSettings
from automation_engine.core.models import (
    ChannelConfig,
    EmailChannelConfig,
    WhatsAppChannelConfig,
)

logger = logging.getLogger(__name__)


def channel_config_from_settings(settings: ChannelSettings) -> ChannelConfig:
    """
    Build a ChannelConfig from CHANNEL_* settings.

    A section is only present when its credentials are complete.
    """
    email = None
    provider = settings.email_provider.lower()
    if provider == "sendgrid" and settings.sendgrid_api_key:
        email = EmailChannelConfig(
            provider="sendgrid",
            api_key=settings.sendgrid_api_key,
            from_email=settings.email_from_address,
            from_name=settings.email_from_name,
        )
    elif provider == "mailgun" and settings.mailgun_api_key and settings.mailgun_domain:
        email = EmailChannelConfig(
            provider="mailgun",
            api_key=settings.mailgun_api_key,
            domain=settings.mailgun_domain,
            from_email=settings.email_from_address,
            from_name=settings.email_from_name,
        )
    elif provider not in ("none", ""):
        logger.warning(f"E-mail provider '{settings.email_provider}' is missing credentials")

    whatsapp = None
    if settings.whatsapp_enabled and settings.whatsapp_access_token and settings.whatsapp_phone_number_id:
        whatsapp = WhatsAppChannelConfig(
            access_token=settings.whatsapp_access_token,
            phone_number_id=settings.whatsapp_phone_number_id,
            api_version=settings.whatsapp_api_version,
        )

    return ChannelConfig(email=email, whatsapp=whatsapp)
