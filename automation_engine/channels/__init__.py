"""Notification channels."""

from automation_engine.channels.calendar import CalendarEvent, CalendarSender, GoogleCalendarSender
from automation_engine.channels.email import EmailMessage, EmailSender, HttpEmailSender
from automation_engine.channels.email_templates import EMAIL_TEMPLATES, EmailTemplate, get_email_template
from automation_engine.channels.whatsapp import (
    GraphWhatsAppSender,
    WhatsAppSender,
    normalize_phone_number,
)

__all__ = [
    "CalendarEvent",
    "CalendarSender",
    "GoogleCalendarSender",
    "EMAIL_TEMPLATES",
    "EmailTemplate",
    "get_email_template",
    "EmailMessage",
    "EmailSender",
    "HttpEmailSender",
    "GraphWhatsAppSender",
    "WhatsAppSender",
    "normalize_phone_number",
]
