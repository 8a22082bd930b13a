"""
Predefined e-mail bodies selectable from a send_email action.

Bodies use the same ``{{variable}}`` placeholders as action params and are
rendered against the execution context when the action runs.
"""

from dataclasses import dataclass
from typing import Optional

CUSTOM_TEMPLATE = "custom"


@dataclass(frozen=True)
class EmailTemplate:
    key: str
    subject: str
    html: str


EMAIL_TEMPLATES: dict[str, EmailTemplate] = {
    template.key: template
    for template in (
        EmailTemplate(
            key="welcome",
            subject="Welcome to Piano Emotion",
            html=(
                "<h1>Welcome {{client_name}}!</h1>"
                "<p>Thank you for trusting us with the care of your piano.</p>"
                "<p>We are here to help with anything you need.</p>"
                "<p>Best regards,<br>The Piano Emotion team</p>"
            ),
        ),
        EmailTemplate(
            key="invoice_reminder",
            subject="Reminder: invoice {{invoice_number}} is pending",
            html=(
                "<h1>Payment reminder</h1>"
                "<p>Hello {{client_name}},</p>"
                "<p>This is a reminder that the following invoice is still unpaid:</p>"
                "<ul>"
                "<li>Number: {{invoice_number}}</li>"
                "<li>Amount: {{invoice_amount}}</li>"
                "<li>Due date: {{invoice_due_date}}</li>"
                "</ul>"
                "<p>Please arrange payment at your earliest convenience.</p>"
            ),
        ),
        EmailTemplate(
            key="appointment_confirmation",
            subject="Your appointment is confirmed",
            html=(
                "<h1>Appointment confirmed</h1>"
                "<p>Hello {{client_name}},</p>"
                "<p>Your appointment has been confirmed:</p>"
                "<ul>"
                "<li>Date: {{appointment_date}}</li>"
                "<li>Time: {{appointment_time}}</li>"
                "<li>Service: {{appointment_title}}</li>"
                "</ul>"
                "<p>See you soon,<br>Piano Emotion</p>"
            ),
        ),
        EmailTemplate(
            key="service_completed",
            subject="Service completed",
            html=(
                "<h1>Service completed</h1>"
                "<p>Hello {{client_name}},</p>"
                "<p>We have finished the work on your piano:</p>"
                "<ul>"
                "<li>Service: {{service_title}}</li>"
                "<li>Date: {{service_date}}</li>"
                "</ul>"
                "<p>Thank you for trusting us!</p>"
            ),
        ),
        EmailTemplate(
            key="approval_pending",
            subject="Approval pending: {{workflow_name}}",
            html=(
                "<h1>Approval pending</h1>"
                "<p>The workflow <strong>{{workflow_name}}</strong> has been waiting for "
                "approval since {{paused_at}}.</p>"
                "<p>{{approval_message}}</p>"
                "<p>Execution: {{execution_id}}</p>"
            ),
        ),
    )
}


def get_email_template(key: Optional[str]) -> Optional[EmailTemplate]:
    """Look up a template; ``None``, empty and ``custom`` select no template."""
    if not key or key == CUSTOM_TEMPLATE:
        return None
    return EMAIL_TEMPLATES.get(key)
