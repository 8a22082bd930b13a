"""
Catalog of pre-built workflows.

Templates are plain data; instantiation turns one into a validated,
inactive WorkflowDefinition owned by the requesting user.
"""

import copy
from dataclasses import dataclass, field
from typing import Any, Optional

from automation_engine.core.graph import WorkflowGraph
from automation_engine.core.models import (
    Connection,
    TriggerType,
    Workflow,
    WorkflowDefinition,
    WorkflowStatus,
    parse_node,
)


@dataclass(frozen=True)
class WorkflowTemplate:
    """A reusable workflow blueprint."""

    key: str
    name: str
    description: str
    category: str
    trigger_type: TriggerType
    nodes: list[dict[str, Any]]
    connections: list[dict[str, Any]]
    trigger_config: dict[str, Any] = field(default_factory=dict)

    def summary(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "trigger_type": self.trigger_type.value,
            "node_count": len(self.nodes),
        }


WORKFLOW_TEMPLATES: dict[str, WorkflowTemplate] = {
    "welcome_new_client": WorkflowTemplate(
        key="welcome_new_client",
        name="Welcome new clients",
        description="Send a welcome e-mail when a new client is registered",
        category="customer",
        trigger_type=TriggerType.CLIENT_CREATED,
        nodes=[
            {"id": "trigger", "kind": "trigger", "positionX": 100, "positionY": 200,
             "config": {"triggerType": "client_created"}},
            {"id": "welcome_email", "kind": "action", "positionX": 400, "positionY": 200,
             "config": {
                 "actionType": "send_email",
                 "emailTo": "{{client_email}}",
                 "emailSubject": "Welcome aboard!",
                 "emailBody": (
                     "<p>Hello {{client_name}},</p>"
                     "<p>Thank you for choosing us. Our team is available for any question.</p>"
                 ),
             }},
        ],
        connections=[
            {"sourceNodeId": "trigger", "targetNodeId": "welcome_email"},
        ],
    ),
    "appointment_reminder": WorkflowTemplate(
        key="appointment_reminder",
        name="Appointment reminder",
        description="Remind the client by e-mail and WhatsApp 24 hours after booking",
        category="appointment",
        trigger_type=TriggerType.APPOINTMENT_CREATED,
        nodes=[
            {"id": "trigger", "kind": "trigger", "positionX": 100, "positionY": 200,
             "config": {"triggerType": "appointment_created"}},
            {"id": "wait_24h", "kind": "delay", "positionX": 300, "positionY": 200,
             "config": {"duration": 24, "unit": "hours"}},
            {"id": "reminder_email", "kind": "action", "positionX": 500, "positionY": 200,
             "config": {
                 "actionType": "send_email",
                 "emailTo": "{{client_email}}",
                 "emailSubject": "Reminder: your appointment",
                 "emailBody": (
                     "<p>Hello {{client_name}},</p>"
                     "<p>This is a reminder of your appointment on {{appointment_date}} "
                     "at {{appointment_time}}.</p>"
                 ),
             }},
            {"id": "reminder_whatsapp", "kind": "action", "positionX": 500, "positionY": 350,
             "config": {
                 "actionType": "send_whatsapp",
                 "whatsappPhone": "{{client_phone}}",
                 "whatsappMessage": (
                     "Hello {{client_name}}, a reminder of your appointment on "
                     "{{appointment_date}} at {{appointment_time}}."
                 ),
             }},
        ],
        connections=[
            {"sourceNodeId": "trigger", "targetNodeId": "wait_24h"},
            {"sourceNodeId": "wait_24h", "targetNodeId": "reminder_email"},
            {"sourceNodeId": "wait_24h", "targetNodeId": "reminder_whatsapp"},
        ],
    ),
    "post_service_followup": WorkflowTemplate(
        key="post_service_followup",
        name="Post-service follow-up",
        description="Ask for feedback three days after a service is completed",
        category="service",
        trigger_type=TriggerType.SERVICE_COMPLETED,
        nodes=[
            {"id": "trigger", "kind": "trigger", "positionX": 100, "positionY": 200,
             "config": {"triggerType": "service_completed"}},
            {"id": "wait_3d", "kind": "delay", "positionX": 300, "positionY": 200,
             "config": {"duration": 3, "unit": "days"}},
            {"id": "followup_email", "kind": "action", "positionX": 500, "positionY": 200,
             "config": {
                 "actionType": "send_email",
                 "emailTo": "{{client_email}}",
                 "emailSubject": "How was our service?",
                 "emailBody": (
                     "<p>Hello {{client_name}},</p>"
                     "<p>We hope you are happy with the {{service_title}} service. "
                     "We would love to hear your feedback.</p>"
                 ),
             }},
        ],
        connections=[
            {"sourceNodeId": "trigger", "targetNodeId": "wait_3d"},
            {"sourceNodeId": "wait_3d", "targetNodeId": "followup_email"},
        ],
    ),
    "overdue_invoice_escalation": WorkflowTemplate(
        key="overdue_invoice_escalation",
        name="Overdue invoice escalation",
        description="E-mail clients more than a week overdue, send a WhatsApp nudge otherwise",
        category="billing",
        trigger_type=TriggerType.INVOICE_OVERDUE,
        nodes=[
            {"id": "trigger", "kind": "trigger", "positionX": 100, "positionY": 200,
             "config": {"triggerType": "invoice_overdue"}},
            {"id": "over_a_week", "kind": "condition", "positionX": 300, "positionY": 200,
             "config": {"field": "days_overdue", "operator": "greater_than", "value": 7}},
            {"id": "escalation_email", "kind": "action", "positionX": 500, "positionY": 100,
             "config": {
                 "actionType": "send_email",
                 "emailTo": "{{client_email}}",
                 "emailSubject": "Invoice {{invoice_number}} is {{days_overdue}} days overdue",
                 "emailBody": (
                     "<p>Hello {{client_name}},</p>"
                     "<p>Invoice {{invoice_number}} for {{invoice_amount}} is "
                     "{{days_overdue}} days overdue. Please arrange payment.</p>"
                 ),
             }},
            {"id": "escalation_reminder", "kind": "action", "positionX": 700, "positionY": 100,
             "config": {
                 "actionType": "create_reminder",
                 "title": "Call {{client_name}} about invoice {{invoice_number}}",
                 "client_id": "{{client_id}}",
             }},
            {"id": "nudge_whatsapp", "kind": "action", "positionX": 500, "positionY": 300,
             "config": {
                 "actionType": "send_whatsapp",
                 "whatsappPhone": "{{client_phone}}",
                 "whatsappMessage": (
                     "Hello {{client_name}}, invoice {{invoice_number}} is now "
                     "{{days_overdue}} days overdue."
                 ),
             }},
        ],
        connections=[
            {"sourceNodeId": "trigger", "targetNodeId": "over_a_week"},
            {"sourceNodeId": "over_a_week", "targetNodeId": "escalation_email", "connectionType": "true"},
            {"sourceNodeId": "escalation_email", "targetNodeId": "escalation_reminder"},
            {"sourceNodeId": "over_a_week", "targetNodeId": "nudge_whatsapp", "connectionType": "false"},
        ],
    ),
    "invoice_approval": WorkflowTemplate(
        key="invoice_approval",
        name="Large invoice approval",
        description="Hold large invoices for approval before marking them sent",
        category="billing",
        trigger_type=TriggerType.INVOICE_CREATED,
        nodes=[
            {"id": "trigger", "kind": "trigger", "positionX": 100, "positionY": 200,
             "config": {"triggerType": "invoice_created"}},
            {"id": "approval", "kind": "approval", "positionX": 300, "positionY": 200,
             "config": {"title": "Approve invoice {{invoice_number}}"}},
            {"id": "mark_sent", "kind": "action", "positionX": 500, "positionY": 200,
             "config": {
                 "actionType": "update_status",
                 "entity_type": "invoice",
                 "entity_id": "{{invoice_id}}",
                 "status": "sent",
             }},
        ],
        connections=[
            {"sourceNodeId": "trigger", "targetNodeId": "approval"},
            {"sourceNodeId": "approval", "targetNodeId": "mark_sent"},
        ],
        trigger_config={"condition": {"field": "invoice_amount", "operator": ">=", "value": 1000}},
    ),
}


def list_templates() -> list[WorkflowTemplate]:
    return list(WORKFLOW_TEMPLATES.values())


def get_template(key: str) -> Optional[WorkflowTemplate]:
    return WORKFLOW_TEMPLATES.get(key)


def instantiate_template(
    key: str,
    owner_id: Optional[str] = None,
    name: Optional[str] = None,
) -> WorkflowDefinition:
    """
    Build a new inactive workflow from a template.

    Raises:
        KeyError: If the template does not exist
        InvalidWorkflowGraphError: If the template graph is malformed
    """
    template = WORKFLOW_TEMPLATES.get(key)
    if template is None:
        raise KeyError(f"Unknown workflow template: {key}")

    workflow = Workflow(
        name=name or template.name,
        description=template.description,
        trigger_type=template.trigger_type,
        trigger_config=copy.deepcopy(template.trigger_config),
        status=WorkflowStatus.INACTIVE,
        owner_id=owner_id,
    )
    nodes = [parse_node(copy.deepcopy(raw)) for raw in template.nodes]
    connections = [Connection.model_validate(raw) for raw in template.connections]

    WorkflowGraph(nodes, connections).ensure_valid(workflow.id)
    return WorkflowDefinition(workflow=workflow, nodes=nodes, connections=connections)
