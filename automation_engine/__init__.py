"""
Workflow Automation Engine

Executes tenant-defined automations modelled as graphs of trigger, condition,
action, delay and approval nodes in response to business domain events.
"""

__version__ = "1.0.0"
