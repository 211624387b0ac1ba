"""
Top-role escalation for Gatekeeper.

EscalationWorkflow grants the highest-privilege role either unilaterally
(bootstrap, while fewer than two holders exist) or after two distinct
approvals. A single reject vetoes a nomination.
"""

from gatekeeper.escalation.workflow import EscalationWorkflow

__all__ = [
    "EscalationWorkflow",
]
