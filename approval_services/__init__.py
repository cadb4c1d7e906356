"""Service layer: DI container, collaborator API and timer sweep."""

from approval_services.approval_api import ApprovalWorkflowAPI
from approval_services.escalation_sweep import EscalationSweep, SweepReport
from approval_services.orchestrator import ApprovalOrchestrator

__all__ = [
    "ApprovalOrchestrator",
    "ApprovalWorkflowAPI",
    "EscalationSweep",
    "SweepReport",
]
