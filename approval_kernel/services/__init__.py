"""Services for the approval kernel (write side)."""

from approval_kernel.services.action_processor import ActionProcessor
from approval_kernel.services.approval_log import ApprovalLogService
from approval_kernel.services.delegation_service import DelegationService
from approval_kernel.services.document_service import DocumentService
from approval_kernel.services.document_sync import DocumentSyncService
from approval_kernel.services.notification_trigger import NotificationTrigger
from approval_kernel.services.request_coordinator import RequestCoordinator
from approval_kernel.services.sequence_service import SequenceService
from approval_kernel.services.step_evaluator import StepEvaluator
from approval_kernel.services.workflow_store import WorkflowStore

__all__ = [
    "ActionProcessor",
    "ApprovalLogService",
    "DelegationService",
    "DocumentService",
    "DocumentSyncService",
    "NotificationTrigger",
    "RequestCoordinator",
    "SequenceService",
    "StepEvaluator",
    "WorkflowStore",
]
