"""ORM models for the approval kernel."""

from approval_kernel.models.approval_log import ApprovalLogModel
from approval_kernel.models.delegation import ApprovalDelegationModel
from approval_kernel.models.document import LinkedDocumentModel
from approval_kernel.models.notification import ApprovalNotificationModel
from approval_kernel.models.page import ApprovalPageModel
from approval_kernel.models.request import ApprovalActionModel, ApprovalRequestModel
from approval_kernel.models.workflow import (
    WorkflowDefinitionModel,
    WorkflowPointerModel,
    WorkflowStepModel,
)

__all__ = [
    "ApprovalActionModel",
    "ApprovalDelegationModel",
    "ApprovalLogModel",
    "ApprovalNotificationModel",
    "ApprovalPageModel",
    "ApprovalRequestModel",
    "LinkedDocumentModel",
    "WorkflowDefinitionModel",
    "WorkflowPointerModel",
    "WorkflowStepModel",
]
