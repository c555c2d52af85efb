"""Database models for procurement approvals."""

from procurement.db.models.approval import (
    ApprovalAuditRecord,
    ApprovalRequestRecord,
    ApprovalStepRecord,
    StepDecisionRecord,
)

__all__ = [
    "ApprovalAuditRecord",
    "ApprovalRequestRecord",
    "ApprovalStepRecord",
    "StepDecisionRecord",
]
