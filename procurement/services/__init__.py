"""Services for persisted approval workflows."""

from procurement.services.approval_service import ApprovalService
from procurement.services.notifications import ApprovalNotifier, DeliveryReport

__all__ = [
    "ApprovalService",
    "ApprovalNotifier",
    "DeliveryReport",
]
