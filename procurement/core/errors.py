"""Errors raised by the approval engine and its services.

Business outcomes (a rejected step, an unreachable quorum, a cancelled
request) are statuses, not errors. These exceptions cover configuration
problems and precondition violations the caller must correct.
"""

from typing import Any, Dict, Optional


class ApprovalError(Exception):
    """Base class for approval errors. ``code`` is stable across releases."""

    code = "APPROVAL_ERROR"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class PolicyNotFoundError(ApprovalError):
    """Raised when a policy id is not registered with the engine."""

    code = "POLICY_NOT_FOUND"

    def __init__(self, policy_id: str):
        super().__init__(f"Policy not found: {policy_id}", {"policy_id": policy_id})
        self.policy_id = policy_id


class RequestNotFoundError(ApprovalError):
    code = "REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        super().__init__(f"Approval request not found: {request_id}", {"request_id": request_id})
        self.request_id = request_id


class RequestNotActiveError(ApprovalError):
    """Raised when acting on a request that already reached a terminal status."""

    code = "REQUEST_NOT_ACTIVE"

    def __init__(self, request_id: str, status: str, reason: Optional[str] = None):
        message = f"Approval request {request_id} is {status}"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message, {"request_id": request_id, "status": status})
        self.status = status


class StepNotFoundError(ApprovalError):
    code = "STEP_NOT_FOUND"

    def __init__(self, step_id: str):
        super().__init__(f"Step not found: {step_id}", {"step_id": step_id})
        self.step_id = step_id


class StepNotActiveError(ApprovalError):
    code = "STEP_NOT_ACTIVE"

    def __init__(self, step_id: str, status: str):
        super().__init__(
            f"Step {step_id} is not active: {status}",
            {"step_id": step_id, "status": status},
        )
        self.step_id = step_id
        self.status = status


class NotAnApproverError(ApprovalError):
    code = "NOT_AN_APPROVER"

    def __init__(self, actor_id: str, step_id: str):
        super().__init__(
            f"User {actor_id} is not an approver for step {step_id}",
            {"actor_id": actor_id, "step_id": step_id},
        )
        self.actor_id = actor_id
        self.step_id = step_id


class DuplicateDecisionError(ApprovalError):
    """Raised when an approver votes twice on the same step."""

    code = "DUPLICATE_DECISION"

    def __init__(self, actor_id: str, step_id: str):
        super().__init__(
            f"User {actor_id} has already decided on step {step_id}",
            {"actor_id": actor_id, "step_id": step_id},
        )
        self.actor_id = actor_id
        self.step_id = step_id


class ConcurrencyConflictError(ApprovalError):
    """Raised when a caller acts on a stale snapshot of a request."""

    code = "CONCURRENCY_CONFLICT"

    def __init__(self, request_id: str, expected_version: int, actual_version: int):
        super().__init__(
            f"Approval request {request_id} is at version {actual_version}, "
            f"expected {expected_version}",
            {
                "request_id": request_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )
        self.expected_version = expected_version
        self.actual_version = actual_version
